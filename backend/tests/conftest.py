"""
Test fixtures for the FamilyHub access-control tests.

Everything runs in-process: an in-memory ``RoleStore`` stands in for
PostgreSQL, a recording sink captures audit events, and the FastAPI app is
driven through ``httpx.AsyncClient`` with its store, audit and current-user
dependencies overridden.
"""
import dataclasses
import uuid

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends
from jose import jwt

from familyhub.config import settings
from familyhub.rbac.roles import (
    FAMILY_ADMINISTRATOR,
    FAMILY_MEMBER,
    GUEST,
    SYSTEM_ADMINISTRATOR,
    seed_role_id,
)
from familyhub.rbac.subjects import UserAccess
from familyhub.rbac.vocabulary import LegacyRole
from familyhub.services.role_store import ANY, RoleStore
from familyhub.services.security_roles import SecurityRoleService

# ---------------------------------------------------------------------------
# In-memory doubles
# ---------------------------------------------------------------------------


class InMemoryRoleStore(RoleStore):
    """Dict-backed store with the same contract as ``SqlAlchemyRoleStore``."""

    def __init__(self):
        self.roles = {}
        self.users = {}
        self.families = set()
        self.commits = 0

    async def get_role(self, role_id):
        return self.roles.get(role_id)

    async def find_roles(
        self,
        *,
        family_id=ANY,
        is_system_role=None,
        name=None,
        parent_role_id=None,
        is_default=None,
    ):
        found = []
        for role in self.roles.values():
            if family_id is not ANY and role.family_id != family_id:
                continue
            if is_system_role is not None and role.is_system_role != is_system_role:
                continue
            if name is not None and role.name.lower() != name.lower():
                continue
            if parent_role_id is not None and role.parent_role_id != parent_role_id:
                continue
            if is_default is not None and role.is_default != is_default:
                continue
            found.append(role)
        return sorted(found, key=lambda r: (not r.is_system_role, r.name))

    async def create_role(self, role):
        self.roles[role.id] = role
        return role

    async def update_role(self, role):
        if role.id not in self.roles:
            raise LookupError(role.id)
        self.roles[role.id] = role
        return role

    async def delete_role(self, role_id):
        self.roles.pop(role_id, None)

    async def set_default_role(self, family_id, role_id):
        for rid, role in list(self.roles.items()):
            in_scope = role.is_system_role if family_id is None else role.family_id == family_id
            if in_scope and (role.is_default or rid == role_id):
                self.roles[rid] = dataclasses.replace(role, is_default=rid == role_id)

    async def count_role_assignments(self, role_id):
        return sum(1 for u in self.users.values() if u.security_role_id == role_id)

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def update_user(self, user):
        if user.id not in self.users:
            raise LookupError(user.id)
        self.users[user.id] = user
        return user

    async def family_exists(self, family_id):
        return family_id in self.families

    async def commit(self):
        self.commits += 1

    # ---- test helpers ----

    def add_user(self, user):
        self.users[user.id] = user
        return user


class RecordingAuditSink:
    def __init__(self):
        self.events = []

    def fire_and_forget(self, event):
        self.events.append(event)

    @property
    def actions(self):
        return [e.action for e in self.events]


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------

FAMILY_A = uuid.UUID("aaaaaaaa-0000-4000-8000-000000000001")
FAMILY_B = uuid.UUID("bbbbbbbb-0000-4000-8000-000000000002")


@pytest.fixture
def store():
    s = InMemoryRoleStore()
    s.families.update({FAMILY_A, FAMILY_B})
    return s


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest_asyncio.fixture
async def service(store, audit):
    """Role service with the four system roles already seeded."""
    svc = SecurityRoleService(store, audit)
    await svc.seed_system_roles()
    audit.events.clear()
    return svc


def _user(store, role, family_id, seed_name=None):
    return store.add_user(UserAccess(
        id=uuid.uuid4(),
        role=role,
        family_id=family_id,
        security_role_id=seed_role_id(seed_name) if seed_name else None,
    ))


@pytest.fixture
def super_admin(store):
    return _user(store, LegacyRole.SYSTEM_ADMIN, None, SYSTEM_ADMINISTRATOR)


@pytest.fixture
def family_admin(store):
    return _user(store, LegacyRole.FAMILY_ADMIN, FAMILY_A, FAMILY_ADMINISTRATOR)


@pytest.fixture
def other_family_admin(store):
    return _user(store, LegacyRole.FAMILY_ADMIN, FAMILY_B, FAMILY_ADMINISTRATOR)


@pytest.fixture
def member(store):
    return _user(store, LegacyRole.FAMILY_MEMBER, FAMILY_A, FAMILY_MEMBER)


@pytest.fixture
def second_member(store):
    return _user(store, LegacyRole.FAMILY_MEMBER, FAMILY_A, FAMILY_MEMBER)


@pytest.fixture
def outsider(store):
    return _user(store, LegacyRole.FAMILY_MEMBER, FAMILY_B, FAMILY_MEMBER)


@pytest.fixture
def guest(store):
    return _user(store, LegacyRole.GUEST, None, GUEST)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def auth_headers(user):
    """Signed bearer token for *user*."""
    token = jwt.encode(
        {"sub": str(user.id)}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(service, store, audit):
    """AsyncClient bound to the app, backed by the in-memory store."""
    from fastapi import HTTPException

    from familyhub.main import app
    from familyhub.middleware.auth import (
        get_audit_sink,
        get_current_user,
        get_role_store,
        oauth2_scheme,
    )

    async def _current_user(token: str = Depends(oauth2_scheme)):
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        user = await store.get_user(uuid.UUID(payload["sub"]))
        if user is None:
            raise HTTPException(status_code=401, detail="Could not validate credentials")
        return user

    app.dependency_overrides[get_role_store] = lambda: store
    app.dependency_overrides[get_audit_sink] = lambda: audit
    app.dependency_overrides[get_current_user] = _current_user

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
