"""
Tests 601-640: Bearer authentication, special-permission dependencies,
SQL scope filtering, the SQLAlchemy default-role swap and the audit writer.
"""
import json
import sqlite3
import uuid

import pytest
from fastapi import HTTPException
from jose import jwt
from sqlalchemy import column, select, table
from sqlalchemy.dialects import postgresql

from familyhub.config import settings
from familyhub.middleware.auth import (
    apply_scope_filter,
    get_current_user,
    require_special_permission,
)
from familyhub.models import User
from familyhub.rbac.decisions import Authorizer, Forbidden, OwnedBy, Unrestricted, WithinFamily
from familyhub.rbac.errors import ForbiddenError
from familyhub.rbac.subjects import UserAccess
from familyhub.rbac.vocabulary import LegacyRole, SpecialPermission
from familyhub.services.audit_service import AuditEvent, AuditWriter
from familyhub.services.role_store import SqlAlchemyRoleStore

documents = table(
    "documents",
    column("id"),
    column("owner_id"),
    column("family_id"),
    column("is_public"),
)


def _token(sub):
    return jwt.encode({"sub": sub}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class FakeSession:
    def __init__(self, user=None):
        self.user = user

    async def get(self, model, ident):
        if self.user is not None and self.user.id == ident:
            return self.user
        return None


class TestAuthentication:

    # =================================================================
    # Tests 601-608
    # =================================================================

    async def test_601_garbage_token_401(self):
        """An undecodable token is rejected."""
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token="not-a-jwt", db=FakeSession())
        assert exc.value.status_code == 401

    async def test_602_non_uuid_subject_401(self):
        """A subject that is not a uuid is rejected."""
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token=_token("dmitry"), db=FakeSession())
        assert exc.value.status_code == 401

    async def test_603_unknown_user_401(self):
        """Tokens for unknown users are rejected."""
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token=_token(str(uuid.uuid4())), db=FakeSession())
        assert exc.value.status_code == 401

    async def test_604_wrong_secret_401(self):
        """Tokens signed with another secret are rejected."""
        token = jwt.encode({"sub": str(uuid.uuid4())}, "other-secret", algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token=token, db=FakeSession())
        assert exc.value.status_code == 401

    async def test_605_deactivated_user_403(self):
        """Deactivated users get 403."""
        user = User(
            id=uuid.uuid4(), email="a@example.com", display_name="A",
            role="family_member", custom_permissions=[], is_active=False,
        )
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token=_token(str(user.id)), db=FakeSession(user))
        assert exc.value.status_code == 403

    async def test_606_valid_token_returns_access(self):
        """A valid token yields the user's access fields."""
        family_id, role_id = uuid.uuid4(), uuid.uuid4()
        user = User(
            id=uuid.uuid4(), email="b@example.com", display_name="B",
            role="family_admin", family_id=family_id, security_role_id=role_id,
            custom_permissions=[{"permission": "news:approve", "granted": True}],
            is_active=True,
        )
        access = await get_current_user(token=_token(str(user.id)), db=FakeSession(user))
        assert access.role is LegacyRole.FAMILY_ADMIN
        assert access.family_id == family_id
        assert access.security_role_id == role_id
        assert access.custom_permissions[0].permission == "news:approve"

    async def test_607_require_special_permission(self):
        """The dependency passes holders and rejects others."""
        check = require_special_permission(SpecialPermission.MANAGE_USERS)
        member = UserAccess(id=uuid.uuid4(), role=LegacyRole.FAMILY_MEMBER)
        admin = UserAccess(id=uuid.uuid4(), role=LegacyRole.FAMILY_ADMIN)
        with pytest.raises(ForbiddenError):
            await check(authz=Authorizer(member))
        authz = Authorizer(admin)
        assert await check(authz=authz) is authz


class TestScopeFilterSql:

    # =================================================================
    # Tests 610-616
    # =================================================================

    def _apply(self, scope, public=False):
        return apply_scope_filter(
            select(documents.c.id),
            scope,
            owner_column=documents.c.owner_id,
            family_column=documents.c.family_id,
            public_column=documents.c.is_public if public else None,
        )

    def test_610_unrestricted_adds_no_where(self):
        """Unrestricted adds no WHERE clause."""
        assert self._apply(Unrestricted()).whereclause is None

    def test_611_owned_by_filters_owner(self):
        """OwnedBy filters on the owner column."""
        user_id = uuid.uuid4()
        stmt = self._apply(OwnedBy(user_id))
        assert "documents.owner_id" in str(stmt)
        assert list(stmt.compile().params.values()) == [user_id]

    def test_612_within_family_filters_family(self):
        """WithinFamily filters on the family column."""
        family_id = uuid.uuid4()
        stmt = self._apply(WithinFamily(family_id))
        assert "documents.family_id" in str(stmt)
        assert list(stmt.compile().params.values()) == [family_id]

    def test_613_forbidden_matches_nothing(self):
        """Forbidden adds a clause that matches nothing."""
        stmt = self._apply(Forbidden())
        assert stmt.whereclause is not None
        assert stmt.compile().params == {}

    def test_614_public_rows_stay_readable(self):
        """Public rows are OR-ed back in for reads."""
        stmt = self._apply(Forbidden(), public=True)
        assert "documents.is_public" in str(stmt)

    def test_615_unknown_scope_rejected(self):
        """Unknown scope types raise TypeError."""
        with pytest.raises(TypeError):
            self._apply(object())


class TestAuditWriter:

    # =================================================================
    # Tests 620-623
    # =================================================================

    def _event(self):
        return AuditEvent(
            action="security_role.update",
            actor_id=str(uuid.uuid4()),
            actor_role="family_admin",
            target_role_id=str(uuid.uuid4()),
            before={"name": "Old"},
            after={"name": "New"},
        )

    def test_620_write_sync_appends_jsonl_and_sqlite(self, tmp_path):
        """A sync write lands in JSONL and SQLite."""
        writer = AuditWriter(str(tmp_path))
        event = self._event()
        writer.write_sync(event)

        lines = list((tmp_path / "jsonl").glob("*.jsonl"))[0].read_text().splitlines()
        assert json.loads(lines[0])["action"] == "security_role.update"

        conn = sqlite3.connect(str(tmp_path / "audit.db"))
        try:
            row = conn.execute(
                "SELECT action, before_json, after_json FROM access_audit_events WHERE id = ?",
                (str(event.id),),
            ).fetchone()
        finally:
            conn.close()
        assert row[0] == "security_role.update"
        assert json.loads(row[2]) == {"name": "New"}

    def test_621_fire_and_forget_without_loop_writes_inline(self, tmp_path):
        """With no running loop the write happens inline."""
        writer = AuditWriter(str(tmp_path))
        writer.fire_and_forget(self._event())
        assert len(list((tmp_path / "jsonl").glob("*.jsonl"))) == 1

    async def test_622_write_async(self, tmp_path):
        """Async writes append one JSONL line."""
        writer = AuditWriter(str(tmp_path))
        await writer.write_async(self._event())
        files = list((tmp_path / "jsonl").glob("*.jsonl"))
        assert len(files[0].read_text().splitlines()) == 1


class RecordingSession:
    def __init__(self):
        self.statements = []
        self.flushes = 0

    async def execute(self, stmt):
        self.statements.append(stmt)

    async def flush(self):
        self.flushes += 1


class TestDefaultRoleSwapSql:

    # =================================================================
    # Tests 630-633
    # =================================================================

    async def _swap(self, family_id, role_id):
        session = RecordingSession()
        await SqlAlchemyRoleStore(session).set_default_role(family_id, role_id)
        assert len(session.statements) == 1
        assert session.flushes == 1
        stmt = session.statements[0]
        return stmt, stmt.compile(dialect=postgresql.dialect())

    async def test_630_swap_is_one_update_with_case(self):
        """The old and new default flip in a single UPDATE ... CASE."""
        role_id = uuid.uuid4()
        _, compiled = await self._swap(uuid.uuid4(), role_id)
        sql = str(compiled)
        assert sql.startswith("UPDATE security_roles SET is_default=CASE WHEN")
        assert "THEN" in sql and "ELSE" in sql
        assert list(compiled.params.values()).count(role_id) == 2

    async def test_631_family_swap_scoped_to_family(self):
        """A family swap only touches that family's current default and new role."""
        family_id, role_id = uuid.uuid4(), uuid.uuid4()
        _, compiled = await self._swap(family_id, role_id)
        sql = str(compiled)
        where = sql.split("WHERE", 1)[1]
        assert "security_roles.family_id =" in where
        assert "security_roles.is_default IS true" in where
        assert "is_system_role" not in where
        assert family_id in compiled.params.values()

    async def test_632_platform_swap_scoped_to_system_roles(self):
        """With no family the swap runs over system roles only."""
        _, compiled = await self._swap(None, uuid.uuid4())
        where = str(compiled).split("WHERE", 1)[1]
        assert "security_roles.is_system_role IS true" in where
        assert "security_roles.family_id" not in where

    async def test_633_swap_synchronizes_loaded_rows(self):
        """Rows already loaded in the session are refreshed after the swap."""
        stmt, _ = await self._swap(uuid.uuid4(), uuid.uuid4())
        assert stmt.get_execution_options()["synchronize_session"] == "fetch"
