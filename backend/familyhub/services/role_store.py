"""Persistence boundary for security roles and user access fields.

``RoleStore`` is the document-store contract the role service needs;
``SqlAlchemyRoleStore`` implements it over an ``AsyncSession``.  Callers
commit through the store once an administrative action has fully
succeeded.
"""
from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.rbac.roles import SecurityRole
from familyhub.rbac.subjects import UserAccess


ANY: Any = object()


class RoleStore:
    """Abstract store.  Subclasses implement everything except
    ``load_role_chain``."""

    async def get_role(self, role_id: uuid.UUID) -> SecurityRole | None:
        raise NotImplementedError

    async def find_roles(
        self,
        *,
        family_id: uuid.UUID | None = ANY,
        is_system_role: bool | None = None,
        name: str | None = None,
        parent_role_id: uuid.UUID | None = None,
        is_default: bool | None = None,
    ) -> list[SecurityRole]:
        raise NotImplementedError

    async def create_role(self, role: SecurityRole) -> SecurityRole:
        raise NotImplementedError

    async def update_role(self, role: SecurityRole) -> SecurityRole:
        raise NotImplementedError

    async def delete_role(self, role_id: uuid.UUID) -> None:
        raise NotImplementedError

    async def set_default_role(self, family_id: uuid.UUID | None, role_id: uuid.UUID) -> None:
        """Make *role_id* the only default of its scope in one atomic write.

        ``family_id=None`` targets the platform-wide (system role) scope.
        """
        raise NotImplementedError

    async def count_role_assignments(self, role_id: uuid.UUID) -> int:
        raise NotImplementedError

    async def get_user(self, user_id: uuid.UUID) -> UserAccess | None:
        raise NotImplementedError

    async def update_user(self, user: UserAccess) -> UserAccess:
        raise NotImplementedError

    async def family_exists(self, family_id: uuid.UUID) -> bool:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def load_role_chain(self, role_id: uuid.UUID | None) -> dict[uuid.UUID, SecurityRole]:
        """Load *role_id* and every ancestor, each as a complete document.

        Stops at a missing role or at the first repeated id; detecting and
        reporting the cycle is left to the resolver.
        """
        roles: dict[uuid.UUID, SecurityRole] = {}
        current = role_id
        while current is not None and current not in roles:
            role = await self.get_role(current)
            if role is None:
                break
            roles[current] = role
            current = role.parent_role_id
        return roles


class SqlAlchemyRoleStore(RoleStore):
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ---- roles ----

    async def _get_record(self, role_id: uuid.UUID):
        from familyhub.models import SecurityRoleRecord

        result = await self.db.execute(
            select(SecurityRoleRecord).where(SecurityRoleRecord.id == role_id)
        )
        return result.scalar_one_or_none()

    async def get_role(self, role_id: uuid.UUID) -> SecurityRole | None:
        record = await self._get_record(role_id)
        return record.to_domain() if record else None

    async def find_roles(
        self,
        *,
        family_id: uuid.UUID | None = ANY,
        is_system_role: bool | None = None,
        name: str | None = None,
        parent_role_id: uuid.UUID | None = None,
        is_default: bool | None = None,
    ) -> list[SecurityRole]:
        from familyhub.models import SecurityRoleRecord

        stmt = select(SecurityRoleRecord)
        if family_id is not ANY:
            if family_id is None:
                stmt = stmt.where(SecurityRoleRecord.family_id.is_(None))
            else:
                stmt = stmt.where(SecurityRoleRecord.family_id == family_id)
        if is_system_role is not None:
            stmt = stmt.where(SecurityRoleRecord.is_system_role.is_(is_system_role))
        if name is not None:
            stmt = stmt.where(func.lower(SecurityRoleRecord.name) == name.lower())
        if parent_role_id is not None:
            stmt = stmt.where(SecurityRoleRecord.parent_role_id == parent_role_id)
        if is_default is not None:
            stmt = stmt.where(SecurityRoleRecord.is_default.is_(is_default))
        stmt = stmt.order_by(
            SecurityRoleRecord.is_system_role.desc(), SecurityRoleRecord.name
        )
        result = await self.db.execute(stmt)
        return [record.to_domain() for record in result.scalars().all()]

    async def create_role(self, role: SecurityRole) -> SecurityRole:
        from familyhub.models import SecurityRoleRecord

        record = SecurityRoleRecord()
        record.apply(role)
        self.db.add(record)
        await self.db.flush()
        return role

    async def update_role(self, role: SecurityRole) -> SecurityRole:
        record = await self._get_record(role.id)
        if record is None:
            raise LookupError(f"Security role {role.id} vanished during update")
        record.apply(role)
        await self.db.flush()
        return role

    async def delete_role(self, role_id: uuid.UUID) -> None:
        record = await self._get_record(role_id)
        if record is not None:
            await self.db.delete(record)
            await self.db.flush()

    async def set_default_role(self, family_id: uuid.UUID | None, role_id: uuid.UUID) -> None:
        from familyhub.models import SecurityRoleRecord

        if family_id is None:
            scope = SecurityRoleRecord.is_system_role.is_(True)
        else:
            scope = SecurityRoleRecord.family_id == family_id

        # Single statement: readers see either the old default or the new one.
        stmt = (
            update(SecurityRoleRecord)
            .where(
                scope,
                or_(
                    SecurityRoleRecord.is_default.is_(True),
                    SecurityRoleRecord.id == role_id,
                ),
            )
            .values(
                is_default=case((SecurityRoleRecord.id == role_id, True), else_=False)
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(stmt)
        await self.db.flush()

    async def count_role_assignments(self, role_id: uuid.UUID) -> int:
        from familyhub.models import User

        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.security_role_id == role_id)
        )
        return result.scalar() or 0

    # ---- users ----

    async def _get_user_record(self, user_id: uuid.UUID):
        from familyhub.models import User

        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID) -> UserAccess | None:
        record = await self._get_user_record(user_id)
        return record.to_access() if record else None

    async def update_user(self, user: UserAccess) -> UserAccess:
        record = await self._get_user_record(user.id)
        if record is None:
            raise LookupError(f"User {user.id} vanished during update")
        record.apply_access(user)
        await self.db.flush()
        return user

    # ---- families ----

    async def family_exists(self, family_id: uuid.UUID) -> bool:
        from familyhub.models import Family

        result = await self.db.execute(
            select(Family.id).where(Family.id == family_id, Family.deleted_at.is_(None))
        )
        return result.scalar_one_or_none() is not None

    async def commit(self) -> None:
        await self.db.commit()
