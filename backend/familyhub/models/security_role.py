"""SQLAlchemy model for security roles.

Only the rows and special flags a role *declares* are stored; the total
grid is rebuilt by ``familyhub.rbac.roles.build_role`` on load.
"""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.database import Base
from familyhub.models.base import TimestampMixin, UUIDPrimaryKeyMixin
from familyhub.rbac.roles import (
    DESCRIPTION_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SecurityRole,
    role_from_document,
)


class SecurityRoleRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "security_roles"
    __table_args__ = (
        UniqueConstraint("family_id", "name", name="uq_security_roles_family_name"),
        Index("ix_security_roles_family_default", "family_id", "is_default"),
        Index("ix_security_roles_system_name", "is_system_role", "name"),
    )

    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    description: Mapped[str | None] = mapped_column(String(DESCRIPTION_MAX_LENGTH))
    family_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("families.id"), index=True
    )
    is_system_role: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    entity_privileges: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    special_permissions: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    parent_role_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("security_roles.id")
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", use_alter=True, name="fk_security_roles_created_by"),
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", use_alter=True, name="fk_security_roles_updated_by"),
    )

    def to_domain(self) -> SecurityRole:
        return role_from_document({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "family_id": self.family_id,
            "is_system_role": self.is_system_role,
            "is_default": self.is_default,
            "entity_privileges": self.entity_privileges,
            "special_permissions": self.special_permissions,
            "parent_role_id": self.parent_role_id,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        })

    def apply(self, role: SecurityRole) -> None:
        """Copy every persisted field from a domain role."""
        self.id = role.id
        self.name = role.name
        self.description = role.description
        self.family_id = role.family_id
        self.is_system_role = role.is_system_role
        self.is_default = role.is_default
        self.entity_privileges = role.privileges_document()
        self.special_permissions = role.special_permissions_document()
        self.parent_role_id = role.parent_role_id
        self.created_by = role.created_by
        self.updated_by = role.updated_by

    def __repr__(self) -> str:
        scope = "system" if self.is_system_role else f"family={self.family_id}"
        return f"<SecurityRole {self.name!r} {scope}>"
