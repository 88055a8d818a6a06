"""User model: identity fields plus everything authorization reads."""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.database import Base
from familyhub.models.base import TimestampMixin, UUIDPrimaryKeyMixin
from familyhub.rbac.subjects import CustomPermission, UserAccess
from familyhub.rbac.vocabulary import LegacyRole


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        server_default=text(f"'{LegacyRole.GUEST.value}'"),
    )
    family_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("families.id"), index=True
    )
    security_role_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("security_roles.id"), index=True
    )
    custom_permissions: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )

    def to_access(self) -> UserAccess:
        return UserAccess(
            id=self.id,
            role=LegacyRole(self.role),
            family_id=self.family_id,
            security_role_id=self.security_role_id,
            custom_permissions=tuple(
                CustomPermission(p["permission"], p["granted"])
                for p in (self.custom_permissions or [])
            ),
        )

    def apply_access(self, access: UserAccess) -> None:
        self.role = access.role.value
        self.family_id = access.family_id
        self.security_role_id = access.security_role_id
        self.custom_permissions = [p.to_dict() for p in access.custom_permissions]

    def __repr__(self) -> str:
        return f"<User {self.email!r} role={self.role!r}>"
