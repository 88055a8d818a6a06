"""Family model (only the fields access control needs)."""
from __future__ import annotations

import datetime

from sqlalchemy import Boolean, String, text
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.database import Base
from familyhub.models.base import TimestampMixin, UUIDPrimaryKeyMixin


class Family(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "families"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    deleted_at: Mapped[datetime.datetime | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<Family {self.name!r}>"
