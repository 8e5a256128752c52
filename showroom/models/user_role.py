# showroom/models/user_role.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from showroom.database import Base

ADMIN_ROLE = "admin"
USER_ROLE = "user"


class UserRole(Base):
    """Maps an auth identity to its role; read once when an admin session starts."""
    __tablename__ = "user_roles"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'user')", name="role_allowed"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=USER_ROLE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserRole user_id={self.user_id!r} role={self.role!r}>"
