# showroom/services/admin_session.py
"""
Explicit admin sessions.

Sign-in checks the `user_roles` table once and hands out an opaque token;
routes receive the AdminSession through `require_admin`.
"""
from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from showroom.core.errors import AdminAccessDenied, RepositoryError, ValidationError
from showroom.models.user_role import ADMIN_ROLE, UserRole

logger = logging.getLogger("showroom.admin")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AdminSession:
    user_id: str
    token: str
    started_at: datetime
    expires_at: Optional[datetime] = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class SessionRegistry:
    """In-process token -> AdminSession map. Sessions do not survive a restart."""

    def __init__(self, *, ttl: Optional[timedelta] = None, clock: Callable[[], datetime] = _utcnow):
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, AdminSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    @staticmethod
    def is_admin(db: Session, user_id: str) -> bool:
        try:
            row = db.execute(
                select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == ADMIN_ROLE).limit(1)
            ).first()
        except SQLAlchemyError as exc:
            db.rollback()
            raise RepositoryError(f"Role lookup failed: {exc}") from exc
        return row is not None

    def sign_in(self, db: Session, user_id: str) -> AdminSession:
        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationError("user_id is required")
        if not self.is_admin(db, user_id):
            logger.warning("Admin sign-in refused for user %s", user_id)
            raise AdminAccessDenied("You do not have admin privileges", detail={"user_id": user_id})

        now = self.clock()
        session = AdminSession(
            user_id=user_id,
            token=secrets.token_urlsafe(32),
            started_at=now,
            expires_at=now + self.ttl if self.ttl else None,
        )
        with self._lock:
            self._sessions[session.token] = session
        logger.info("Admin session started for user %s", user_id)
        return session

    def get(self, token: Optional[str]) -> Optional[AdminSession]:
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.expired(self.clock()):
                del self._sessions[token]
                session = None
        return session

    def sign_out(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is not None:
            logger.info("Admin session ended for user %s", session.user_id)
        return session is not None
