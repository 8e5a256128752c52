# showroom/routers/admin.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.orm import Session

from showroom.routers.deps import ADMIN_SESSION_HEADER, get_db, get_sessions, require_admin
from showroom.schemas.admin import AdminSessionCreated, AdminSessionRead, SignInRequest
from showroom.services.admin_session import AdminSession, SessionRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/session",
    response_model=AdminSessionCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Start an admin session",
    description=f"403 unless the user holds the admin role. Send the token back as `{ADMIN_SESSION_HEADER}`.",
)
def sign_in(
    payload: SignInRequest,
    db: Session = Depends(get_db),
    sessions: SessionRegistry = Depends(get_sessions),
):
    return sessions.sign_in(db, payload.user_id)


@router.get(
    "/session",
    response_model=AdminSessionRead,
    summary="Current admin session",
)
def current_session(admin: AdminSession = Depends(require_admin)):
    return admin


@router.delete(
    "/session",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End the admin session",
)
def sign_out(
    x_admin_session: str | None = Header(default=None, alias=ADMIN_SESSION_HEADER),
    sessions: SessionRegistry = Depends(get_sessions),
):
    sessions.sign_out(x_admin_session)
    return None
