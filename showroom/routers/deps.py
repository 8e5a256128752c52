# showroom/routers/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from showroom.crud.capabilities import SchemaCapabilities
from showroom.crud.category import CategoryRepository
from showroom.crud.product import ProductRepository
from showroom.integrations.storage import StorageGateway
from showroom.services.admin_session import AdminSession, SessionRegistry

ADMIN_SESSION_HEADER = "X-Admin-Session"


def get_db(request: Request) -> Generator[Session, None, None]:
    """One session per request from the app's session factory."""
    db: Session = request.app.state.session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_capabilities(request: Request) -> SchemaCapabilities:
    return request.app.state.capabilities


def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_category_repo(
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
) -> CategoryRepository:
    return CategoryRepository(db, caps)


def get_product_repo(
    db: Session = Depends(get_db),
    caps: SchemaCapabilities = Depends(get_capabilities),
    storage: StorageGateway = Depends(get_storage),
) -> ProductRepository:
    return ProductRepository(db, caps, storage)


def require_admin(
    x_admin_session: Optional[str] = Header(default=None, alias=ADMIN_SESSION_HEADER),
    sessions: SessionRegistry = Depends(get_sessions),
) -> AdminSession:
    session = sessions.get(x_admin_session)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": "unauthenticated", "message": f"Missing or invalid {ADMIN_SESSION_HEADER} header"},
        )
    return session
