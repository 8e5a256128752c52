# showroom/main.py
from __future__ import annotations

import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, List, Optional, Tuple, Type

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from showroom.core.errors import (
    AdminAccessDenied,
    BucketNotFoundError,
    CatalogError,
    ConflictError,
    NotFoundError,
    RepositoryError,
    SchemaError,
    StoragePermissionError,
    ValidationError,
)
from showroom.core.logging import setup_logging
from showroom.core.settings import Settings, settings as default_settings
from showroom.crud.capabilities import SchemaCapabilities
from showroom.database import (
    DEFAULT_SCHEMA,
    SessionLocal,
    engine as default_engine,
    init_db_if_requested,
    make_session_factory,
)
from showroom.integrations.storage import StorageGateway
from showroom.routers.admin import router as admin_router
from showroom.routers.category import router as categories_router
from showroom.routers.deps import get_capabilities, get_db
from showroom.routers.product import router as products_router
from showroom.routers.storage import router as storage_router
from showroom.services.admin_session import SessionRegistry

ALEMBIC_INI = os.getenv("ALEMBIC_CONFIG", "alembic.ini")
ALEMBIC_VERSION_TABLE = os.getenv("ALEMBIC_VERSION_TABLE", "alembic_version")

APP_STARTED_MONO = time.monotonic()
APP_STARTED_TS = int(time.time())

logger = logging.getLogger("showroom.api")

tags_metadata = [
    {"name": "health", "description": "Liveness, database and schema-capability checks"},
    {"name": "categories", "description": "Two-level category tree"},
    {"name": "products", "description": "Products with image gallery and specifications"},
    {"name": "storage", "description": "Product image bucket"},
    {"name": "admin", "description": "Admin sessions"},
]

# most specific first; first isinstance match wins
ERROR_STATUS: List[Tuple[Type[CatalogError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (SchemaError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (BucketNotFoundError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoragePermissionError, status.HTTP_403_FORBIDDEN),
    (AdminAccessDenied, status.HTTP_403_FORBIDDEN),
    (RepositoryError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: CatalogError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# --- Utilities ---
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def _request_id(request: Request) -> str:
    """Id set by the middleware, else the caller's X-Request-ID / X-Correlation-ID, else a fresh one."""
    rid = getattr(request.state, "request_id", None)
    if rid:
        return rid
    for header in ("x-request-id", "x-correlation-id"):
        if request.headers.get(header):
            return request.headers[header]
    return uuid.uuid4().hex[:12]


def _error_response(request: Request, code: int, detail, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    out = dict(headers or {})
    out.setdefault("X-Request-ID", _request_id(request))
    return JSONResponse(status_code=code, content={"detail": jsonable_encoder(detail)}, headers=out)


async def request_context_mw(request: Request, call_next):
    request.state.request_id = _request_id(request)
    t0 = time.perf_counter()
    response: Response = await call_next(request)
    elapsed = (time.perf_counter() - t0) * 1000

    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    response.headers.setdefault("X-Request-ID", request.state.request_id)
    response.headers.setdefault("X-App-Version", request.app.version)
    response.headers.setdefault("Server-Timing", f"app;dur={elapsed:.1f}")
    response.headers.setdefault("X-Process-Time", f"{elapsed:.1f}ms")
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: optional create_all, then one schema-capability probe
    init_db_if_requested(app.state.engine)
    caps: SchemaCapabilities = app.state.capabilities
    try:
        with app.state.session_factory() as db:
            db.execute(text("SELECT 1"))
            caps.probe(db)
        for cap in caps.missing():
            logger.warning("Capability %s unavailable. %s", cap.name, cap.remediation)
        logger.info("DB startup check OK (capabilities=%s)", caps.as_dict()["capabilities"])
    except Exception:
        # the API still starts; repositories probe again on first use
        logger.exception("DB startup check FAILED")

    yield

    app.state.storage.close()


# --- Exception handlers ---
async def _catalog_error_handler(request: Request, exc: CatalogError):
    code = status_for(exc)
    if code >= 500:
        logger.warning("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return _error_response(request, code, exc.to_dict())


async def _validation_handler(request: Request, exc: RequestValidationError):
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, exc.errors())


async def _starlette_http_exc_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    # router-level misses get the path echoed back
    if exc.status_code in (404, 405) and isinstance(detail, str) and detail in ("Not Found", "Method Not Allowed"):
        detail = {"message": detail, "path": request.url.path}
    return _error_response(request, exc.status_code, detail, exc.headers)


async def _unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


# --- Alembic helpers ---
def _get_db_alembic_version(db: Session) -> Tuple[Optional[str], bool]:
    table = f'"{DEFAULT_SCHEMA}"."{ALEMBIC_VERSION_TABLE}"' if DEFAULT_SCHEMA else f'"{ALEMBIC_VERSION_TABLE}"'
    try:
        return db.execute(text(f"SELECT version_num FROM {table}")).scalar_one_or_none(), True
    except Exception:
        db.rollback()
        return None, False


def _get_pkg_alembic_heads() -> List[str]:
    cfg = AlembicConfig(ALEMBIC_INI)
    script = ScriptDirectory.from_config(cfg)
    return list(script.get_heads())


def _register_health(app: FastAPI) -> None:
    @app.get("/", tags=["health"])
    def root():
        return {"name": app.title, "version": app.version}

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    @app.get("/health/uptime", tags=["health"])
    def health_uptime():
        return {"uptime_seconds": round(time.monotonic() - APP_STARTED_MONO, 3), "started_at": APP_STARTED_TS}

    @app.get("/health/db", tags=["health"])
    def health_db(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except Exception:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="DB not ready")
        return {"status": "ok", "db": "up", "dialect": db.get_bind().dialect.name}

    @app.get("/health/schema", tags=["health"], summary="Optional columns the database provides")
    def health_schema(
        db: Session = Depends(get_db),
        caps: SchemaCapabilities = Depends(get_capabilities),
    ):
        caps.probe(db)
        return caps.as_dict()

    @app.post("/health/schema/refresh", tags=["health"], summary="Re-probe columns after a migration")
    def health_schema_refresh(
        db: Session = Depends(get_db),
        caps: SchemaCapabilities = Depends(get_capabilities),
    ):
        caps.refresh()
        caps.probe(db)
        logger.info("Schema capabilities refreshed: %s", caps.as_dict()["capabilities"])
        return caps.as_dict()

    @app.get("/health/migrations", tags=["health"])
    def health_migrations(db: Session = Depends(get_db)):
        db_version, present = _get_db_alembic_version(db)
        try:
            heads = _get_pkg_alembic_heads()
        except Exception as e:
            return {"db_version": db_version, "present": present, "pkg_heads_error": str(e), "in_sync": None}
        head = heads[0] if heads else None
        return {
            "db_version": db_version,
            "present": present,
            "pkg_heads": heads,
            "in_sync": bool(db_version and head and db_version == head),
        }


def create_app(
    *,
    settings: Settings = default_settings,
    engine: Optional[Engine] = None,
    storage: Optional[StorageGateway] = None,
    capabilities: Optional[SchemaCapabilities] = None,
    sessions: Optional[SessionRegistry] = None,
) -> FastAPI:
    setup_logging(settings.LOG_LEVEL.upper())

    app = FastAPI(
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.engine = engine or default_engine
    app.state.session_factory = make_session_factory(engine) if engine is not None else SessionLocal
    app.state.capabilities = capabilities or SchemaCapabilities(DEFAULT_SCHEMA)
    app.state.storage = storage or StorageGateway.from_settings(settings)
    app.state.sessions = sessions or SessionRegistry(
        ttl=timedelta(seconds=settings.ADMIN_SESSION_TTL_S) if settings.ADMIN_SESSION_TTL_S > 0 else None
    )

    app.middleware("http")(request_context_mw)
    app.add_middleware(GZipMiddleware, minimum_size=1024)

    origins = settings.cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Total-Count", "X-Request-ID", "Server-Timing", "X-Process-Time", "X-App-Version"],
        )

    handlers: Dict[type, object] = {
        CatalogError: _catalog_error_handler,
        RequestValidationError: _validation_handler,
        StarletteHTTPException: _starlette_http_exc_handler,
        Exception: _unhandled_exc_handler,
    }
    for exc_cls, handler in handlers.items():
        app.add_exception_handler(exc_cls, handler)  # type: ignore[arg-type]

    _register_health(app)
    app.include_router(categories_router)
    app.include_router(products_router)
    app.include_router(storage_router)
    app.include_router(admin_router)
    return app


app = create_app()
