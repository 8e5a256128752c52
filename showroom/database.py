# showroom/database.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from showroom.core.settings import Settings, settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL.strip()
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is empty")

DEFAULT_SCHEMA: Optional[str] = (settings.DB_SCHEMA or "").strip() or None

# constraint names stay stable between create_all and the migrations
metadata = MetaData(
    schema=DEFAULT_SCHEMA,
    naming_convention={
        "pk": "pk_%(table_name)s",
        "ix": "ix_%(table_name)s_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    },
)
Base = declarative_base(metadata=metadata)


def masked_url(url: str) -> str:
    """Connection URL with the password hidden, for logs."""
    return make_url(url).render_as_string(hide_password=True)


def _is_memory_sqlite(url: str) -> bool:
    u = make_url(url)
    return u.get_backend_name() == "sqlite" and u.database in (None, "", ":memory:")


def engine_options(url: str, cfg: Settings = settings) -> Dict[str, Any]:
    opts: Dict[str, Any] = {"echo": cfg.DB_ECHO, "pool_pre_ping": True}
    if make_url(url).get_backend_name() == "sqlite":
        opts["connect_args"] = {"check_same_thread": False}
        # one shared connection, or each checkout gets its own empty database
        opts["poolclass"] = StaticPool if _is_memory_sqlite(url) else NullPool
    elif cfg.DB_USE_NULLPOOL:
        opts["poolclass"] = NullPool
    else:
        opts.update(
            pool_size=cfg.DB_POOL_SIZE,
            max_overflow=cfg.DB_MAX_OVERFLOW,
            pool_recycle=cfg.DB_POOL_RECYCLE_S,
            pool_timeout=cfg.DB_POOL_TIMEOUT_S,
            pool_use_lifo=True,
        )
    return opts


def make_engine(url: str = DATABASE_URL, cfg: Settings = settings) -> Engine:
    eng = create_engine(url, **engine_options(url, cfg))
    if DEFAULT_SCHEMA and eng.dialect.name == "postgresql":

        @event.listens_for(eng, "connect")
        def _set_search_path(dbapi_conn, _record):
            with dbapi_conn.cursor() as cur:
                cur.execute(f'SET search_path TO "{DEFAULT_SCHEMA}", public')

    return eng


def make_session_factory(bind: Engine) -> sessionmaker:
    # rows are read back after commit by the routers
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


engine: Engine = make_engine()
SessionLocal = make_session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Commit on success, roll back on error. For scripts and the shell:

        with session_scope() as db:
            CategoryRepository(db, caps).create_category("Valves")
    """
    db: Session = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db_if_requested(bind: Optional[Engine] = None, cfg: Settings = settings) -> bool:
    """create_all from the models when SQLALCHEMY_CREATE_ALL is set; Alembic otherwise."""
    if not cfg.SQLALCHEMY_CREATE_ALL:
        return False
    from showroom.models import category, product, user_role  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Tables created from models on %s", target.url.render_as_string(hide_password=True))
    return True
