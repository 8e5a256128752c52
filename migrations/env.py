# migrations/env.py
from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from dotenv import find_dotenv, load_dotenv
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)
log = logging.getLogger("alembic.env")

# before the package reads its settings
load_dotenv(find_dotenv(filename=".env", usecwd=True), override=False)

from showroom.core.settings import settings  # noqa: E402
from showroom.database import DEFAULT_SCHEMA, Base, masked_url  # noqa: E402
from showroom.models import category, product, user_role  # noqa: E402,F401

target_metadata = Base.metadata
VERSION_TABLE = os.getenv("ALEMBIC_VERSION_TABLE", "alembic_version").strip() or "alembic_version"


def database_url() -> str:
    """DATABASE_URL wins; alembic.ini's sqlalchemy.url only when it is not the template placeholder."""
    if os.getenv("DATABASE_URL"):
        return settings.DATABASE_URL
    ini_url = (config.get_main_option("sqlalchemy.url") or "").strip()
    if ini_url and not ini_url.startswith("driver://"):
        return ini_url
    return settings.DATABASE_URL


def _prepare_postgres(conn: Connection) -> None:
    if conn.dialect.name != "postgresql" or not DEFAULT_SCHEMA:
        return
    quoted = conn.dialect.identifier_preparer.quote(DEFAULT_SCHEMA)
    conn.exec_driver_sql(f"CREATE SCHEMA IF NOT EXISTS {quoted}")
    conn.exec_driver_sql(f"SET search_path = {quoted}, public")
    conn.commit()


def _common_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "version_table": VERSION_TABLE,
        "version_table_schema": DEFAULT_SCHEMA,
    }


def run_migrations_offline() -> None:
    url = database_url()
    log.info("offline migrations: %s (schema=%s)", masked_url(url), DEFAULT_SCHEMA)
    context.configure(url=url, literal_binds=True, **_common_options())
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = database_url()
    log.info("online migrations: %s (schema=%s)", masked_url(url), DEFAULT_SCHEMA)
    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as conn:
        _prepare_postgres(conn)
        # SQLite cannot ALTER most constraints in place
        context.configure(connection=conn, render_as_batch=conn.dialect.name == "sqlite", **_common_options())
        with context.begin_transaction():
            context.run_migrations()
        if conn.in_transaction():
            conn.commit()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
