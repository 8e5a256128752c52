# showroom/crud/capabilities.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Union

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.orm import Session

from showroom.core.errors import RepositoryError, SchemaError

logger = logging.getLogger("showroom.schema")

CATEGORY_TABLE = "product_categories"
PRODUCT_TABLE = "products"


@dataclass(frozen=True)
class Capability:
    """A column that arrived in a later migration, plus what the operator must run to get it."""
    name: str
    table: str
    column: str
    revision: str
    remediation: str

    def error(self, message: Optional[str] = None) -> SchemaError:
        return SchemaError(
            message or f"Database migration required: {self.table}.{self.column} does not exist.",
            capability=self.name,
            remediation=self.remediation,
        )


CATEGORY_HIERARCHY = Capability(
    name="category_hierarchy",
    table=CATEGORY_TABLE,
    column="parent_id",
    revision="b7d2e41c9a30",
    remediation=(
        "The product_categories.parent_id column is missing, so subcategories are unavailable. "
        "Apply revision b7d2e41c9a30 (add_category_parent_id) with `alembic upgrade head`, "
        "then call POST /health/schema/refresh or restart the API."
    ),
)

PRODUCT_GALLERY = Capability(
    name="product_gallery",
    table=PRODUCT_TABLE,
    column="images",
    revision="e1a9c03f58d4",
    remediation=(
        "The products.images column is missing, so only the single primary image is stored. "
        "Apply revision e1a9c03f58d4 (add_product_images) with `alembic upgrade head`, "
        "then call POST /health/schema/refresh or restart the API."
    ),
)

KNOWN_CAPABILITIES: tuple[Capability, ...] = (CATEGORY_HIERARCHY, PRODUCT_GALLERY)


def capability_for(table: str, column: str) -> Capability:
    for cap in KNOWN_CAPABILITIES:
        if cap.table == table and cap.column == column:
            return cap
    return Capability(
        name=f"{table}.{column}",
        table=table,
        column=column,
        revision="head",
        remediation=f"Column {table}.{column} is missing. Run `alembic upgrade head`.",
    )


Bind = Union[Session, Connection, Engine]


class SchemaCapabilities:
    """
    One-time probe of the live table columns, cached until `refresh()`.

    Repositories ask `has(table, column)` before building statements.
    DegradingWriter calls `forget()` when a write proves a cached column absent.
    """

    def __init__(self, schema: Optional[str] = None):
        self._schema = schema
        self._columns: Optional[Dict[str, FrozenSet[str]]] = None
        self._lock = threading.Lock()

    @property
    def probed(self) -> bool:
        return self._columns is not None

    def probe(self, bind: Bind, *, tables: Iterable[str] = (CATEGORY_TABLE, PRODUCT_TABLE)) -> "SchemaCapabilities":
        if self._columns is not None:
            return self
        with self._lock:
            if self._columns is not None:
                return self
            target = bind.connection() if isinstance(bind, Session) else bind
            try:
                insp = sa.inspect(target)
                found: Dict[str, FrozenSet[str]] = {}
                for table in tables:
                    try:
                        found[table] = frozenset(c["name"] for c in insp.get_columns(table, schema=self._schema))
                    except NoSuchTableError:
                        found[table] = frozenset()
            except SQLAlchemyError as exc:
                raise RepositoryError(f"Could not inspect database schema: {exc}") from exc
            self._columns = found
        missing = [c.name for c in self.missing()]
        if missing:
            logger.warning("Schema probe: missing capabilities %s", ", ".join(missing))
        else:
            logger.info("Schema probe: all optional columns present")
        return self

    def columns(self, table: str) -> FrozenSet[str]:
        if self._columns is None:
            raise RuntimeError("SchemaCapabilities.probe() must run before columns() is used")
        return self._columns.get(table, frozenset())

    def has(self, table: str, column: str) -> bool:
        return column in self.columns(table)

    def supports(self, capability: Capability) -> bool:
        return self.has(capability.table, capability.column)

    @property
    def category_hierarchy(self) -> bool:
        return self.supports(CATEGORY_HIERARCHY)

    @property
    def product_gallery(self) -> bool:
        return self.supports(PRODUCT_GALLERY)

    def forget(self, table: str, column: str) -> None:
        with self._lock:
            if self._columns is None or column not in self._columns.get(table, frozenset()):
                return
            self._columns = {**self._columns, table: self._columns[table] - {column}}
        logger.warning("Schema capability downgraded: %s.%s no longer assumed present", table, column)

    def refresh(self) -> None:
        with self._lock:
            self._columns = None

    def missing(self) -> List[Capability]:
        if self._columns is None:
            return []
        return [cap for cap in KNOWN_CAPABILITIES if not self.supports(cap)]

    def as_dict(self) -> dict:
        return {
            "probed": self.probed,
            "capabilities": {cap.name: self.supports(cap) for cap in KNOWN_CAPABILITIES} if self.probed else {},
            "missing": [
                {"capability": cap.name, "revision": cap.revision, "remediation": cap.remediation}
                for cap in self.missing()
            ],
        }


__all__ = [
    "Capability",
    "CATEGORY_HIERARCHY",
    "PRODUCT_GALLERY",
    "KNOWN_CAPABILITIES",
    "SchemaCapabilities",
    "capability_for",
]
