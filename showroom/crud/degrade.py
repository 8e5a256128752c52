# showroom/crud/degrade.py
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from sqlalchemy.engine import Row
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable

from showroom.core.errors import RepositoryError, SchemaError
from showroom.crud.capabilities import SchemaCapabilities, capability_for

logger = logging.getLogger("showroom.schema")

UNDEFINED_COLUMN = "42703"

# sqlite: "no such column: products.images" / "table products has no column named images"
# postgres: 'column "images" of relation "products" does not exist' / 'column products.images does not exist'
_COLUMN_PATTERNS = (
    re.compile(r"no such column:\s*(?:\w+\.)?(?P<col>\w+)", re.I),
    re.compile(r"has no column named\s+(?P<col>\w+)", re.I),
    re.compile(r'column\s+"?(?:\w+"?\.)?"?(?P<col>\w+)"?(?:\s+of relation\s+"?[\w.]+"?)?\s+does not exist', re.I),
)

# sentinel: a schema error whose column could not be named
UNKNOWN_COLUMN = ""


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    # psycopg2 -> pgcode, psycopg 3 -> sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def schema_error_column(exc: BaseException) -> Optional[str]:
    """
    Column name if `exc` says a column does not exist, UNKNOWN_COLUMN if it is a
    schema error we cannot attribute, None for any other failure.
    """
    if not isinstance(exc, DBAPIError):
        return None
    text = str(getattr(exc, "orig", None) or exc)
    for pattern in _COLUMN_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group("col")
    if _sqlstate(exc) == UNDEFINED_COLUMN:
        return UNKNOWN_COLUMN
    return None


class DegradingWriter:
    """
    DetectCapabilities -> Write(with optional fields) -> on schema error: Write(without them).

    - optional fields the capability cache already marks absent are dropped up-front;
    - a schema error naming an optional column forgets it and retries exactly once;
    - a schema error on a required column, or on the retry, surfaces as SchemaError;
    - anything else surfaces as RepositoryError (never retried).
    """

    def __init__(self, db: Session, caps: SchemaCapabilities, table: str, optional: Sequence[str] = ()):
        self.db = db
        self.caps = caps
        self.table = table
        self.optional: FrozenSet[str] = frozenset(optional)
        self.attempts = 0
        self.dropped: List[str] = []

    def _strip_known_missing(self, values: Dict[str, Any]) -> Dict[str, Any]:
        out = {}
        for key, value in values.items():
            if key in self.optional and not self.caps.has(self.table, key):
                self.dropped.append(key)
                continue
            out[key] = value
        return out

    def _execute(self, make_stmt: Callable[[Dict[str, Any]], Executable], values: Dict[str, Any]) -> None:
        self.attempts += 1
        self.db.execute(make_stmt(values))
        self.db.commit()

    def _schema_error(self, column: str, exc: BaseException) -> SchemaError:
        cap = capability_for(self.table, column or "?")
        return cap.error(f"Database migration required: {self.table}.{column or '?'} is not available ({exc.__class__.__name__}).")

    def write(self, make_stmt: Callable[[Dict[str, Any]], Executable], values: Dict[str, Any]) -> Dict[str, Any]:
        """Returns the values actually persisted."""
        first = self._strip_known_missing(values)
        try:
            self._execute(make_stmt, first)
            return first
        except SQLAlchemyError as exc:
            self.db.rollback()
            column = schema_error_column(exc)
            if column is None:
                raise RepositoryError(f"Write to {self.table} failed: {exc}") from exc
            if column == UNKNOWN_COLUMN:
                suspects = [k for k in first if k in self.optional]
            elif column in self.optional and column in first:
                suspects = [column]
            else:
                raise self._schema_error(column, exc) from exc
            if not suspects:
                raise self._schema_error(column, exc) from exc
            for key in suspects:
                if column:
                    self.caps.forget(self.table, key)
                logger.warning(
                    "%s.%s rejected by the database; retrying write without it. %s",
                    self.table, key, capability_for(self.table, key).remediation,
                )
            self.dropped.extend(suspects)
            second = {k: v for k, v in first.items() if k not in suspects}

        try:
            self._execute(make_stmt, second)
            return second
        except SQLAlchemyError as exc:
            self.db.rollback()
            column = schema_error_column(exc)
            if column is None:
                raise RepositoryError(f"Write to {self.table} failed after schema fallback: {exc}") from exc
            raise self._schema_error(column, exc) from exc


def fetch_degrading(
    db: Session,
    caps: SchemaCapabilities,
    table: str,
    make_stmt: Callable[[FrozenSet[str]], Executable],
    *,
    optional: Iterable[str] = (),
) -> List[Row]:
    """
    Read-side twin of DegradingWriter: `make_stmt` receives the usable column set.
    A stale cache (column vanished) is downgraded and the read retried once.
    """
    optional = frozenset(optional)
    columns = caps.columns(table)
    try:
        return list(db.execute(make_stmt(columns)).all())
    except SQLAlchemyError as exc:
        db.rollback()
        column = schema_error_column(exc)
        if not column or column not in optional or column not in columns:
            if column is not None:
                raise capability_for(table, column or "?").error() from exc
            raise RepositoryError(f"Read from {table} failed: {exc}") from exc
        caps.forget(table, column)
        logger.warning("%s.%s unreadable; continuing without it", table, column)
    try:
        return list(db.execute(make_stmt(caps.columns(table))).all())
    except SQLAlchemyError as exc:
        db.rollback()
        column = schema_error_column(exc)
        if column is not None:
            raise capability_for(table, column or "?").error() from exc
        raise RepositoryError(f"Read from {table} failed: {exc}") from exc


__all__ = ["DegradingWriter", "fetch_degrading", "schema_error_column", "UNKNOWN_COLUMN"]
