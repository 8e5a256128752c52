# showroom/crud/category.py
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from showroom.core.errors import (
    HasChildrenError,
    HasProductsError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from showroom.crud.capabilities import CATEGORY_HIERARCHY, CATEGORY_TABLE, SchemaCapabilities
from showroom.crud.degrade import DegradingWriter, fetch_degrading, schema_error_column
from showroom.models.category import Category
from showroom.models.product import Product

logger = logging.getLogger("showroom.crud.category")

_WS_RE = re.compile(r"\s+")
_COLUMNS = ("id", "name", "parent_id", "created_at")
_UPDATABLE = frozenset({"name", "parent_id"})
# what admin forms send for "no parent"
_NO_PARENT = {"", "none", "null"}


@dataclass(frozen=True)
class CategoryRecord:
    id: str
    name: str
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None


@dataclass
class CategoryNode:
    category: CategoryRecord
    children: List[CategoryRecord] = field(default_factory=list)


def build_category_tree(categories: List[CategoryRecord]) -> Tuple[List[CategoryNode], List[CategoryRecord]]:
    """
    Groups a flat list into (parents with their children, orphans).
    Plain nested scan: fine for tens/hundreds of categories.
    Orphans are children whose parent is not in the list.
    """
    parents = [c for c in categories if c.parent_id is None]
    children = [c for c in categories if c.parent_id is not None]
    nodes = [CategoryNode(p, [c for c in children if c.parent_id == p.id]) for p in parents]
    attached = {c.id for n in nodes for c in n.children}
    orphans = [c for c in children if c.id not in attached]
    return nodes, orphans


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _norm_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ValidationError("name is required")
    name = _WS_RE.sub(" ", name).strip()
    if not name:
        raise ValidationError("name must not be empty")
    if len(name) > 255:
        raise ValidationError("name must be at most 255 characters")
    return name


def _norm_parent(parent_id: Any) -> Optional[str]:
    if parent_id is None:
        return None
    parent_id = str(parent_id).strip()
    return None if parent_id.lower() in _NO_PARENT else parent_id


class CategoryRepository:
    """
    CRUD over the two-level category tree (table product_categories).

    Works against databases with or without the parent_id column:
    reads treat every row as top-level, writes that need a parent raise SchemaError.
    """

    def __init__(
        self,
        db: Session,
        caps: SchemaCapabilities,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.caps = caps.probe(db)
        self.clock = clock
        self._t = Category.__table__
        self._products = Product.__table__

    # -------------------------- Helpers --------------------------

    def _select(self, columns: FrozenSet[str]):
        return select(*[self._t.c[name] for name in _COLUMNS if name in columns])

    @staticmethod
    def _record(row) -> CategoryRecord:
        m = row._mapping
        return CategoryRecord(
            id=m["id"],
            name=m["name"],
            parent_id=m.get("parent_id"),
            created_at=m.get("created_at"),
        )

    def _fetch(self, where=None, order_by=()):
        def make(columns: FrozenSet[str]):
            stmt = self._select(columns)
            if where is not None:
                stmt = stmt.where(where)
            return stmt.order_by(*order_by) if order_by else stmt

        rows = fetch_degrading(self.db, self.caps, CATEGORY_TABLE, make, optional=("parent_id",))
        return [self._record(r) for r in rows]

    def _scalar(self, stmt):
        try:
            return self.db.execute(stmt).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Category query failed: {exc}") from exc

    def _check_parent(self, parent_id: str, *, self_id: Optional[str] = None) -> None:
        if not self.caps.category_hierarchy:
            raise CATEGORY_HIERARCHY.error(
                "Cannot create subcategory: the parent_id column does not exist in the database."
            )
        if self_id is not None and parent_id == self_id:
            raise ValidationError("A category cannot be its own parent")
        try:
            parent = self.get_category(parent_id)
        except NotFoundError:
            raise NotFoundError("Parent category not found", detail={"parent_id": parent_id})
        if parent.parent_id is not None:
            raise ValidationError(
                "Only two category levels are supported; the parent must be a top-level category",
                detail={"parent_id": parent_id},
            )

    # -------------------------- Reads --------------------------

    def list_categories(self, *, require_hierarchy: bool = False) -> List[CategoryRecord]:
        """All categories ordered by name. Without parent_id every row reads as top-level."""
        if require_hierarchy and not self.caps.category_hierarchy:
            raise CATEGORY_HIERARCHY.error()
        items = self._fetch(order_by=(self._t.c.name.asc(), self._t.c.id.asc()))
        if require_hierarchy and not self.caps.category_hierarchy:
            raise CATEGORY_HIERARCHY.error()
        return items

    def get_category(self, category_id: str) -> CategoryRecord:
        items = self._fetch(where=self._t.c.id == category_id)
        if not items:
            raise NotFoundError("Category not found", detail={"id": category_id})
        return items[0]

    def get_by_name(self, name: str) -> Optional[CategoryRecord]:
        items = self._fetch(where=self._t.c.name == name, order_by=(self._t.c.id.asc(),))
        return items[0] if items else None

    def list_subcategories(self, parent_id: str) -> List[CategoryRecord]:
        if not self.caps.category_hierarchy:
            return []
        return self._fetch(where=self._t.c.parent_id == parent_id, order_by=(self._t.c.name.asc(),))

    def tree(self) -> Tuple[List[CategoryNode], List[CategoryRecord]]:
        return build_category_tree(self.list_categories())

    def count_products(self, name: str) -> int:
        row = self._scalar(select(func.count()).select_from(self._products).where(self._products.c.category == name))
        return int(row[0]) if row else 0

    # -------------------------- Mutations --------------------------

    def create_category(self, name: Any, parent_id: Any = None) -> CategoryRecord:
        name = _norm_name(name)
        parent_id = _norm_parent(parent_id)
        if parent_id is not None:
            self._check_parent(parent_id)

        new_id = str(uuid.uuid4())
        values = {"id": new_id, "name": name, "created_at": self.clock()}
        # parent_id only when set: a top-level insert must work before the migration
        if parent_id is not None:
            values["parent_id"] = parent_id

        DegradingWriter(self.db, self.caps, CATEGORY_TABLE).write(
            lambda v: insert(self._t).values(**v), values
        )
        logger.info("Category created id=%s name=%r parent_id=%s", new_id, name, parent_id)
        return self.get_category(new_id)

    def update_category(self, category_id: str, fields: Mapping[str, Any]) -> CategoryRecord:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Unknown category fields: {', '.join(sorted(unknown))}")
        current = self.get_category(category_id)

        values: dict = {}
        if "name" in fields:
            values["name"] = _norm_name(fields["name"])
        if "parent_id" in fields:
            parent_id = _norm_parent(fields["parent_id"])
            if parent_id is None:
                # no column -> everything is already top-level
                if self.caps.category_hierarchy:
                    values["parent_id"] = None
            else:
                self._check_parent(parent_id, self_id=category_id)
                if self.list_subcategories(category_id):
                    raise ValidationError(
                        "A category with subcategories cannot become a subcategory",
                        detail={"id": category_id},
                    )
                values["parent_id"] = parent_id

        if not values:
            return current

        DegradingWriter(self.db, self.caps, CATEGORY_TABLE).write(
            lambda v: update(self._t).where(self._t.c.id == category_id).values(**v), values
        )

        new_name = values.get("name")
        if new_name is not None and new_name != current.name:
            # products bind to the name; they are NOT renamed along
            stale = self.count_products(current.name)
            if stale:
                logger.warning(
                    "Category %s renamed %r -> %r; %d product(s) still reference the old name",
                    category_id, current.name, new_name, stale,
                )
        return self.get_category(category_id)

    def delete_category(self, category_id: str) -> None:
        """
        Refuses while children or products depend on the category.
        The children check is skipped when the hierarchy column is unavailable
        or turns out to be missing despite the cached capability.
        No lock spans the checks and the delete.
        """
        # id and name only: the lookup must not depend on parent_id
        category = self._scalar(select(self._t.c.id, self._t.c.name).where(self._t.c.id == category_id))
        if category is None:
            raise NotFoundError("Category not found", detail={"id": category_id})

        if self.caps.category_hierarchy:
            child = None
            try:
                child = self.db.execute(
                    select(self._t.c.id).where(self._t.c.parent_id == category_id).limit(1)
                ).first()
            except SQLAlchemyError as exc:
                self.db.rollback()
                column = schema_error_column(exc)
                if column is None:
                    raise RepositoryError(f"Category query failed: {exc}") from exc
                self.caps.forget(CATEGORY_TABLE, "parent_id")
                logger.warning("Subcategory check skipped for %s: %s", category_id, exc)
            if child is not None:
                raise HasChildrenError(
                    "Cannot delete category with subcategories. Please delete subcategories first.",
                    detail={"id": category_id},
                )
        else:
            logger.info("Subcategory check skipped for %s: parent_id column missing", category_id)

        product = self._scalar(
            select(self._products.c.id).where(self._products.c.category == category.name).limit(1)
        )
        if product is not None:
            raise HasProductsError(
                "Cannot delete category with products. Please delete or move products first.",
                detail={"id": category_id, "name": category.name},
            )

        try:
            res = self.db.execute(delete(self._t).where(self._t.c.id == category_id))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Deleting category failed: {exc}") from exc
        if not getattr(res, "rowcount", 1):
            raise NotFoundError("Category not found", detail={"id": category_id})
        logger.info("Category deleted id=%s name=%r", category_id, category.name)


__all__ = [
    "CategoryRecord",
    "CategoryNode",
    "CategoryRepository",
    "build_category_tree",
]
