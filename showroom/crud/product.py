# showroom/crud/product.py
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from showroom.core.errors import NotFoundError, RepositoryError, ValidationError
from showroom.crud.capabilities import PRODUCT_TABLE, SchemaCapabilities
from showroom.crud.degrade import DegradingWriter, fetch_degrading
from showroom.integrations.storage import StorageGateway
from showroom.models.category import Category
from showroom.models.product import Product

logger = logging.getLogger("showroom.crud.product")

_COLUMNS = (
    "id",
    "name",
    "category",
    "description",
    "image",
    "images",
    "specifications",
    "created_at",
    "updated_at",
)
_WRITABLE = frozenset({"name", "category", "description", "image", "images", "specifications"})


@dataclass(frozen=True)
class ProductRecord:
    id: str
    name: str
    category: str
    description: str = ""
    image: Optional[str] = None
    images: Optional[List[str]] = None
    specifications: List[Dict[str, str]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def primary_image(self) -> Optional[str]:
        if self.images:
            return self.images[0]
        return self.image


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------- Normalizers --------------------------

def _norm_ref(ref: Any) -> Optional[str]:
    if ref is None:
        return None
    ref = str(ref).strip()
    return ref or None


def normalize_images(images: Any) -> List[str]:
    """Blank entries dropped, order kept. Accepts a list or a JSON-encoded list."""
    if images is None:
        return []
    if isinstance(images, str):
        images = decode_images(images) or []
    if not isinstance(images, (list, tuple)):
        raise ValidationError("images must be a list of URLs")
    return [ref for ref in (_norm_ref(x) for x in images if isinstance(x, str)) if ref]


def decode_images(raw: Any) -> Optional[List[str]]:
    """
    Legacy rows may hold the gallery as a JSON *string*; newer ones as a JSON array.
    Undecodable values read as "no gallery".
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            raw = json.loads(text)
        except ValueError:
            logger.warning("Ignoring undecodable images value: %.80r", text)
            return None
    if not isinstance(raw, list):
        return None
    out = [x.strip() for x in raw if isinstance(x, str) and x.strip()]
    return out or None


def clean_specifications(specs: Any) -> List[Dict[str, str]]:
    """Only fully populated {key, value} pairs survive; duplicates and order kept."""
    if specs is None:
        return []
    if isinstance(specs, str):
        try:
            specs = json.loads(specs) if specs.strip() else []
        except ValueError:
            raise ValidationError("specifications must be a list of {key, value} objects")
    if not isinstance(specs, (list, tuple)):
        raise ValidationError("specifications must be a list of {key, value} objects")
    out: List[Dict[str, str]] = []
    for item in specs:
        if isinstance(item, Mapping):
            key, value = item.get("key"), item.get("value")
        else:
            key, value = getattr(item, "key", None), getattr(item, "value", None)
        key = str(key).strip() if key is not None else ""
        value = str(value).strip() if value is not None else ""
        if key and value:
            out.append({"key": key, "value": value})
    return out


def _require_text(fields: Mapping[str, Any], name: str) -> str:
    value = fields.get(name)
    value = value.strip() if isinstance(value, str) else ""
    if not value:
        raise ValidationError(f"{name} is required")
    if len(value) > 255:
        raise ValidationError(f"{name} must be at most 255 characters")
    return value


class ProductRepository:
    """
    Products with an optional multi-image gallery.

    - `images` is written only when the column exists; otherwise just `image`
      (the primary) is stored and the write is reported as degraded in the log.
    - When a gallery is written, `image` always mirrors `images[0]`.
    - Deleting a product removes its object-store images best effort.
    """

    def __init__(
        self,
        db: Session,
        caps: SchemaCapabilities,
        storage: Optional[StorageGateway] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.caps = caps.probe(db)
        self.storage = storage
        self.clock = clock
        self._t = Product.__table__

    # -------------------------- Helpers --------------------------

    def _select(self, columns: FrozenSet[str]):
        return select(*[self._t.c[name] for name in _COLUMNS if name in columns])

    @staticmethod
    def _record(row) -> ProductRecord:
        m = row._mapping
        return ProductRecord(
            id=m["id"],
            name=m["name"],
            category=m["category"],
            description=m.get("description") or "",
            image=m.get("image"),
            images=decode_images(m.get("images")),
            specifications=clean_specifications(m.get("specifications")),
            created_at=m.get("created_at"),
            updated_at=m.get("updated_at"),
        )

    def _fetch(self, where=None, order_by=()):
        def make(columns: FrozenSet[str]):
            stmt = self._select(columns)
            if where is not None:
                stmt = stmt.where(where)
            return stmt.order_by(*order_by) if order_by else stmt

        rows = fetch_degrading(self.db, self.caps, PRODUCT_TABLE, make, optional=("images",))
        return [self._record(r) for r in rows]

    def _writer(self) -> DegradingWriter:
        return DegradingWriter(self.db, self.caps, PRODUCT_TABLE, optional=("images",))

    def _report_degraded(self, writer: DegradingWriter, product_id: str, images: Optional[List[str]]) -> None:
        if "images" in writer.dropped and images:
            logger.warning(
                "Product %s saved without its gallery (%d image(s)); only the primary image was kept",
                product_id, len(images),
            )

    def _warn_unknown_category(self, category: str) -> None:
        # soft link: products reference categories by name, nothing enforces it
        cat = Category.__table__
        try:
            found = self.db.execute(select(cat.c.id).where(cat.c.name == category).limit(1)).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Category lookup failed: {exc}") from exc
        if found is None:
            logger.warning("Product category %r matches no existing category", category)

    # -------------------------- Reads --------------------------

    def list_products(self, category: Optional[str] = None) -> List[ProductRecord]:
        """Newest first; `category` filters by exact category name."""
        where = self._t.c.category == category if category else None
        return self._fetch(where=where, order_by=(self._t.c.created_at.desc(), self._t.c.id.asc()))

    def get_product(self, product_id: str) -> ProductRecord:
        items = self._fetch(where=self._t.c.id == product_id)
        if not items:
            raise NotFoundError("Product not found", detail={"id": product_id})
        return items[0]

    # -------------------------- Mutations --------------------------

    def create_product(self, fields: Mapping[str, Any]) -> ProductRecord:
        unknown = set(fields) - _WRITABLE
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")
        name = _require_text(fields, "name")
        category = _require_text(fields, "category")
        self._warn_unknown_category(category)

        images = normalize_images(fields.get("images"))
        image = images[0] if images else _norm_ref(fields.get("image"))
        specs = clean_specifications(fields.get("specifications"))

        new_id = str(uuid.uuid4())
        now = self.clock()
        values: Dict[str, Any] = {
            "id": new_id,
            "name": name,
            "category": category,
            "description": str(fields.get("description") or ""),
            "image": image,
            "specifications": specs or None,
            "created_at": now,
            "updated_at": now,
        }
        if images:
            values["images"] = images

        writer = self._writer()
        writer.write(lambda v: insert(self._t).values(**v), values)
        self._report_degraded(writer, new_id, images)
        logger.info("Product created id=%s name=%r category=%r images=%d", new_id, name, category, len(images))
        return self.get_product(new_id)

    def update_product(self, product_id: str, fields: Mapping[str, Any]) -> ProductRecord:
        """
        Partial update. Image rules:
        - `images` given: replaces the gallery, `image` becomes images[0] (or None when emptied);
        - only `image` given: becomes the new primary, the rest of the gallery is kept behind it.
        """
        unknown = set(fields) - _WRITABLE
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")
        current = self.get_product(product_id)

        values: Dict[str, Any] = {}
        if "name" in fields:
            values["name"] = _require_text(fields, "name")
        if "category" in fields:
            values["category"] = _require_text(fields, "category")
            if values["category"] != current.category:
                self._warn_unknown_category(values["category"])
        if "description" in fields:
            values["description"] = str(fields.get("description") or "")
        if "specifications" in fields:
            values["specifications"] = clean_specifications(fields["specifications"]) or None

        images: Optional[List[str]] = None
        if "images" in fields:
            images = normalize_images(fields["images"])
            values["images"] = images or None
            values["image"] = images[0] if images else None
        elif "image" in fields:
            primary = _norm_ref(fields["image"])
            gallery = current.images or []
            if gallery and self.caps.product_gallery:
                rest = [ref for ref in gallery if ref != primary] if primary else gallery[1:]
                images = ([primary] if primary else []) + rest
                values["images"] = images or None
                values["image"] = images[0] if images else None
            else:
                values["image"] = primary

        if not values:
            return current
        values["updated_at"] = self.clock()

        writer = self._writer()
        writer.write(lambda v: update(self._t).where(self._t.c.id == product_id).values(**v), values)
        self._report_degraded(writer, product_id, images)
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> None:
        current = self.get_product(product_id)
        try:
            res = self.db.execute(delete(self._t).where(self._t.c.id == product_id))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Deleting product failed: {exc}") from exc
        if not getattr(res, "rowcount", 1):
            raise NotFoundError("Product not found", detail={"id": product_id})
        logger.info("Product deleted id=%s name=%r", product_id, current.name)
        self._cleanup_assets(current)

    def _cleanup_assets(self, product: ProductRecord) -> int:
        """Removes managed images of a deleted product; failures are logged, never raised."""
        if self.storage is None:
            return 0
        refs: List[str] = []
        for ref in _iter_refs(product.image, product.images):
            if ref not in refs:
                refs.append(ref)
        removed = 0
        for ref in refs:
            if not self.storage.is_managed_url(ref):
                continue
            try:
                if self.storage.remove(ref):
                    removed += 1
            except Exception:
                logger.warning("Image cleanup failed for product %s: %s", product.id, ref, exc_info=True)
        return removed


def _iter_refs(image: Optional[str], images: Optional[Iterable[str]]) -> Iterable[str]:
    if image:
        yield image
    for ref in images or ():
        if ref:
            yield ref


__all__ = [
    "ProductRecord",
    "ProductRepository",
    "normalize_images",
    "decode_images",
    "clean_specifications",
]
