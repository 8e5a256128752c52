# showroom/core/errors.py
from __future__ import annotations

from typing import Optional


class CatalogError(Exception):
    """
    Base for every error the catalog layer raises on purpose.

    `kind` is the stable machine-readable tag sent to clients; `detail` is
    merged into the JSON body.
    """
    kind = "error"

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        payload = {"kind": self.kind, "message": self.message}
        if self.detail:
            payload.update(self.detail)
        return payload


class ValidationError(CatalogError):
    """Bad input shape/size, detected before any network round trip."""
    kind = "validation"


class NotFoundError(CatalogError):
    kind = "not_found"


class ConflictError(CatalogError):
    """Delete blocked by rows that still reference the target."""
    kind = "conflict"


class HasChildrenError(ConflictError):
    kind = "has_children"


class HasProductsError(ConflictError):
    kind = "has_products"


class RepositoryError(CatalogError):
    """Catch-all transport/store failure. Never retried automatically."""
    kind = "transient"


class SchemaError(RepositoryError):
    """
    The backend lacks a column/feature that has not been migrated yet.
    Carries the remediation (which migration to apply) in `remediation`.
    """
    kind = "migration_required"

    def __init__(self, message: str, *, capability: str, remediation: str):
        super().__init__(message, detail={"capability": capability, "remediation": remediation})
        self.capability = capability
        self.remediation = remediation


class BucketNotFoundError(RepositoryError):
    kind = "bucket_missing"


class StoragePermissionError(RepositoryError):
    """Object store answered 401/403."""
    kind = "permission"


class AdminAccessDenied(CatalogError):
    kind = "permission"


__all__ = [
    "CatalogError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "HasChildrenError",
    "HasProductsError",
    "RepositoryError",
    "SchemaError",
    "BucketNotFoundError",
    "StoragePermissionError",
    "AdminAccessDenied",
]
