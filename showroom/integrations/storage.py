from __future__ import annotations

import logging
import mimetypes
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from showroom.core.errors import (
    BucketNotFoundError,
    RepositoryError,
    StoragePermissionError,
    ValidationError,
)
from showroom.core.settings import Settings, settings as default_settings

logger = logging.getLogger("showroom.storage")

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
CACHE_CONTROL_S = 3600

_EXT_RE = re.compile(r"[a-z0-9]{1,10}")
_PRODUCT_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")

# =========================
# Models
# =========================

class BucketStatus(str, Enum):
    """Tri-state: permission scoping can make existence undecidable."""
    EXISTS = "exists"
    ABSENT = "absent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StorageConfig:
    base_url: str
    bucket: str
    api_key: Optional[str] = None
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    timeout: float = 15.0
    http_log: bool = False

    @classmethod
    def from_settings(cls, s: Settings = default_settings) -> "StorageConfig":
        return cls(
            base_url=s.STORAGE_URL,
            bucket=s.STORAGE_BUCKET,
            api_key=s.STORAGE_KEY,
            max_upload_bytes=s.STORAGE_MAX_UPLOAD_BYTES,
            timeout=s.STORAGE_TIMEOUT_S,
            http_log=s.STORAGE_HTTP_LOG,
        )


@dataclass(frozen=True)
class StorageInfo:
    file_count: int
    total_size: int

    @property
    def total_size_mb(self) -> str:
        return f"{self.total_size / (1024 * 1024):.2f}"


# =========================
# Helpers
# =========================

def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except Exception:
        # some error pages are text/html
        return {"raw": resp.text, "status": resp.status_code}


def _error_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return str(payload)
    parts = [str(payload[k]) for k in ("error", "message", "raw") if payload.get(k)]
    return " | ".join(parts)


def _declared_status(resp: httpx.Response, payload: Any) -> int:
    # the storage API sometimes answers 400 with the real status in the body
    if isinstance(payload, dict):
        try:
            return int(payload.get("statusCode") or resp.status_code)
        except (TypeError, ValueError):
            pass
    return resp.status_code


def _is_bucket_missing(resp: httpx.Response, payload: Any) -> bool:
    return "bucket not found" in _error_text(payload).lower()


def _is_denied(resp: httpx.Response, payload: Any) -> bool:
    if resp.status_code in (401, 403) or _declared_status(resp, payload) in (401, 403):
        return True
    return "row-level security" in _error_text(payload).lower()


def _bucket_instructions(bucket: str) -> str:
    return (
        f'Storage bucket "{bucket}" not found. Create it in the storage dashboard: '
        f'Storage -> New bucket -> name it "{bucket}" -> set it to Public -> Create bucket.'
    )


# =========================
# Gateway
# =========================

class StorageGateway:
    """
    Product-image bucket on a Supabase-Storage compatible REST API.

    - upload(): validates type/size before any network call, never overwrites.
    - remove(): best effort, never raises.
    - probe_exists(): EXISTS / ABSENT / UNKNOWN.
    - No automatic retries; callers see RepositoryError and decide.
    """

    def __init__(
        self,
        cfg: StorageConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cfg = cfg
        self._clock = clock
        headers = {"Accept": "application/json"}
        if cfg.api_key:
            headers["Authorization"] = f"Bearer {cfg.api_key}"
            headers["apikey"] = cfg.api_key
        self._client = httpx.Client(
            base_url=cfg.base_url.rstrip("/") + "/storage/v1/",
            timeout=httpx.Timeout(cfg.timeout, connect=min(cfg.timeout, 10.0)),
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, s: Settings = default_settings, **kwargs) -> "StorageGateway":
        return cls(StorageConfig.from_settings(s), **kwargs)

    def __enter__(self) -> "StorageGateway":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._client.close()

    # --- transport ---

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        started = time.perf_counter()
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RepositoryError(f"Storage unreachable: {exc}") from exc
        if self.cfg.http_log:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            log = logger.warning if resp.status_code >= 400 else logger.info
            log("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed_ms)
        return resp

    # --- URL <-> key ---

    def public_url(self, key: str) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/storage/v1/object/public/{self.cfg.bucket}/{key.lstrip('/')}"

    def object_key(self, public_url: str) -> Optional[str]:
        """Everything after the bucket-name path segment, or None."""
        try:
            path = urlsplit(public_url).path
        except ValueError:
            return None
        parts = path.split("/")
        if self.cfg.bucket not in parts:
            return None
        key = "/".join(parts[parts.index(self.cfg.bucket) + 1:])
        return key or None

    def is_managed_url(self, url: Optional[str]) -> bool:
        if not url:
            return False
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            return False
        own = urlsplit(self.cfg.base_url)
        if (parts.hostname or "").lower() != (own.hostname or "").lower():
            return False
        return f"/object/public/{self.cfg.bucket}/" in parts.path and self.object_key(url) is not None

    # --- validation / naming ---

    def validate(self, content_type: Optional[str], size: int) -> None:
        if not content_type or not content_type.lower().startswith("image/"):
            raise ValidationError("File must be an image", detail={"content_type": content_type})
        if size > self.cfg.max_upload_bytes:
            limit_mb = self.cfg.max_upload_bytes / (1024 * 1024)
            raise ValidationError(
                f"Image size must be less than {limit_mb:g}MB",
                detail={"size": size, "max_bytes": self.cfg.max_upload_bytes},
            )

    def make_key(self, filename: Optional[str], content_type: Optional[str], product_id: Optional[str] = None) -> str:
        """Flat key under the bucket root: no path separators, extension limited to [a-z0-9]."""
        if product_id is not None and not _PRODUCT_ID_RE.fullmatch(product_id):
            raise ValidationError(
                "product_id may only contain letters, digits, underscores and hyphens",
                detail={"product_id": product_id},
            )
        ext = ""
        if filename and "." in filename:
            ext = filename.rsplit(".", 1)[-1].lower()
        if not _EXT_RE.fullmatch(ext) and content_type:
            ext = (mimetypes.guess_extension(content_type) or "").lstrip(".").lower()
        if not _EXT_RE.fullmatch(ext):
            ext = "bin"
        stamp = int(self._clock() * 1000)
        if product_id:
            return f"{product_id}-{stamp}.{ext}"
        return f"product-{stamp}-{uuid.uuid4().hex[:7]}.{ext}"

    # --- operations ---

    def upload(
        self,
        content: bytes,
        *,
        filename: Optional[str],
        content_type: Optional[str],
        product_id: Optional[str] = None,
    ) -> str:
        self.validate(content_type, len(content))
        key = self.make_key(filename, content_type, product_id)

        if self.probe_exists() is BucketStatus.ABSENT:
            raise BucketNotFoundError(_bucket_instructions(self.cfg.bucket), detail={"bucket": self.cfg.bucket})

        resp = self._send(
            "POST",
            f"object/{self.cfg.bucket}/{key}",
            content=content,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "Cache-Control": f"max-age={CACHE_CONTROL_S}",
                "x-upsert": "false",
            },
        )
        if resp.is_success:
            url = self.public_url(key)
            logger.info("Uploaded %s (%d bytes) to bucket %s", key, len(content), self.cfg.bucket)
            return url

        payload = _safe_json(resp)
        if _is_bucket_missing(resp, payload):
            raise BucketNotFoundError(_bucket_instructions(self.cfg.bucket), detail={"bucket": self.cfg.bucket})
        if _is_denied(resp, payload):
            raise StoragePermissionError(
                f"Not allowed to upload to bucket {self.cfg.bucket}: {_error_text(payload)}",
                detail={"status_code": resp.status_code},
            )
        raise RepositoryError(
            f"Upload failed with status {resp.status_code}: {_error_text(payload)}",
            detail={"status_code": resp.status_code},
        )

    def remove(self, public_url: str) -> bool:
        """True if the store confirmed the delete. Never raises."""
        key = self.object_key(public_url)
        if not key:
            logger.warning("Not a %s bucket URL, nothing to delete: %s", self.cfg.bucket, public_url)
            return False
        try:
            resp = self._send("DELETE", f"object/{self.cfg.bucket}", json={"prefixes": [key]})
        except RepositoryError as exc:
            logger.warning("Deleting %s failed: %s", key, exc)
            return False
        if not resp.is_success:
            logger.warning("Deleting %s failed: %s %s", key, resp.status_code, _error_text(_safe_json(resp)))
            return False
        logger.info("Deleted %s from bucket %s", key, self.cfg.bucket)
        return True

    def _list_bucket(self, limit: int, offset: int = 0) -> httpx.Response:
        return self._send(
            "POST",
            f"object/list/{self.cfg.bucket}",
            json={"prefix": "", "limit": limit, "offset": offset, "sortBy": {"column": "name", "order": "asc"}},
        )

    def probe_exists(self) -> BucketStatus:
        # 1) authoritative: list all buckets (often hidden from non-service keys)
        try:
            resp = self._send("GET", "bucket")
        except RepositoryError:
            return BucketStatus.UNKNOWN
        if resp.is_success:
            payload = _safe_json(resp)
            names = {b.get("name") or b.get("id") for b in payload} if isinstance(payload, list) else set()
            if self.cfg.bucket in names:
                return BucketStatus.EXISTS
            # an empty/partial list can be permission scoping, not absence
        else:
            logger.info("Bucket listing unavailable (%s); trying scoped listing", resp.status_code)

        # 2) bounded listing scoped to our bucket
        try:
            scoped = self._list_bucket(limit=1)
        except RepositoryError:
            return BucketStatus.UNKNOWN
        if scoped.is_success:
            return BucketStatus.EXISTS
        if _is_bucket_missing(scoped, _safe_json(scoped)):
            return BucketStatus.ABSENT
        return BucketStatus.UNKNOWN

    def storage_info(self, *, page_size: int = 1000) -> Optional[StorageInfo]:
        """File count + total bytes of the bucket root; None when the bucket is not confirmed."""
        if self.probe_exists() is not BucketStatus.EXISTS:
            return None
        entries: List[Dict[str, Any]] = []
        offset = 0
        while True:
            resp = self._list_bucket(limit=page_size, offset=offset)
            if not resp.is_success:
                raise RepositoryError(
                    f"Listing bucket {self.cfg.bucket} failed: {_error_text(_safe_json(resp))}",
                    detail={"status_code": resp.status_code},
                )
            batch = _safe_json(resp)
            if not isinstance(batch, list) or not batch:
                break
            entries.extend(batch)
            if len(batch) < page_size:
                break
            offset += page_size
        total = sum(int((e.get("metadata") or {}).get("size") or 0) for e in entries)
        return StorageInfo(file_count=len(entries), total_size=total)


__all__ = [
    "BucketStatus",
    "StorageConfig",
    "StorageInfo",
    "StorageGateway",
    "MAX_UPLOAD_BYTES",
]
