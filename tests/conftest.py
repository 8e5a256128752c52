# tests/conftest.py
from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

# before any showroom import: module-level engine/settings read these
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_URL", "http://storage.test")
os.environ.setdefault("STORAGE_BUCKET", "product-images")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from showroom.crud.capabilities import SchemaCapabilities
from showroom.database import Base, make_engine
from showroom.integrations.storage import StorageConfig, StorageGateway
from showroom.models import category, product, user_role  # noqa: F401
from showroom.models.user_role import ADMIN_ROLE, UserRole

STORAGE_BASE = "http://storage.test"
BUCKET = "product-images"
PUBLIC_PREFIX = f"{STORAGE_BASE}/storage/v1/object/public/{BUCKET}/"

# flat categories, single image: the shape before the two later migrations
LEGACY_DDL = (
    """
    CREATE TABLE product_categories (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE products (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        category VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        image TEXT,
        specifications JSON,
        created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE user_roles (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL UNIQUE,
        role VARCHAR(16) NOT NULL DEFAULT 'user',
        created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


# --- Utilities ----------------------------------------------------------------
def _dump_response(r: httpx.Response) -> str:
    """Compact diagnostic for assertion messages."""
    try:
        j = r.json()
    except Exception:
        j = None
    snippet = (r.text or "")[:500].replace("\n", "\\n")
    return (
        f"status={r.status_code} {r.request.method} {r.request.url} "
        f"json={j!r} text='{snippet}...'"
    )


def _assert_status(r: httpx.Response, expected: int | tuple[int, ...]):
    if isinstance(expected, int):
        ok = r.status_code == expected
        exp_str = str(expected)
    else:
        ok = r.status_code in expected
        exp_str = "|".join(map(str, expected))
    assert ok, f"expected {exp_str} but got: {_dump_response(r)}"


class Ticker:
    """Deterministic clock: every call is one second later."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeStorage:
    """
    In-memory stand-in for the storage REST API, served through httpx.MockTransport.
    Error bodies follow the real service: HTTP 400 with the actual status in `statusCode`.
    """

    def __init__(
        self,
        buckets: Iterable[str] = (BUCKET,),
        *,
        list_buckets: str = "all",
        deny_upload: bool = False,
        fail_delete: bool = False,
    ):
        self.buckets = set(buckets)
        # "all" | "scoped" (empty list, as for anon keys) | "forbidden"
        self.list_buckets = list_buckets
        self.deny_upload = deny_upload
        self.fail_delete = fail_delete
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.requests: List[httpx.Request] = []

    @staticmethod
    def _error(status: str, error: str, message: str) -> httpx.Response:
        return httpx.Response(400, json={"statusCode": status, "error": error, "message": message})

    def uploads(self) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == "POST" and "/object/" in r.url.path and "/object/list/" not in r.url.path
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prefix = "/storage/v1/"
        assert request.url.path.startswith(prefix), request.url
        rest = request.url.path[len(prefix):]

        if request.method == "GET" and rest == "bucket":
            if self.list_buckets == "forbidden":
                return self._error("403", "Unauthorized", "permission denied")
            if self.list_buckets == "scoped":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{"id": b, "name": b, "public": True} for b in sorted(self.buckets)])

        if request.method == "POST" and rest.startswith("object/list/"):
            bucket = rest[len("object/list/"):]
            if bucket not in self.buckets:
                return self._error("404", "Bucket not found", "Bucket not found")
            body = json.loads(request.content or b"{}")
            limit, offset = int(body.get("limit", 100)), int(body.get("offset", 0))
            names = sorted(k for (b, k) in self.objects if b == bucket)
            page = names[offset:offset + limit]
            return httpx.Response(
                200,
                json=[{"name": n, "metadata": {"size": len(self.objects[(bucket, n)])}} for n in page],
            )

        if request.method == "POST" and rest.startswith("object/"):
            bucket, key = rest[len("object/"):].split("/", 1)
            if bucket not in self.buckets:
                return self._error("404", "Bucket not found", "Bucket not found")
            if self.deny_upload:
                return self._error("403", "Unauthorized", "new row violates row-level security policy")
            if (bucket, key) in self.objects:
                return self._error("409", "Duplicate", "The resource already exists")
            self.objects[(bucket, key)] = request.content
            return httpx.Response(200, json={"Key": f"{bucket}/{key}"})

        if request.method == "DELETE" and rest.startswith("object/"):
            if self.fail_delete:
                return httpx.Response(500, json={"error": "internal", "message": "boom"})
            bucket = rest[len("object/"):]
            prefixes = json.loads(request.content)["prefixes"]
            removed = [p for p in prefixes if self.objects.pop((bucket, p), None) is not None]
            return httpx.Response(200, json=[{"name": p} for p in removed])

        return httpx.Response(404, json={"error": "not_found", "message": f"no route {request.method} {rest}"})

    def put(self, key: str, content: bytes = b"x", bucket: str = BUCKET) -> str:
        self.objects[(bucket, key)] = content
        return PUBLIC_PREFIX + key


def make_storage(fake: FakeStorage, **cfg) -> StorageGateway:
    counter = iter(range(1_700_000_000, 1_800_000_000))
    return StorageGateway(
        StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET, api_key="test-key", **cfg),
        transport=httpx.MockTransport(fake.handle),
        clock=lambda: float(next(counter)),
    )


# --- Fixtures -----------------------------------------------------------------
@pytest.fixture()
def engine() -> Engine:
    eng = make_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def legacy_engine() -> Engine:
    eng = make_engine("sqlite://")
    with eng.begin() as conn:
        for ddl in LEGACY_DDL:
            conn.exec_driver_sql(ddl)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine) -> Session:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    with factory() as session:
        yield session


@pytest.fixture()
def legacy_db(legacy_engine) -> Session:
    factory = sessionmaker(bind=legacy_engine, expire_on_commit=False)
    with factory() as session:
        yield session


@pytest.fixture()
def caps() -> SchemaCapabilities:
    return SchemaCapabilities()


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def storage(fake_storage) -> StorageGateway:
    gw = make_storage(fake_storage)
    yield gw
    gw.close()


@pytest.fixture()
def clock() -> Ticker:
    return Ticker()


def add_role(eng: Engine, user_id: str, role: str = ADMIN_ROLE) -> None:
    factory = sessionmaker(bind=eng, expire_on_commit=False)
    with factory() as session:
        session.add(UserRole(user_id=user_id, role=role))
        session.commit()


def _client_for(eng: Engine, storage: StorageGateway) -> TestClient:
    from showroom.main import create_app

    app = create_app(engine=eng, storage=storage, capabilities=SchemaCapabilities())
    return TestClient(app)


@pytest.fixture()
def client(engine, storage):
    with _client_for(engine, storage) as c:
        yield c


@pytest.fixture()
def legacy_client(legacy_engine, storage):
    with _client_for(legacy_engine, storage) as c:
        yield c


def sign_in(c: TestClient, eng: Engine, user_id: str = "admin-1") -> Dict[str, str]:
    add_role(eng, user_id, ADMIN_ROLE)
    r = c.post("/admin/session", json={"user_id": user_id})
    _assert_status(r, 201)
    return {"X-Admin-Session": r.json()["token"]}


@pytest.fixture()
def admin_headers(client, engine) -> Dict[str, str]:
    return sign_in(client, engine)


@pytest.fixture()
def legacy_admin_headers(legacy_client, legacy_engine) -> Dict[str, str]:
    return sign_in(legacy_client, legacy_engine)
