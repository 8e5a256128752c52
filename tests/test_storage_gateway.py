# tests/test_storage_gateway.py
from __future__ import annotations

import httpx
import pytest

from conftest import BUCKET, PUBLIC_PREFIX, STORAGE_BASE, FakeStorage, make_storage
from showroom.core.errors import BucketNotFoundError, RepositoryError, StoragePermissionError, ValidationError
from showroom.integrations.storage import BucketStatus, StorageConfig, StorageGateway

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# --- upload -------------------------------------------------------------------
def test_upload_returns_public_url_and_never_overwrites(storage, fake_storage):
    url = storage.upload(PNG, filename="Valve.PNG", content_type="image/png", product_id="p1")

    assert url.startswith(PUBLIC_PREFIX + "p1-")
    assert url.endswith(".png")
    key = url[len(PUBLIC_PREFIX):]
    assert fake_storage.objects[(BUCKET, key)] == PNG

    (req,) = fake_storage.uploads()
    assert req.headers["x-upsert"] == "false"
    assert req.headers["cache-control"] == "max-age=3600"
    assert req.headers["content-type"] == "image/png"
    assert req.headers["authorization"] == "Bearer test-key"


def test_upload_without_product_id_uses_random_key(storage):
    url = storage.upload(PNG, filename="photo.jpg", content_type="image/jpeg")
    key = url[len(PUBLIC_PREFIX):]
    assert key.startswith("product-") and key.endswith(".jpg")


def test_upload_extension_from_content_type_when_filename_has_none(storage):
    url = storage.upload(PNG, filename="blob", content_type="image/png")
    assert url.endswith(".png")


@pytest.mark.parametrize("content_type", ["application/pdf", "text/plain", None, ""])
def test_upload_rejects_non_images_before_any_request(storage, fake_storage, content_type):
    with pytest.raises(ValidationError) as ei:
        storage.upload(b"%PDF", filename="doc.pdf", content_type=content_type)
    assert ei.value.message == "File must be an image"
    assert fake_storage.requests == []


def test_upload_rejects_oversize_before_any_request(storage, fake_storage):
    too_big = b"\x00" * (5 * 1024 * 1024 + 1)
    with pytest.raises(ValidationError) as ei:
        storage.upload(too_big, filename="big.png", content_type="image/png")
    assert ei.value.message == "Image size must be less than 5MB"
    assert fake_storage.requests == []


def test_upload_exactly_at_limit_is_allowed(storage):
    exact = b"\x00" * (5 * 1024 * 1024)
    assert storage.upload(exact, filename="ok.png", content_type="image/png").startswith(PUBLIC_PREFIX)


def test_upload_to_missing_bucket_raises_with_instructions():
    fake = FakeStorage(buckets=())
    with make_storage(fake) as gw:
        with pytest.raises(BucketNotFoundError) as ei:
            gw.upload(PNG, filename="a.png", content_type="image/png")
    assert ei.value.kind == "bucket_missing"
    assert BUCKET in ei.value.message and "Public" in ei.value.message
    assert fake.uploads() == []


def test_upload_permission_denied():
    fake = FakeStorage(deny_upload=True)
    with make_storage(fake) as gw:
        with pytest.raises(StoragePermissionError) as ei:
            gw.upload(PNG, filename="a.png", content_type="image/png")
    assert ei.value.kind == "permission"


def test_upload_attempted_when_bucket_status_unknown():
    fake = FakeStorage(list_buckets="forbidden")

    def handler(request: httpx.Request) -> httpx.Response:
        if "/object/list/" in request.url.path:
            return httpx.Response(403, json={"error": "Unauthorized", "message": "not allowed to list"})
        return fake.handle(request)

    gw = StorageGateway(
        StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET),
        transport=httpx.MockTransport(handler),
    )
    with gw:
        assert gw.probe_exists() is BucketStatus.UNKNOWN
        url = gw.upload(PNG, filename="a.png", content_type="image/png")
    assert url.startswith(PUBLIC_PREFIX)


def test_upload_transport_failure_is_repository_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gw = StorageGateway(StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET), transport=httpx.MockTransport(handler))
    with gw:
        with pytest.raises(RepositoryError) as ei:
            gw.upload(PNG, filename="a.png", content_type="image/png")
    assert ei.value.kind == "transient"


# --- probe --------------------------------------------------------------------
def test_probe_exists_from_bucket_listing(storage):
    assert storage.probe_exists() is BucketStatus.EXISTS


def test_probe_falls_back_to_scoped_listing():
    fake = FakeStorage(list_buckets="scoped")
    with make_storage(fake) as gw:
        assert gw.probe_exists() is BucketStatus.EXISTS
    assert any("/object/list/" in r.url.path for r in fake.requests)


def test_probe_absent_only_when_store_says_bucket_not_found():
    with make_storage(FakeStorage(buckets=(), list_buckets="scoped")) as gw:
        assert gw.probe_exists() is BucketStatus.ABSENT


def test_probe_unknown_on_server_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    gw = StorageGateway(StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET), transport=httpx.MockTransport(handler))
    with gw:
        assert gw.probe_exists() is BucketStatus.UNKNOWN


def test_probe_unknown_on_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    gw = StorageGateway(StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET), transport=httpx.MockTransport(handler))
    with gw:
        assert gw.probe_exists() is BucketStatus.UNKNOWN


# --- remove -------------------------------------------------------------------
def test_remove_deletes_by_key(storage, fake_storage):
    url = fake_storage.put("p1-1.png")
    assert storage.remove(url) is True
    assert (BUCKET, "p1-1.png") not in fake_storage.objects

    (req,) = [r for r in fake_storage.requests if r.method == "DELETE"]
    assert req.url.path == f"/storage/v1/object/{BUCKET}"


def test_remove_never_raises():
    fake = FakeStorage(fail_delete=True)
    url = fake.put("p1-1.png")
    with make_storage(fake) as gw:
        assert gw.remove(url) is False
        assert gw.remove("https://elsewhere.test/some/image.png") is False

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    gw = StorageGateway(StorageConfig(base_url=STORAGE_BASE, bucket=BUCKET), transport=httpx.MockTransport(handler))
    with gw:
        assert gw.remove(url) is False


# --- URLs / info --------------------------------------------------------------
def test_object_key_and_managed_urls(storage):
    url = PUBLIC_PREFIX + "folder/p1-1.png"
    assert storage.object_key(url) == "folder/p1-1.png"
    assert storage.is_managed_url(url)
    assert storage.public_url("folder/p1-1.png") == url

    assert not storage.is_managed_url("https://drive.google.com/file/d/abc/view")
    assert not storage.is_managed_url(f"https://other.test/storage/v1/object/public/{BUCKET}/x.png")
    assert not storage.is_managed_url(f"{STORAGE_BASE}/storage/v1/object/public/other-bucket/x.png")
    assert not storage.is_managed_url(None)


def test_storage_info_counts_and_sums(fake_storage):
    for i in range(5):
        fake_storage.put(f"p{i}.png", b"\x00" * 1024 * 1024)
    with make_storage(fake_storage) as gw:
        info = gw.storage_info(page_size=2)
    assert info is not None
    assert info.file_count == 5
    assert info.total_size == 5 * 1024 * 1024
    assert info.total_size_mb == "5.00"


def test_storage_info_none_when_bucket_missing():
    with make_storage(FakeStorage(buckets=())) as gw:
        assert gw.storage_info() is None


# --- object keys ----------------------------------------------------------------
@pytest.mark.parametrize(
    "filename, content_type, ext",
    [
        ("a.png/../../other-bucket/evil", "image/png", "png"),
        ("photo.j/pg", "image/jpeg", "jpg"),
        ("valve.averyveryverylongextension", "image/png", "png"),
        ("../../x", None, "bin"),
        ("shot.WEBP", "image/webp", "webp"),
    ],
)
def test_make_key_keeps_extension_safe(storage, filename, content_type, ext):
    key = storage.make_key(filename, content_type)
    assert "/" not in key and ".." not in key
    assert key.startswith("product-")
    assert key.rsplit(".", 1)[-1] == ext


@pytest.mark.parametrize("product_id", ["../other-bucket", "p1/evil", "p 1", "", "a" * 65])
def test_make_key_rejects_unsafe_product_id(storage, product_id):
    with pytest.raises(ValidationError):
        storage.make_key("a.png", "image/png", product_id)


def test_upload_with_unsafe_product_id_sends_nothing(storage, fake_storage):
    with pytest.raises(ValidationError):
        storage.upload(PNG, filename="a.png", content_type="image/png", product_id="../../evil")
    assert fake_storage.requests == []
