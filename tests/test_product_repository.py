# tests/test_product_repository.py
from __future__ import annotations

import json
import logging
import uuid

import pytest
from sqlalchemy import insert

from conftest import BUCKET, FakeStorage, make_storage
from showroom.core.errors import NotFoundError, ValidationError
from showroom.crud.product import ProductRepository, clean_specifications, decode_images, normalize_images
from showroom.models.product import Product

A = "https://i.imgur.com/a.jpg"
B = "https://i.imgur.com/b.jpg"
C = "https://i.imgur.com/c.jpg"


@pytest.fixture()
def repo(db, caps, storage, clock) -> ProductRepository:
    return ProductRepository(db, caps, storage, clock=clock)


def test_create_with_gallery_mirrors_primary(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "images": [A, " ", B, C]})
    assert p.images == [A, B, C]
    assert p.image == A
    assert p.primary_image == A


def test_create_with_single_image_only(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "image": f"  {A} "})
    assert p.image == A
    assert p.images is None
    assert p.primary_image == A


def test_images_win_over_image_on_create(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "image": C, "images": [A, B]})
    assert p.image == A


@pytest.mark.parametrize("missing", ["name", "category"])
def test_required_fields(repo, missing):
    fields = {"name": "DN50", "category": "Valves"}
    fields[missing] = "   "
    with pytest.raises(ValidationError):
        repo.create_product(fields)
    del fields[missing]
    with pytest.raises(ValidationError):
        repo.create_product(fields)


def test_unknown_fields_rejected(repo):
    with pytest.raises(ValidationError):
        repo.create_product({"name": "DN50", "category": "Valves", "price": 10})


def test_specifications_keep_only_complete_pairs_in_order(repo):
    p = repo.create_product(
        {
            "name": "DN50",
            "category": "Valves",
            "specifications": [
                {"key": "Pressure", "value": "PN40"},
                {"key": "", "value": "orphan value"},
                {"key": "Material", "value": ""},
                {"key": "Pressure", "value": "PN16"},
            ],
        }
    )
    assert p.specifications == [
        {"key": "Pressure", "value": "PN40"},
        {"key": "Pressure", "value": "PN16"},
    ]


def test_list_newest_first_and_filter_by_category(repo):
    first = repo.create_product({"name": "DN25", "category": "Ball Valves"})
    second = repo.create_product({"name": "Pump X", "category": "Pumps"})
    third = repo.create_product({"name": "DN50", "category": "Ball Valves"})

    assert [p.id for p in repo.list_products()] == [third.id, second.id, first.id]
    assert [p.id for p in repo.list_products(category="Ball Valves")] == [third.id, first.id]
    assert repo.list_products(category="Nope") == []


def test_get_missing_product(repo):
    with pytest.raises(NotFoundError):
        repo.get_product("missing")


def test_update_image_only_becomes_primary_and_keeps_rest(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "images": [A, B, C]})

    updated = repo.update_product(p.id, {"image": C})
    assert updated.images == [C, A, B]
    assert updated.image == C

    new_primary = repo.update_product(p.id, {"image": "https://i.imgur.com/new.jpg"})
    assert new_primary.images == ["https://i.imgur.com/new.jpg", C, A, B]


def test_update_replacing_and_clearing_gallery(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "images": [A, B]})

    replaced = repo.update_product(p.id, {"images": [C]})
    assert replaced.images == [C]
    assert replaced.image == C

    cleared = repo.update_product(p.id, {"images": []})
    assert cleared.images is None
    assert cleared.image is None


def test_update_partial_fields_and_timestamp(repo):
    p = repo.create_product({"name": "DN50", "category": "Valves", "description": "old"})
    updated = repo.update_product(p.id, {"description": "Full bore"})
    assert updated.description == "Full bore"
    assert updated.name == "DN50"
    assert updated.updated_at > p.updated_at
    assert repo.update_product(p.id, {}) == updated


def test_legacy_json_string_images_are_decoded(repo, db):
    pid = str(uuid.uuid4())
    db.execute(
        insert(Product.__table__).values(
            id=pid,
            name="Legacy",
            category="Valves",
            description="",
            image=A,
            # stored as a JSON *string* holding the array
            images=json.dumps([A, B]),
        )
    )
    db.commit()
    p = repo.get_product(pid)
    assert p.images == [A, B]


def test_delete_removes_managed_images_only(db, caps, clock, fake_storage):
    managed_1 = fake_storage.put("p1-1.png")
    managed_2 = fake_storage.put("p1-2.png")
    fake_storage.put("unrelated.png")
    with make_storage(fake_storage) as storage:
        repo = ProductRepository(db, caps, storage, clock=clock)
        p = repo.create_product({"name": "DN50", "category": "Valves", "images": [managed_1, A, managed_2]})
        repo.delete_product(p.id)

    assert (BUCKET, "p1-1.png") not in fake_storage.objects
    assert (BUCKET, "p1-2.png") not in fake_storage.objects
    assert (BUCKET, "unrelated.png") in fake_storage.objects
    deletes = [r for r in fake_storage.requests if r.method == "DELETE"]
    assert len(deletes) == 2


def test_delete_succeeds_even_if_image_cleanup_fails(db, caps, clock, caplog):
    fake = FakeStorage(fail_delete=True)
    managed = fake.put("p1-1.png")
    with make_storage(fake) as storage:
        repo = ProductRepository(db, caps, storage, clock=clock)
        p = repo.create_product({"name": "DN50", "category": "Valves", "image": managed})
        with caplog.at_level(logging.WARNING):
            repo.delete_product(p.id)
        with pytest.raises(NotFoundError):
            repo.get_product(p.id)
    assert (BUCKET, "p1-1.png") in fake.objects


def test_delete_missing_product(repo):
    with pytest.raises(NotFoundError):
        repo.delete_product("missing")


def test_normalizers():
    assert normalize_images(None) == []
    assert normalize_images([" a ", "", None, "b"]) == ["a", "b"]
    assert normalize_images('["a", "b"]') == ["a", "b"]
    with pytest.raises(ValidationError):
        normalize_images(42)

    assert decode_images(None) is None
    assert decode_images("not json") is None
    assert decode_images("[]") is None
    assert decode_images('{"a": 1}') is None

    assert clean_specifications(None) == []
    assert clean_specifications('[{"key": "k", "value": "v"}]') == [{"key": "k", "value": "v"}]
    with pytest.raises(ValidationError):
        clean_specifications("{oops")
