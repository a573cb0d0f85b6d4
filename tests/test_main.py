from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.errors import PersistenceError
from app.main import create_app, get_blob_store, get_shopify_api
from app.models import DigitalProduct, ShopInstallation
from app.repository import DigitalProductsRepository, ShopInstallationsRepository
from app.shopify_api import ShippingUpdateResult, ShopifyApiError, TagMergeResult

V1 = "gid://shopify/ProductVariant/1"
V2 = "gid://shopify/ProductVariant/2"
PRODUCT_GID = "gid://shopify/Product/555"


class FakeShopifyClient:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.unexpected_error: Exception | None = None
        self.shipping_calls: list[tuple[str, bool]] = []
        self.tag_calls: list[str] = []

    async def set_requires_shipping(self, *, shop_domain, access_token, variant_gid, requires_shipping):
        self.shipping_calls.append((variant_gid, requires_shipping))
        if self.unexpected_error is not None:
            raise self.unexpected_error
        if self.fail:
            raise ShopifyApiError(message="Shopify API call failed (503): unavailable")
        return ShippingUpdateResult(
            variant_gid=variant_gid,
            requires_shipping=requires_shipping,
            status=True,
            changed=True,
        )

    async def merge_product_tags(self, *, shop_domain, access_token, product_gid, tags):
        self.tag_calls.append(product_gid)
        if self.fail:
            raise ShopifyApiError(message="Admin GraphQL errors: unavailable")
        return TagMergeResult(product_gid=product_gid, status=True, changed=True, tags=list(tags))


@pytest.fixture()
def shopify_client() -> FakeShopifyClient:
    return FakeShopifyClient()


@pytest.fixture()
def client(db_session, blob_store, shopify_client):
    app = create_app()
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_shopify_api] = lambda: shopify_client
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def installation(db_session):
    record = ShopInstallation(shop_domain="example.myshopify.com", admin_access_token="shpat_test")
    db_session.add(record)
    db_session.commit()
    return record


def _product_data(**overrides) -> str:
    payload = {
        "productId": PRODUCT_GID,
        "title": "Sample Pack",
        "productImage": "https://cdn.example.com/pack.png",
        "status": "ACTIVE",
        "fileType": "variantFile",
        "totalVariants": 2,
        "variants": [
            {"id": V1, "sku": "SP-1", "title": "Small"},
            {"id": V2, "sku": "SP-2", "title": "Large"},
        ],
    }
    payload.update(overrides)
    return json.dumps(payload)


def _stored_product(db_session) -> DigitalProduct:
    db_session.expire_all()
    return db_session.scalars(select(DigitalProduct)).one()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/").text == "Digital Product Uploader API is running."


def test_create_product_with_variant_files(client, db_session, s3_client, shopify_client, installation):
    response = client.post(
        "/api/upload",
        data={"productData": _product_data()},
        files=[
            (f"variantFiles[{V1}]", ("small pack.zip", b"small", "application/zip")),
            (f"variantFiles[{V2}]", ("large.zip", b"large", "application/zip")),
        ],
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Product created successfully", "status": True}

    product = _stored_product(db_session)
    assert product.file_type == "variant"
    keys = [variant.file_key for variant in product.variants]
    assert keys[0].endswith("/555/small_pack.zip")
    assert keys[1].endswith("/555/large.zip")
    assert set(keys) <= set(s3_client.objects)
    assert sorted(shopify_client.shipping_calls) == [(V1, False), (V2, False)]
    assert shopify_client.tag_calls == [PRODUCT_GID]


def test_update_switching_to_common_file_deletes_orphans(client, db_session, s3_client, installation):
    client.post(
        "/api/upload",
        data={"productData": _product_data()},
        files=[
            (f"variantFiles[{V1}]", ("a.pdf", b"a", "application/pdf")),
            (f"variantFiles[{V2}]", ("b.pdf", b"b", "application/pdf")),
        ],
    )
    created = _stored_product(db_session)
    old_keys = {variant.file_key for variant in created.variants}

    response = client.post(
        "/api/upload",
        data={"productData": _product_data(id=created.id, fileType="commonFile")},
        files=[("file", ("bundle.zip", b"bundle", "application/zip"))],
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Product updated successfully", "status": True}
    updated = _stored_product(db_session)
    assert updated.id == created.id
    assert updated.file_type == "common"
    new_keys = {variant.file_key for variant in updated.variants}
    assert len(new_keys) == 1
    assert next(iter(new_keys)).endswith("/555/bundle.zip")
    assert sorted(s3_client.deleted) == sorted(old_keys)


def test_update_removing_variant_reverts_it_to_physical(client, db_session, shopify_client, installation):
    client.post("/api/upload", data={"productData": _product_data()})
    created = _stored_product(db_session)
    shopify_client.shipping_calls.clear()

    response = client.post(
        "/api/upload",
        data={
            "productData": _product_data(
                id=created.id,
                totalVariants=1,
                variants=[{"id": V1, "sku": "SP-1"}],
            )
        },
    )

    assert response.status_code == 200
    assert [variant.variant_id for variant in _stored_product(db_session).variants] == [V1]
    assert shopify_client.shipping_calls[0] == (V2, True)
    assert (V1, False) in shopify_client.shipping_calls


def test_duplicate_product_is_rejected(client, db_session):
    client.post("/api/upload", data={"productData": _product_data()})

    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 400
    assert response.json() == {"error": "Product already exists"}


def test_missing_product_data(client):
    response = client.post("/api/upload", data={"note": "hello"})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Missing productData field")


def test_invalid_product_data_json(client):
    response = client.post("/api/upload", data={"productData": "{not json"})

    assert response.status_code == 400
    assert "not valid JSON" in response.json()["error"]


def test_unknown_product_id_on_update(client):
    response = client.post("/api/upload", data={"productData": _product_data(id="f" * 32)})

    assert response.status_code == 400
    assert response.json() == {"error": "Existing product not found"}


def test_persistence_failure_returns_server_error(client, monkeypatch):
    def failing_save(self, state, *, existing_pk=None):
        raise PersistenceError("Failed to save digital product")

    monkeypatch.setattr(DigitalProductsRepository, "save", failing_save)

    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to save digital product"}


def test_storefront_failures_do_not_fail_the_upload(client, db_session, shopify_client, installation):
    shopify_client.fail = True

    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 200
    assert response.json()["status"] is True
    assert len(shopify_client.shipping_calls) == 2
    assert _stored_product(db_session).product_id == PRODUCT_GID


def test_storefront_sync_is_skipped_without_installation(client, db_session, shopify_client):
    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 200
    assert shopify_client.shipping_calls == []
    assert shopify_client.tag_calls == []


def test_orphan_delete_failures_do_not_fail_the_upload(client, db_session, s3_client):
    client.post(
        "/api/upload",
        data={"productData": _product_data(fileType="commonFile")},
        files=[("file", ("old.zip", b"old", "application/zip"))],
    )
    created = _stored_product(db_session)
    old_key = created.variants[0].file_key
    s3_client.failing_delete_keys.add(old_key)

    response = client.post(
        "/api/upload",
        data={"productData": _product_data(id=created.id, fileType="commonFile")},
        files=[("file", ("new.zip", b"new", "application/zip"))],
    )

    assert response.status_code == 200
    assert old_key in s3_client.objects
    assert {variant.file_key for variant in _stored_product(db_session).variants} != {old_key}


def test_switch_to_common_with_echoed_files_shares_first_file(client, db_session, s3_client, installation):
    client.post(
        "/api/upload",
        data={"productData": _product_data()},
        files=[
            (f"variantFiles[{V1}]", ("a.pdf", b"a", "application/pdf")),
            (f"variantFiles[{V2}]", ("b.pdf", b"b", "application/pdf")),
        ],
    )
    created = _stored_product(db_session)
    first_key, second_key = (variant.file_key for variant in created.variants)
    echoed = [
        {
            "id": variant.variant_id,
            "sku": variant.sku,
            "fileKey": variant.file_key,
            "fileUrl": variant.file_url,
            "fileName": variant.file_name,
            "fileSize": variant.file_size,
        }
        for variant in created.variants
    ]

    response = client.post(
        "/api/upload",
        data={"productData": _product_data(id=created.id, fileType="commonFile", variants=echoed)},
    )

    assert response.status_code == 200
    updated = _stored_product(db_session)
    assert updated.file_type == "common"
    assert [variant.file_key for variant in updated.variants] == [first_key, first_key]
    assert s3_client.deleted == [second_key]


def test_duplicate_variant_ids_are_rejected_before_upload(client, db_session, s3_client):
    response = client.post(
        "/api/upload",
        data={"productData": _product_data(variants=[{"id": V1}, {"id": V1}])},
        files=[(f"variantFiles[{V1}]", ("a.pdf", b"a", "application/pdf"))],
    )

    assert response.status_code == 400
    assert "Duplicate variant id" in response.json()["error"]
    assert s3_client.objects == {}
    assert db_session.scalars(select(DigitalProduct)).first() is None


def test_unexpected_storefront_errors_do_not_fail_the_upload(client, db_session, shopify_client, installation):
    shopify_client.unexpected_error = httpx.InvalidURL("bad shop domain")

    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 200
    assert response.json() == {"message": "Product created successfully", "status": True}
    assert _stored_product(db_session).product_id == PRODUCT_GID


def test_installation_lookup_errors_do_not_fail_the_upload(client, db_session, shopify_client, monkeypatch):
    def failing_lookup(self, shop_domain):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(ShopInstallationsRepository, "get_by_shop_domain", failing_lookup)

    response = client.post("/api/upload", data={"productData": _product_data()})

    assert response.status_code == 200
    assert shopify_client.shipping_calls == []
    assert _stored_product(db_session).product_id == PRODUCT_GID
