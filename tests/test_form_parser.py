from __future__ import annotations

import asyncio
import io
import json
from datetime import datetime, timezone

import pytest
from starlette.datastructures import FormData, Headers, UploadFile

from app.config import settings
from app.enums import FileModeEnum
from app.errors import DecodeError
from app.form_parser import (
    get_field,
    parse_product_submission,
    split_form,
    upload_form_files,
    variant_id_for_field,
)

NOW = datetime(2026, 10, 18, tzinfo=timezone.utc)
PRODUCT_GID = "gid://shopify/Product/901"


def _upload(filename: str, content: bytes, content_type: str = "application/zip") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        size=len(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


def _product_data(**overrides) -> str:
    payload = {
        "productId": PRODUCT_GID,
        "title": "Sample Pack",
        "fileType": "commonFile",
        "totalVariants": 1,
        "variants": [{"id": "gid://shopify/ProductVariant/1", "sku": "SP-1"}],
    }
    payload.update(overrides)
    return json.dumps(payload)


def test_get_field_returns_first_value():
    assert get_field({"a": ["1", "2"]}, "a") == "1"
    assert get_field({"a": []}, "a") is None
    assert get_field({}, "a") is None


def test_variant_id_for_field():
    assert variant_id_for_field("variantFiles[gid://shopify/ProductVariant/1]") == "gid://shopify/ProductVariant/1"
    assert variant_id_for_field("variantFiles[]") is None
    assert variant_id_for_field("file") is None


def test_split_form_groups_fields_and_files():
    form = FormData(
        [
            ("productData", _product_data()),
            ("note", "a"),
            ("note", "b"),
            ("file", _upload("pack one.zip", b"abc")),
            ("file", _upload("", b"")),
        ]
    )

    parsed = split_form(form)

    assert parsed.fields["note"] == ["a", "b"]
    assert list(parsed.files) == ["file"]
    form_file = parsed.files["file"][0]
    assert form_file.filename == "pack one.zip"
    assert form_file.content_type == "application/zip"
    assert form_file.size == 3


def test_split_form_rejects_oversized_files(monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_MAX_FILE_BYTES", 2)
    form = FormData([("file", _upload("big.zip", b"abc"))])

    with pytest.raises(DecodeError, match="exceeds 2 bytes"):
        split_form(form)


def test_parse_product_submission_requires_product_data():
    with pytest.raises(DecodeError, match="Missing productData field"):
        parse_product_submission({})


def test_parse_product_submission_rejects_invalid_json():
    with pytest.raises(DecodeError, match="not valid JSON"):
        parse_product_submission({"productData": ["{not json"]})


def test_parse_product_submission_rejects_invalid_shape():
    with pytest.raises(DecodeError, match="productId"):
        parse_product_submission({"productData": [json.dumps({"title": "No id"})]})

    with pytest.raises(DecodeError, match="JSON object"):
        parse_product_submission({"productData": ["[1, 2]"]})


def test_parse_product_submission_maps_file_type():
    submission = parse_product_submission({"productData": [_product_data()]})

    assert submission.file_mode == FileModeEnum.common
    assert submission.is_update is False
    assert submission.variants[0].id == "gid://shopify/ProductVariant/1"


def test_upload_form_files_keeps_first_upload_per_target(blob_store):
    form = FormData(
        [
            ("file", _upload("first.zip", b"1")),
            ("file", _upload("second.zip", b"2")),
            ("variantFiles[v1]", _upload("v1 a.pdf", b"a")),
            ("variantFiles[v1]", _upload("v1 b.pdf", b"b")),
            ("variantFiles[v2]", _upload("v2.pdf", b"c")),
            ("thumbnail", _upload("thumb.png", b"png", "image/png")),
        ]
    )

    batch = asyncio.run(
        upload_form_files(
            split_form(form),
            product_id=PRODUCT_GID,
            store=blob_store,
            concurrency=2,
            now=NOW,
        )
    )

    assert batch.common_file is not None
    assert batch.common_file.key == "private/2026/10/901/first.zip"
    assert batch.variant_files["v1"].key == "private/2026/10/901/v1_a.pdf"
    assert batch.variant_files["v2"].key == "private/2026/10/901/v2.pdf"
    assert batch.failures == []
    assert batch.uploaded_count == 3
    assert "private/2026/10/901/thumb.png" not in blob_store.client.objects


def test_upload_form_files_collects_failures_and_continues(blob_store, s3_client):
    s3_client.failing_upload_names.add("broken.pdf")
    form = FormData(
        [
            ("variantFiles[v1]", _upload("broken.pdf", b"x")),
            ("variantFiles[v2]", _upload("fine.pdf", b"y")),
        ]
    )

    batch = asyncio.run(
        upload_form_files(
            split_form(form),
            product_id=PRODUCT_GID,
            store=blob_store,
            concurrency=1,
            now=NOW,
        )
    )

    assert list(batch.variant_files) == ["v2"]
    assert len(batch.failures) == 1
    assert batch.failures[0].field_name == "variantFiles[v1]"
    assert batch.failures[0].filename == "broken.pdf"
