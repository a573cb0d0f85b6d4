import os
import sys
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DIGITAL_PRODUCTS_DB_URL", "sqlite:///./test_digital_products.db")
os.environ.setdefault("SHOPIFY_SHOP_DOMAIN", "example.myshopify.com")
os.environ.setdefault("MEDIA_STORAGE_BUCKET", "digital-files")
os.environ.setdefault("MEDIA_STORAGE_ENDPOINT", "https://nyc3.digitaloceanspaces.com")
os.environ.setdefault("MEDIA_STORAGE_ACCESS_KEY", "test_access_key")
os.environ.setdefault("MEDIA_STORAGE_SECRET_KEY", "test_secret_key")

from sqlalchemy import delete  # noqa: E402

from app.blob_store import BlobStore  # noqa: E402
from app.db import SessionLocal, init_db  # noqa: E402
from app.models import DigitalProduct, DigitalProductVariant, ShopInstallation  # noqa: E402


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.failing_upload_names: set[str] = set()
        self.failing_delete_keys: set[str] = set()

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if key.rsplit("/", 1)[-1] in self.failing_upload_names:
            raise ClientError({"Error": {"Code": "500", "Message": "upload refused"}}, "PutObject")
        self.objects[key] = {"bucket": bucket, "body": fileobj.read(), "extra": dict(ExtraArgs or {})}

    def delete_object(self, Bucket, Key):
        if Key in self.failing_delete_keys:
            raise ClientError({"Error": {"Code": "403", "Message": "delete refused"}}, "DeleteObject")
        self.deleted.append(Key)
        self.objects.pop(Key, None)


@pytest.fixture()
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture()
def blob_store(s3_client) -> BlobStore:
    return BlobStore(client=s3_client)


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()

    def _clear() -> None:
        session.execute(delete(DigitalProductVariant))
        session.execute(delete(DigitalProduct))
        session.execute(delete(ShopInstallation))
        session.commit()

    _clear()
    try:
        yield session
    finally:
        session.rollback()
        _clear()
        session.close()
