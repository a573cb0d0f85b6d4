from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterable, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings
from app.enums import FileModeEnum
from app.errors import BlobDeleteError, BlobStoreConfigurationError, BlobUploadError
from app.reconciliation import UploadedFile

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_filename(filename: str | None) -> str:
    cleaned = _WHITESPACE_RE.sub("_", filename or "")
    return cleaned or "unknown"


def product_numeric_suffix(product_id: str | None) -> str:
    """``gid://shopify/Product/123`` -> ``123``."""
    suffix = (product_id or "").rstrip().split("/")[-1]
    return suffix or "unknown"


class BlobStore:
    """
    S3-compatible storage (DigitalOcean Spaces) for the downloadable files of digital products.

    Keys are deterministic per product, month and file name, so re-uploading a file with the
    same name in the same month overwrites the previous object.
    """

    def __init__(self, *, client: Any | None = None) -> None:
        if not settings.MEDIA_STORAGE_BUCKET:
            raise BlobStoreConfigurationError("MEDIA_STORAGE_BUCKET is required")
        if not settings.MEDIA_STORAGE_ENDPOINT:
            raise BlobStoreConfigurationError("MEDIA_STORAGE_ENDPOINT is required")

        self.bucket = settings.MEDIA_STORAGE_BUCKET
        self.endpoint = settings.MEDIA_STORAGE_ENDPOINT.rstrip("/")
        self.prefix = settings.media_storage_prefix
        self.force_path_style = bool(settings.MEDIA_STORAGE_FORCE_PATH_STYLE)

        if client is None:
            if not settings.MEDIA_STORAGE_ACCESS_KEY or not settings.MEDIA_STORAGE_SECRET_KEY:
                raise BlobStoreConfigurationError(
                    "MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"
                )
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=self.endpoint,
                aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY,
                aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_KEY,
                region_name=settings.MEDIA_STORAGE_REGION or "nyc3",
                use_ssl=bool(settings.MEDIA_STORAGE_USE_SSL),
                config=Config(
                    s3={"addressing_style": "path" if self.force_path_style else "auto"},
                    signature_version="s3v4",
                ),
            )
        self.client = client

    def build_key(self, *, product_id: str, filename: str | None, now: Optional[datetime] = None) -> str:
        """
        <prefix>/<yyyy>/<mm>/<numeric product id>/<sanitized filename>
        """
        moment = now or datetime.now(timezone.utc)
        parts = [p for p in [self.prefix] if p]
        parts.extend(
            [
                f"{moment.year:04d}",
                f"{moment.month:02d}",
                product_numeric_suffix(product_id),
                sanitize_filename(filename),
            ]
        )
        return "/".join(parts)

    def object_url(self, key: str) -> str:
        if self.force_path_style:
            return f"{self.endpoint}/{self.bucket}/{key}"
        scheme, _, host = self.endpoint.partition("://")
        return f"{scheme}://{self.bucket}.{host}/{key}"

    def put(
        self,
        *,
        field_name: str,
        target_kind: FileModeEnum,
        variant_id: str | None,
        stream: BinaryIO,
        filename: str | None,
        content_type: str | None,
        size: int,
        product_id: str,
        now: Optional[datetime] = None,
    ) -> UploadedFile:
        key = self.build_key(product_id=product_id, filename=filename, now=now)
        extra_args = {
            "ContentType": content_type or DEFAULT_CONTENT_TYPE,
            "ACL": "private",
        }
        try:
            self.client.upload_fileobj(stream, self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as exc:
            raise BlobUploadError(
                f"Upload of {filename or 'file'} to {key} failed: {exc}",
                field_name=field_name,
                filename=filename,
            ) from exc

        return UploadedFile(
            key=key,
            url=self.object_url(key),
            name=sanitize_filename(filename),
            size=size,
            target_kind=target_kind,
            variant_id=variant_id if target_kind == FileModeEnum.variant else None,
        )

    def delete(self, key: str) -> BlobDeleteError | None:
        if not key:
            return None
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("blob_store.delete_failed", extra={"key": key, "error": str(exc)})
            return BlobDeleteError(f"Failed to delete {key}: {exc}", key=key)
        logger.info("blob_store.deleted", extra={"key": key})
        return None


async def delete_blobs(store: BlobStore, keys: Iterable[str], *, concurrency: int) -> list[BlobDeleteError]:
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _delete(key: str) -> BlobDeleteError | None:
        async with semaphore:
            return await asyncio.to_thread(store.delete, key)

    results = await asyncio.gather(*(_delete(key) for key in keys if key))
    return [failure for failure in results if failure is not None]
