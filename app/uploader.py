from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from starlette.requests import Request

from app.blob_store import BlobStore, delete_blobs
from app.config import settings
from app.enums import UploadStageEnum
from app.errors import BlobDeleteError, BlobUploadError, ProductNotFoundError, UploadError
from app.form_parser import parse_product_submission, read_form, split_form, upload_form_files
from app.reconciliation import ReconciliationResult, reconcile
from app.repository import DigitalProductsRepository, ShopInstallationsRepository, to_product_state
from app.shopify_api import ShopifyApiClient
from app.storefront_sync import StorefrontSyncReport, sync_storefront

logger = logging.getLogger(__name__)

CREATED_MESSAGE = "Product created successfully"
UPDATED_MESSAGE = "Product updated successfully"


@dataclass
class UploadOutcome:
    message: str
    product_pk: str
    is_update: bool
    reconciliation: ReconciliationResult
    upload_failures: list[BlobUploadError] = field(default_factory=list)
    delete_failures: list[BlobDeleteError] = field(default_factory=list)
    storefront: StorefrontSyncReport | None = None


class DigitalProductUploader:
    """
    Handles one digital product submission:
    decoding -> duplicate_check -> reconciling -> persisting -> syncing_storefront -> responding.

    Only decoding, duplicate_check, reconciling and persisting can fail the request. Orphan
    cleanup and storefront sync run after the product is saved and only log their failures.
    """

    def __init__(
        self,
        *,
        products: DigitalProductsRepository,
        installations: ShopInstallationsRepository,
        blob_store: BlobStore,
        shopify_api: ShopifyApiClient,
        now: Optional[datetime] = None,
    ) -> None:
        self.products = products
        self.installations = installations
        self.blob_store = blob_store
        self.shopify_api = shopify_api
        self.now = now
        self.stage = UploadStageEnum.decoding

    def _enter(self, stage: UploadStageEnum) -> None:
        self.stage = stage
        logger.info("uploader.stage", extra={"stage": stage.value})

    async def process(self, request: Request) -> UploadOutcome:
        try:
            return await self._process(request)
        except UploadError as exc:
            logger.warning(
                "uploader.failed",
                extra={"stage": self.stage.value, "error": str(exc), "error_type": exc.__class__.__name__},
            )
            raise

    async def _process(self, request: Request) -> UploadOutcome:
        self._enter(UploadStageEnum.decoding)
        form = await read_form(request)
        try:
            parsed = split_form(form)
            submission = parse_product_submission(parsed.fields)
            uploads = await upload_form_files(
                parsed,
                product_id=submission.productId,
                store=self.blob_store,
                concurrency=settings.UPLOAD_CONCURRENCY,
                now=self.now,
            )
        finally:
            await form.close()

        self._enter(UploadStageEnum.duplicate_check)
        self.products.ensure_unique_product_id(submission.productId, exclude_pk=submission.id)

        self._enter(UploadStageEnum.reconciling)
        previous = None
        if submission.id is not None:
            record = self.products.get(submission.id)
            if record is None:
                raise ProductNotFoundError(submission.id)
            previous = to_product_state(record)
        result = reconcile(
            previous=previous,
            incoming=submission.to_product_state(),
            new_common_file=uploads.common_file,
            new_variant_files=uploads.variant_files,
        )
        logger.info(
            "uploader.reconciled",
            extra={
                "product_id": submission.productId,
                "previous_mode": result.previous_mode.value if result.previous_mode else None,
                "file_mode": result.product.file_mode.value if result.product.file_mode else None,
                "uploaded": uploads.uploaded_count,
                "upload_failures": len(uploads.failures),
                "orphaned": len(result.orphaned_keys),
                "removed_variants": len(result.removed_variants),
            },
        )

        self._enter(UploadStageEnum.persisting)
        saved = self.products.save(result.product, existing_pk=submission.id)

        delete_failures = await delete_blobs(
            self.blob_store,
            result.orphaned_keys,
            concurrency=settings.BLOB_DELETE_CONCURRENCY,
        )

        self._enter(UploadStageEnum.syncing_storefront)
        try:
            storefront = await self._sync_storefront(result)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "uploader.storefront_sync_failed",
                extra={"product_id": result.product.product_id, "error": str(exc)},
                exc_info=exc,
            )
            storefront = None

        self._enter(UploadStageEnum.responding)
        return UploadOutcome(
            message=UPDATED_MESSAGE if submission.is_update else CREATED_MESSAGE,
            product_pk=saved.id,
            is_update=submission.is_update,
            reconciliation=result,
            upload_failures=uploads.failures,
            delete_failures=delete_failures,
            storefront=storefront,
        )

    async def _sync_storefront(self, result: ReconciliationResult) -> StorefrontSyncReport | None:
        shop_domain = settings.SHOPIFY_SHOP_DOMAIN
        if not shop_domain:
            logger.warning("uploader.storefront_sync_skipped", extra={"reason": "SHOPIFY_SHOP_DOMAIN is not set"})
            return None
        installation = self.installations.get_by_shop_domain(shop_domain)
        if installation is None:
            logger.warning(
                "uploader.storefront_sync_skipped",
                extra={"reason": "no installation", "shop_domain": shop_domain},
            )
            return None
        return await sync_storefront(
            self.shopify_api,
            shop_domain=installation.shop_domain,
            access_token=installation.admin_access_token,
            product_gid=result.product.product_id,
            shipping_updates=result.shipping_updates,
            tags=settings.DIGITAL_PRODUCT_TAGS,
            concurrency=settings.STOREFRONT_SYNC_CONCURRENCY,
        )
