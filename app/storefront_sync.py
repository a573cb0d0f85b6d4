from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable

from app.reconciliation import ShippingUpdate
from app.shopify_api import ShippingUpdateResult, ShopifyApiClient, ShopifyApiError, TagMergeResult

logger = logging.getLogger(__name__)


@dataclass
class StorefrontSyncReport:
    shipping_results: list[ShippingUpdateResult] = field(default_factory=list)
    tag_result: TagMergeResult | None = None

    def _results_for(self, requires_shipping: bool) -> list[ShippingUpdateResult]:
        return [result for result in self.shipping_results if result.requires_shipping is requires_shipping]

    @property
    def digital_attempted(self) -> int:
        return len(self._results_for(False))

    @property
    def digital_succeeded(self) -> int:
        return sum(1 for result in self._results_for(False) if result.status)

    @property
    def physical_attempted(self) -> int:
        return len(self._results_for(True))

    @property
    def physical_succeeded(self) -> int:
        return sum(1 for result in self._results_for(True) if result.status)


async def _apply_shipping_update(
    client: ShopifyApiClient,
    *,
    shop_domain: str,
    access_token: str,
    update: ShippingUpdate,
) -> ShippingUpdateResult:
    try:
        result = await client.set_requires_shipping(
            shop_domain=shop_domain,
            access_token=access_token,
            variant_gid=update.variant_id,
            requires_shipping=update.requires_shipping,
        )
    except ShopifyApiError as exc:
        result = ShippingUpdateResult(
            variant_gid=update.variant_id,
            requires_shipping=update.requires_shipping,
            status=False,
            error=str(exc),
        )
    if not result.status:
        logger.warning(
            "storefront_sync.shipping_update_failed",
            extra={
                "variant_gid": update.variant_id,
                "requires_shipping": update.requires_shipping,
                "error": result.error,
            },
        )
    return result


async def sync_storefront(
    client: ShopifyApiClient,
    *,
    shop_domain: str,
    access_token: str,
    product_gid: str,
    shipping_updates: Iterable[ShippingUpdate],
    tags: Iterable[str],
    concurrency: int,
) -> StorefrontSyncReport:
    """
    Align the storefront with a saved digital product: removed variants go back to
    requiring shipping, kept variants stop requiring it, and the digital tags are merged.

    Every variant call is independent; failures are collected into the report and never raised.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(update: ShippingUpdate) -> ShippingUpdateResult:
        async with semaphore:
            return await _apply_shipping_update(
                client,
                shop_domain=shop_domain,
                access_token=access_token,
                update=update,
            )

    report = StorefrontSyncReport()
    report.shipping_results = list(await asyncio.gather(*(_run(update) for update in shipping_updates)))

    try:
        report.tag_result = await client.merge_product_tags(
            shop_domain=shop_domain,
            access_token=access_token,
            product_gid=product_gid,
            tags=tags,
        )
    except ShopifyApiError as exc:
        report.tag_result = TagMergeResult(product_gid=product_gid, status=False, error=str(exc))
    if not report.tag_result.status:
        logger.warning(
            "storefront_sync.tag_merge_failed",
            extra={"product_gid": product_gid, "error": report.tag_result.error},
        )

    logger.info(
        "storefront_sync.completed",
        extra={
            "product_gid": product_gid,
            "digital": f"{report.digital_succeeded}/{report.digital_attempted}",
            "physical": f"{report.physical_succeeded}/{report.physical_attempted}",
            "tags_changed": report.tag_result.changed,
        },
    )
    return report
