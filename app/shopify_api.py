from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from app.config import settings


class ShopifyApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ShippingUpdateResult:
    variant_gid: str
    requires_shipping: bool
    status: bool
    changed: bool = False
    error: str | None = None


@dataclass
class TagMergeResult:
    product_gid: str
    status: bool
    changed: bool = False
    tags: list[str] = field(default_factory=list)
    error: str | None = None


def _user_error_messages(user_errors: list[dict[str, Any]]) -> str:
    return "; ".join(str(error.get("message")) for error in user_errors)


class ShopifyApiClient:
    def __init__(self) -> None:
        self._timeout = settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS

    async def get_variant_inventory_item(
        self,
        *,
        shop_domain: str,
        access_token: str,
        variant_gid: str,
    ) -> dict[str, Any] | None:
        query = """
        query getVariantInventory($variantId: ID!) {
            productVariant(id: $variantId) {
                id
                inventoryItem {
                    id
                    requiresShipping
                }
            }
        }
        """
        payload = {"query": query, "variables": {"variantId": variant_gid}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        return response.get("productVariant")

    async def set_requires_shipping(
        self,
        *,
        shop_domain: str,
        access_token: str,
        variant_gid: str,
        requires_shipping: bool,
    ) -> ShippingUpdateResult:
        variant = await self.get_variant_inventory_item(
            shop_domain=shop_domain,
            access_token=access_token,
            variant_gid=variant_gid,
        )
        if not isinstance(variant, dict):
            return ShippingUpdateResult(
                variant_gid=variant_gid,
                requires_shipping=requires_shipping,
                status=False,
                error=f"Variant not found: {variant_gid}",
            )

        inventory_item = variant.get("inventoryItem") or {}
        inventory_item_id = inventory_item.get("id")
        if not isinstance(inventory_item_id, str) or not inventory_item_id:
            return ShippingUpdateResult(
                variant_gid=variant_gid,
                requires_shipping=requires_shipping,
                status=False,
                error=f"No inventory item for variant {variant_gid}",
            )

        if inventory_item.get("requiresShipping") is requires_shipping:
            return ShippingUpdateResult(
                variant_gid=variant_gid,
                requires_shipping=requires_shipping,
                status=True,
                changed=False,
            )

        mutation = """
        mutation updateInventoryItem($id: ID!, $requiresShipping: Boolean!) {
            inventoryItemUpdate(id: $id, input: { requiresShipping: $requiresShipping }) {
                inventoryItem {
                    id
                    requiresShipping
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": mutation,
            "variables": {"id": inventory_item_id, "requiresShipping": requires_shipping},
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        update_data = response.get("inventoryItemUpdate") or {}
        user_errors = update_data.get("userErrors") or []
        if user_errors:
            return ShippingUpdateResult(
                variant_gid=variant_gid,
                requires_shipping=requires_shipping,
                status=False,
                error=f"inventoryItemUpdate failed: {_user_error_messages(user_errors)}",
            )
        return ShippingUpdateResult(
            variant_gid=variant_gid,
            requires_shipping=requires_shipping,
            status=True,
            changed=True,
        )

    async def get_product_tags(
        self,
        *,
        shop_domain: str,
        access_token: str,
        product_gid: str,
    ) -> list[str] | None:
        query = """
        query productTags($id: ID!) {
            product(id: $id) {
                id
                title
                tags
            }
        }
        """
        payload = {"query": query, "variables": {"id": product_gid}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        product = response.get("product")
        if not isinstance(product, dict):
            return None
        tags = product.get("tags") or []
        if not isinstance(tags, list):
            raise ShopifyApiError(message="Product tags response is invalid")
        return [str(tag) for tag in tags]

    async def merge_product_tags(
        self,
        *,
        shop_domain: str,
        access_token: str,
        product_gid: str,
        tags: Iterable[str],
    ) -> TagMergeResult:
        tags_to_add = [tag.strip() for tag in tags if tag and tag.strip()]
        if not tags_to_add:
            return TagMergeResult(product_gid=product_gid, status=False, error="No tags to update")

        current_tags = await self.get_product_tags(
            shop_domain=shop_domain,
            access_token=access_token,
            product_gid=product_gid,
        )
        if current_tags is None:
            return TagMergeResult(
                product_gid=product_gid,
                status=False,
                error=f"Product not found: {product_gid}",
            )

        merged_tags = list(current_tags)
        for tag in tags_to_add:
            if tag not in merged_tags:
                merged_tags.append(tag)
        if set(merged_tags) == set(current_tags):
            return TagMergeResult(product_gid=product_gid, status=True, changed=False, tags=current_tags)

        mutation = """
        mutation updateProductTags($id: ID!, $tags: [String!]!) {
            productUpdate(input: { id: $id, tags: $tags }) {
                product {
                    id
                    tags
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {"query": mutation, "variables": {"id": product_gid, "tags": merged_tags}}
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        update_data = response.get("productUpdate") or {}
        user_errors = update_data.get("userErrors") or []
        if user_errors:
            return TagMergeResult(
                product_gid=product_gid,
                status=False,
                tags=current_tags,
                error=f"productUpdate failed: {_user_error_messages(user_errors)}",
            )
        updated_product = update_data.get("product") or {}
        updated_tags = updated_product.get("tags")
        if isinstance(updated_tags, list):
            merged_tags = [str(tag) for tag in updated_tags]
        return TagMergeResult(product_gid=product_gid, status=True, changed=True, tags=merged_tags)

    async def _admin_graphql(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        url = f"https://{shop_domain}/admin/api/{settings.SHOPIFY_ADMIN_API_VERSION}/graphql.json"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        response = await self._post_json(url=url, payload=payload, headers=headers)
        data = response.get("data")
        errors = response.get("errors")
        if errors:
            raise ShopifyApiError(message=f"Admin GraphQL errors: {errors}")
        if not isinstance(data, dict):
            raise ShopifyApiError(message="Admin GraphQL response is missing data")
        return data

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if response.status_code >= 400:
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body
