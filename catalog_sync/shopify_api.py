from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from catalog_sync.config import RemoteCatalogConfig
from catalog_sync.schemas import (
    InventoryLevel,
    ProductDraft,
    RemoteLocation,
    RemoteProduct,
    RemoteVariant,
)

logger = logging.getLogger(__name__)


class ShopifyApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class ShopifyCatalogClient:
    """Admin REST calls used by catalog sync: products, variants, locations, inventory."""

    def __init__(
        self,
        config: RemoteCatalogConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def config(self) -> RemoteCatalogConfig:
        return self._config

    async def list_product_payloads(self, *, limit: int | None = None) -> list[dict[str, Any]]:
        """Return one page of raw product objects; callers validate each one."""
        page_limit = limit or self._config.product_page_limit
        response = await self._request("GET", "products.json", params={"limit": page_limit})
        raw_products = response.get("products")
        if not isinstance(raw_products, list):
            raise ShopifyApiError(message="Product list response is missing products")
        return raw_products

    async def create_product(self, draft: ProductDraft) -> RemoteProduct:
        response = await self._request("POST", "products.json", payload={"product": draft.to_payload()})
        raw_product = response.get("product")
        if not isinstance(raw_product, dict):
            raise ShopifyApiError(message="Product create response is missing product")
        product = self._parse(RemoteProduct, raw_product, what="product")
        logger.info(
            "Created Shopify product",
            extra={"shopify_product_id": product.id, "title": product.title, "variants": len(product.variants)},
        )
        return product

    async def delete_product(self, product_id: int | str) -> None:
        await self._request("DELETE", f"products/{product_id}.json")
        logger.info("Deleted Shopify product", extra={"shopify_product_id": str(product_id)})

    async def get_variant(self, variant_id: int | str) -> RemoteVariant:
        response = await self._request("GET", f"variants/{variant_id}.json")
        raw_variant = response.get("variant")
        if not isinstance(raw_variant, dict):
            raise ShopifyApiError(message=f"Variant response is missing variant for id {variant_id}")
        return self._parse(RemoteVariant, raw_variant, what="variant")

    async def list_locations(self) -> list[RemoteLocation]:
        response = await self._request("GET", "locations.json")
        raw_locations = response.get("locations")
        if not isinstance(raw_locations, list):
            raise ShopifyApiError(message="Locations response is missing locations")
        return [self._parse(RemoteLocation, raw, what="location") for raw in raw_locations]

    async def set_inventory_level(
        self,
        *,
        inventory_item_id: int,
        location_id: int,
        available: int,
    ) -> InventoryLevel:
        payload = {
            "location_id": location_id,
            "inventory_item_id": inventory_item_id,
            "available": available,
        }
        response = await self._request("POST", "inventory_levels/set.json", payload=payload)
        raw_level = response.get("inventory_level")
        if not isinstance(raw_level, dict):
            raise ShopifyApiError(message="Inventory level response is missing inventory_level")
        return self._parse(InventoryLevel, raw_level, what="inventory level")

    @staticmethod
    def _parse(model: type, raw: Any, *, what: str):
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            raise ShopifyApiError(message=f"Shopify returned an invalid {what}: {exc}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._config.admin_base_url}/{path}"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._config.access_token,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=payload, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ShopifyApiError(message=f"Timed out calling Shopify {method} {path}: {exc}", status_code=504) from exc
        except httpx.RequestError as exc:
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "Shopify API call failed",
                extra={"method": method, "path": path, "status_code": response.status_code},
            )
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body
