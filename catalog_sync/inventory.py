from __future__ import annotations

import logging
from typing import Sequence

from catalog_sync.schemas import InventoryLevel, RemoteLocation
from catalog_sync.shopify_api import ShopifyApiError, ShopifyCatalogClient

logger = logging.getLogger(__name__)


class LocationSelector:
    """Pick the inventory location stock is written to.

    An explicit location id wins, then a location name (case-insensitive),
    then the first location Shopify returns.
    """

    def __init__(self, *, location_id: int | None = None, location_name: str | None = None) -> None:
        self.location_id = location_id
        self.location_name = location_name.strip().lower() if location_name else None

    def select(self, locations: Sequence[RemoteLocation]) -> RemoteLocation:
        if not locations:
            raise ShopifyApiError(message="No location found", status_code=404)
        if self.location_id is not None:
            for location in locations:
                if location.id == self.location_id:
                    return location
            raise ShopifyApiError(message=f"Configured location {self.location_id} was not found", status_code=404)
        if self.location_name:
            for location in locations:
                if location.name.strip().lower() == self.location_name:
                    return location
            raise ShopifyApiError(message=f"Configured location {self.location_name!r} was not found", status_code=404)
        return locations[0]


class InventoryPropagator:
    def __init__(self, client: ShopifyCatalogClient, selector: LocationSelector | None = None) -> None:
        self.client = client
        self.selector = selector or LocationSelector(
            location_id=client.config.location_id,
            location_name=client.config.location_name,
        )
        self._location: RemoteLocation | None = None

    async def resolve_location(self) -> RemoteLocation:
        if self._location is None:
            self._location = self.selector.select(await self.client.list_locations())
        return self._location

    async def push_stock(self, shopify_variant_id: str, stock: int) -> InventoryLevel:
        """Write ``stock`` as the available quantity of one Shopify variant.

        Three dependent calls with no transaction around them; any failure
        raises ``ShopifyApiError`` and leaves earlier steps as they were.
        """
        remote_variant = await self.client.get_variant(shopify_variant_id)
        if remote_variant.inventory_item_id is None:
            raise ShopifyApiError(
                message=f"Variant {shopify_variant_id} has no inventory item",
                status_code=409,
            )
        location = await self.resolve_location()
        level = await self.client.set_inventory_level(
            inventory_item_id=remote_variant.inventory_item_id,
            location_id=location.id,
            available=stock,
        )
        logger.info(
            "Propagated stock to Shopify",
            extra={"shopify_variant_id": shopify_variant_id, "location_id": location.id, "available": stock},
        )
        return level
