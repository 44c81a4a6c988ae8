import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("SHOPIFY_STORE_DOMAIN", "example.myshopify.com")
os.environ.setdefault("SHOPIFY_ACCESS_TOKEN", "shpat_test_token")
os.environ.setdefault("CATALOG_DB_URL", "sqlite://")

from catalog_sync.config import RemoteCatalogConfig  # noqa: E402
from catalog_sync.db import build_engine, init_db  # noqa: E402
from catalog_sync.schemas import (  # noqa: E402
    InventoryLevel,
    ProductDraft,
    RemoteLocation,
    RemoteProduct,
    RemoteVariant,
)
from catalog_sync.shopify_api import ShopifyApiError  # noqa: E402
from catalog_sync.sync import CatalogRunLock, CatalogSyncService  # noqa: E402


class FakeCatalogClient:
    def __init__(self) -> None:
        self.config = RemoteCatalogConfig(store_domain="example.myshopify.com", access_token="token")
        self.remote_products: list[RemoteProduct] = []
        self.raw_products: list[dict] = []
        self.locations = [RemoteLocation(id=77, name="Main warehouse")]
        self.created: list[ProductDraft] = []
        self.deleted: list[str] = []
        self.inventory_sets: list[dict] = []
        self.fail_create_titles: set[str] = set()
        self.fail_variant_ids: set[str] = set()
        self.calls: list[str] = []
        self._next_id = 1000

    def _allocate_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def list_product_payloads(self, *, limit: int | None = None) -> list[dict]:
        self.calls.append("list_product_payloads")
        return [product.model_dump(mode="json") for product in self.remote_products] + list(self.raw_products)

    async def create_product(self, draft: ProductDraft) -> RemoteProduct:
        self.calls.append("create_product")
        if draft.title in self.fail_create_titles:
            raise ShopifyApiError(message=f"Shopify API call failed (422): title {draft.title} rejected")
        self.created.append(draft)
        product_id = self._allocate_id()
        variants = []
        for planned in draft.plan.variants:
            variant_id = self._allocate_id()
            options = {f"option{index}": value for index, value in enumerate(planned.option_values, start=1)}
            if not options:
                options = {"option1": "Default Title"}
            variants.append(
                RemoteVariant(
                    id=variant_id,
                    product_id=product_id,
                    price=planned.price,
                    sku=planned.sku,
                    inventory_item_id=variant_id + 50000,
                    inventory_quantity=planned.inventory_quantity,
                    **options,
                )
            )
        return RemoteProduct(
            id=product_id,
            title=draft.title,
            body_html=draft.body_html,
            vendor=draft.vendor,
            product_type=draft.product_type,
            options=[
                {"name": option.name, "position": index, "values": option.values}
                for index, option in enumerate(draft.plan.options, start=1)
            ],
            variants=variants,
            images=[{"src": src} for src in draft.images],
        )

    async def delete_product(self, product_id) -> None:
        self.calls.append("delete_product")
        self.deleted.append(str(product_id))

    async def get_variant(self, variant_id) -> RemoteVariant:
        self.calls.append("get_variant")
        if str(variant_id) in self.fail_variant_ids:
            raise ShopifyApiError(message=f"Shopify API call failed (404): variant {variant_id} not found")
        return RemoteVariant(id=int(variant_id), inventory_item_id=int(variant_id) + 50000)

    async def list_locations(self) -> list[RemoteLocation]:
        self.calls.append("list_locations")
        return list(self.locations)

    async def set_inventory_level(self, *, inventory_item_id: int, location_id: int, available: int) -> InventoryLevel:
        self.calls.append("set_inventory_level")
        self.inventory_sets.append(
            {"inventory_item_id": inventory_item_id, "location_id": location_id, "available": available}
        )
        return InventoryLevel(inventory_item_id=inventory_item_id, location_id=location_id, available=available)


@pytest.fixture()
def db_session():
    engine = build_engine("sqlite://")
    init_db(engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def fake_client() -> FakeCatalogClient:
    return FakeCatalogClient()


@pytest.fixture()
def sync_service(db_session, fake_client) -> CatalogSyncService:
    return CatalogSyncService(db_session, fake_client, lock=CatalogRunLock())
