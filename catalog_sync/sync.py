from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Iterable, Iterator, Mapping, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_sync.config import RemoteCatalogConfig, Settings, get_settings
from catalog_sync.csv_parser import CatalogCsvReader
from catalog_sync.db import get_engine, init_db, session_scope
from catalog_sync.inventory import InventoryPropagator
from catalog_sync.models import Product
from catalog_sync.reconciler import CatalogReconciler
from catalog_sync.repositories import ProductsRepository, ProductVariantsRepository
from catalog_sync.schemas import (
    EntityError,
    ImportResult,
    ParsedProductRow,
    ProductDraft,
    PullResult,
    RemoteProduct,
    StockUpdateResult,
    VariantPlan,
)
from catalog_sync.shopify_api import ShopifyApiError, ShopifyCatalogClient
from catalog_sync.variants import expand_variants

logger = logging.getLogger(__name__)

DEFAULT_VENDOR = "VAULT 27"
DEFAULT_PRODUCT_TYPE = "Merchandise"


class CatalogSyncError(Exception):
    pass


class SyncInProgressError(CatalogSyncError):
    pass


class ProductNotFoundError(CatalogSyncError):
    pass


class CatalogRunLock:
    """Refuse to start a pull or import while another one holds the same catalog."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, catalog_key: str) -> bool:
        lock = self._locks.get(catalog_key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, catalog_key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(catalog_key, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(f"A catalog sync is already running for {catalog_key}")
        async with lock:
            yield


run_lock = CatalogRunLock()


def _cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class CatalogSyncService:
    def __init__(
        self,
        session: Session,
        client: ShopifyCatalogClient,
        *,
        propagator: InventoryPropagator | None = None,
        lock: CatalogRunLock | None = None,
        default_vendor: str = DEFAULT_VENDOR,
        default_product_type: str = DEFAULT_PRODUCT_TYPE,
    ) -> None:
        self.session = session
        self.client = client
        self.propagator = propagator or InventoryPropagator(client)
        self.lock = lock or run_lock
        self.default_vendor = default_vendor
        self.default_product_type = default_product_type
        self.products = ProductsRepository(session)
        self.variants = ProductVariantsRepository(session)
        self.reconciler = CatalogReconciler(session)

    @classmethod
    def from_settings(cls, session: Session, source: Settings | None = None) -> "CatalogSyncService":
        source = source or get_settings()
        client = ShopifyCatalogClient(RemoteCatalogConfig.from_settings(source))
        return cls(
            session,
            client,
            default_vendor=source.CATALOG_DEFAULT_VENDOR,
            default_product_type=source.CATALOG_DEFAULT_PRODUCT_TYPE,
        )

    @property
    def catalog_key(self) -> str:
        return self.client.config.store_domain

    async def pull_catalog(
        self,
        *,
        clear_existing: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> PullResult:
        """Fetch one page of Shopify products and merge it into the local catalog.

        ``clear_existing`` restores the old behaviour of truncating products
        first; it discards featured flags and discounts and is off by default.
        """
        async with self.lock.hold(self.catalog_key):
            raw_products = await self.client.list_product_payloads()
            result = PullResult(fetched_count=len(raw_products))
            logger.info("Starting catalog pull", extra={"fetched": result.fetched_count, "clear": clear_existing})

            if clear_existing:
                result.cleared_count = self.products.delete_all()
                logger.warning("Cleared local products before pull", extra={"cleared": result.cleared_count})

            for raw in raw_products:
                if _cancelled(cancel_event):
                    result.cancelled = True
                    logger.warning("Catalog pull cancelled", extra={"processed": self._processed(result)})
                    break
                remote = self._validate_remote_product(raw, result)
                if remote is not None:
                    self.reconciler.merge_product(remote, result)
                await asyncio.sleep(0)

            logger.info(
                "Finished catalog pull",
                extra={
                    "products_created": result.products_created,
                    "products_matched": result.products_matched,
                    "variants_created": result.variants_created,
                    "variants_updated": result.variants_updated,
                    "errors": len(result.errors),
                },
            )
            return result

    @staticmethod
    def _validate_remote_product(raw: Any, result: PullResult) -> RemoteProduct | None:
        try:
            return RemoteProduct.model_validate(raw)
        except ValidationError as exc:
            key = str(raw.get("title") or raw.get("id") or "unknown") if isinstance(raw, dict) else "unknown"
            logger.warning("Skipping invalid Shopify product", extra={"title": key, "error": str(exc)})
            result.errors.append(
                EntityError(entity="product", key=key, message=f"Shopify returned an invalid product: {exc}")
            )
            return None

    @staticmethod
    def _processed(result: PullResult) -> int:
        return result.products_created + result.products_matched + sum(
            1 for error in result.errors if error.entity == "product"
        )

    async def import_csv(
        self,
        csv_text: str,
        *,
        skip_existing: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportResult:
        async with self.lock.hold(self.catalog_key):
            reader = CatalogCsvReader(csv_text)
            result = ImportResult()
            for row in reader:
                if _cancelled(cancel_event):
                    result.cancelled = True
                    logger.warning("CSV import cancelled", extra={"created": result.created_count})
                    break
                await self._import_row(row, result, skip_existing=skip_existing)

            result.errors[:0] = reader.errors
            logger.info(
                "Finished CSV import",
                extra={
                    "created": result.created_count,
                    "skipped": result.skipped_count,
                    "errors": len(result.errors),
                },
            )
            return result

    async def _import_row(self, row: ParsedProductRow, result: ImportResult, *, skip_existing: bool) -> None:
        plan = expand_variants(row.name, row.sizes, row.colors, price=row.price, inventory_quantity=row.stock)
        if skip_existing and self._already_imported(row.name, plan):
            logger.info("Skipping already imported product", extra={"title": row.name, "line_number": row.line_number})
            result.skipped_count += 1
            return

        draft = self._build_draft(
            name=row.name,
            description=row.description,
            category=row.category,
            images=row.images,
            plan=plan,
        )
        try:
            remote = await self.client.create_product(draft)
        except ShopifyApiError as exc:
            logger.warning(
                "Shopify rejected product from CSV",
                extra={"title": row.name, "line_number": row.line_number, "error": str(exc)},
            )
            result.errors.append(EntityError(entity="product", key=row.name, message=str(exc)))
            return

        try:
            self._persist_created(
                remote=remote,
                plan=plan,
                name=row.name,
                description=row.description,
                price=row.price,
                category=row.category,
                images=row.images,
                featured=row.featured,
                discount=row.discount,
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Local insert failed after Shopify create", extra={"title": row.name})
            result.errors.append(EntityError(entity="product", key=row.name, message=str(exc)))
            await self._discard_remote(remote)
            return

        result.created_count += 1

    async def create_product(
        self,
        *,
        name: str,
        description: str = "",
        price: Decimal,
        category: str = "",
        sizes: Sequence[str] = (),
        colors: Sequence[str] = (),
        images: Sequence[str] = (),
        stock: int = 0,
        featured: bool = False,
        discount: Decimal = Decimal("0"),
        vendor: str | None = None,
    ) -> Product:
        """Create one product in Shopify and locally; errors reach the caller."""
        plan = expand_variants(name, sizes, colors, price=price, inventory_quantity=stock)
        draft = self._build_draft(
            name=name,
            description=description,
            category=category,
            images=list(images),
            plan=plan,
            vendor=vendor,
        )
        remote = await self.client.create_product(draft)
        try:
            return self._persist_created(
                remote=remote,
                plan=plan,
                name=name,
                description=description,
                price=price,
                category=category,
                images=list(images),
                featured=featured,
                discount=discount,
            )
        except SQLAlchemyError:
            self.session.rollback()
            await self._discard_remote(remote)
            raise

    async def delete_product(self, product_id: str) -> None:
        product = self.products.get(product_id=product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        if product.shopify_product_id:
            await self.client.delete_product(product.shopify_product_id)
        self.products.delete(product_id=product_id)
        logger.info("Deleted product", extra={"product_id": product_id})

    async def update_stock(self, changes: Mapping[str, int] | Iterable[tuple[str, int]]) -> StockUpdateResult:
        """Save stock locally for every variant, then mirror it to Shopify.

        ``success`` reflects the local writes only; Shopify failures and
        unlinked variants are reported as warnings.
        """
        pairs = list(changes.items()) if isinstance(changes, Mapping) else list(changes)
        result = StockUpdateResult()
        to_propagate: list[tuple[str, str, int]] = []

        for variant_id, stock in pairs:
            if stock < 0:
                result.errors.append(EntityError(entity="variant", key=variant_id, message="Stock must not be negative"))
                continue
            try:
                variant = self.variants.update(variant_id=variant_id, stock=stock)
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception("Failed to save variant stock", extra={"variant_id": variant_id})
                result.errors.append(EntityError(entity="variant", key=variant_id, message=str(exc)))
                continue
            if variant is None:
                result.errors.append(EntityError(entity="variant", key=variant_id, message="Variant not found"))
                continue

            result.updated.append(variant_id)
            if variant.is_linked:
                to_propagate.append((variant_id, variant.shopify_variant_id, stock))
            else:
                logger.warning("Variant is not linked to Shopify; stock saved locally only", extra={"variant_id": variant_id})
                result.warnings.append(f"Variant {variant_id} is not linked to Shopify; stock was saved locally only")

        for variant_id, shopify_variant_id, stock in to_propagate:
            try:
                await self.propagator.push_stock(shopify_variant_id, stock)
            except ShopifyApiError as exc:
                logger.warning(
                    "Shopify inventory update failed",
                    extra={"variant_id": variant_id, "shopify_variant_id": shopify_variant_id, "error": str(exc)},
                )
                result.warnings.append(f"Variant {variant_id}: Shopify inventory update failed: {exc}")
                continue
            result.propagated.append(variant_id)

        result.success = not result.errors
        return result

    def _build_draft(
        self,
        *,
        name: str,
        description: str,
        category: str,
        images: list[str],
        plan: VariantPlan,
        vendor: str | None = None,
    ) -> ProductDraft:
        return ProductDraft(
            title=name,
            body_html=description,
            vendor=vendor or self.default_vendor,
            product_type=category or self.default_product_type,
            plan=plan,
            images=images,
        )

    def _already_imported(self, name: str, plan: VariantPlan) -> bool:
        existing = self.products.get_by_name(name=name)
        if existing is None:
            return False
        known_skus = {variant.sku for variant in existing.variants if variant.sku}
        return all(draft.sku in known_skus for draft in plan.variants)

    def _persist_created(
        self,
        *,
        remote: RemoteProduct,
        plan: VariantPlan,
        name: str,
        description: str,
        price: Decimal,
        category: str,
        images: list[str],
        featured: bool,
        discount: Decimal,
    ) -> Product:
        remote_ids = link_created_variants(plan, remote)
        variants = [
            {
                "size": draft.size,
                "color": draft.color,
                "stock": draft.inventory_quantity,
                "sku": draft.sku,
                "shopify_variant_id": remote_id,
            }
            for draft, remote_id in zip(plan.variants, remote_ids)
        ]
        product = self.products.create_with_variants(
            name=name,
            description=description,
            price=price,
            category=category or remote.product_type or self.default_product_type,
            images=images,
            featured=featured,
            discount=discount,
            stock=0,
            sku=plan.variants[0].sku if plan.variants else None,
            shopify_product_id=str(remote.id),
            variants=variants,
        )
        logger.info(
            "Stored product created in Shopify",
            extra={"product_id": product.id, "shopify_product_id": remote.id, "variants": len(variants)},
        )
        return product

    async def _discard_remote(self, remote: RemoteProduct) -> None:
        try:
            await self.client.delete_product(remote.id)
        except ShopifyApiError:
            logger.exception("Could not remove orphaned Shopify product", extra={"shopify_product_id": remote.id})


def link_created_variants(plan: VariantPlan, remote: RemoteProduct) -> list[str | None]:
    """Return the Shopify variant id for each planned variant, in plan order.

    Matches by SKU, then by option values, then by position when Shopify
    returned exactly as many variants as were planned.
    """
    by_sku = {variant.sku: variant for variant in remote.variants if variant.sku}
    by_options = {
        tuple(value for value in (variant.option1, variant.option2, variant.option3) if value): variant
        for variant in remote.variants
    }
    linked: list[str | None] = []
    for index, draft in enumerate(plan.variants):
        match = by_sku.get(draft.sku) or by_options.get(tuple(draft.option_values))
        if match is None and len(remote.variants) == len(plan.variants):
            match = remote.variants[index]
        linked.append(str(match.id) if match else None)
    return linked


@contextmanager
def open_catalog_sync(source: Settings | None = None) -> Iterator[CatalogSyncService]:
    """Create the local tables if needed and yield a service bound to a fresh session."""
    source = source or get_settings()
    init_db(get_engine(source.CATALOG_DB_URL))
    with session_scope(source.CATALOG_DB_URL) as session:
        yield CatalogSyncService.from_settings(session, source)
