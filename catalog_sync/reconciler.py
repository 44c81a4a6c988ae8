"""Merge freshly fetched Shopify products into the local catalog.

Products are matched by exact title, variants by their stored Shopify link.
For an existing product only an empty SKU is filled in; featured, discount
and every other local field stay as they are. For a linked variant Shopify
owns size, color and SKU while the local stock count is never touched.
Remote inventory only seeds stock when a variant is first inserted.

Failures are isolated per product and per variant: the session is rolled
back, the error is recorded on the result and the pass moves on.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_sync.models import Product
from catalog_sync.repositories import ProductsRepository, ProductVariantsRepository
from catalog_sync.schemas import EntityError, PullResult, RemoteProduct, RemoteVariant

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Uncategorized"


class CatalogReconciler:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.products = ProductsRepository(session)
        self.variants = ProductVariantsRepository(session)

    def reconcile(self, remote_products: Iterable[RemoteProduct], result: PullResult | None = None) -> PullResult:
        result = result or PullResult()
        for remote in remote_products:
            self.merge_product(remote, result)
        return result

    def merge_product(self, remote: RemoteProduct, result: PullResult) -> Product | None:
        try:
            product = self._upsert_product(remote, result)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                "Skipping product after local storage error",
                extra={"shopify_product_id": remote.id, "title": remote.title},
            )
            result.errors.append(EntityError(entity="product", key=remote.title, message=str(exc)))
            return None

        for remote_variant in remote.variants:
            self.merge_variant(product, remote, remote_variant, result)
        return product

    def merge_variant(
        self,
        product: Product,
        remote: RemoteProduct,
        remote_variant: RemoteVariant,
        result: PullResult,
    ) -> None:
        product_id = product.id
        try:
            self._upsert_variant(product_id, remote, remote_variant, result)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                "Skipping variant after local storage error",
                extra={"product_id": product_id, "shopify_variant_id": remote_variant.id},
            )
            result.errors.append(EntityError(entity="variant", key=str(remote_variant.id), message=str(exc)))

    def _upsert_product(self, remote: RemoteProduct, result: PullResult) -> Product:
        first_variant = remote.first_variant
        remote_sku = first_variant.sku if first_variant and first_variant.sku else None
        existing = self.products.get_by_name(name=remote.title)

        if existing is None:
            product = self.products.create(
                name=remote.title,
                sku=remote_sku,
                description=remote.body_html or "",
                category=remote.product_type or DEFAULT_CATEGORY,
                price=first_variant.price if first_variant else Decimal("0"),
                stock=0,
                images=[image.src for image in remote.images],
                featured=False,
                discount=Decimal("0"),
                shopify_product_id=str(remote.id),
            )
            result.products_created += 1
            logger.info("Inserted product from Shopify", extra={"product_id": product.id, "title": remote.title})
            return product

        updates: dict = {}
        if not existing.sku and remote_sku:
            updates["sku"] = remote_sku
        if not existing.shopify_product_id:
            updates["shopify_product_id"] = str(remote.id)
        if updates:
            existing = self.products.update(product_id=existing.id, **updates) or existing
        result.products_matched += 1
        return existing

    def _upsert_variant(
        self,
        product_id: str,
        remote: RemoteProduct,
        remote_variant: RemoteVariant,
        result: PullResult,
    ) -> None:
        size, color = remote.size_and_color(remote_variant)
        shopify_variant_id = str(remote_variant.id)
        linked = self.variants.get_linked(product_id=product_id, shopify_variant_id=shopify_variant_id)

        if linked is not None:
            updates: dict = {"size": size, "color": color}
            if remote_variant.sku:
                updates["sku"] = remote_variant.sku
            self.variants.update(variant_id=linked.id, **updates)
            result.variants_updated += 1
            return

        self.variants.create(
            product_id=product_id,
            size=size,
            color=color,
            stock=max(remote_variant.inventory_quantity, 0),
            sku=remote_variant.sku or None,
            shopify_variant_id=shopify_variant_id,
        )
        result.variants_created += 1
