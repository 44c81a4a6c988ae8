from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from catalog_sync.models import Product, ProductVariant


class ProductsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[Product]:
        stmt = select(Product).order_by(Product.created_at, Product.id)
        return list(self.session.scalars(stmt).all())

    def get(self, *, product_id: str) -> Optional[Product]:
        return self.session.get(Product, product_id)

    def get_by_name(self, *, name: str) -> Optional[Product]:
        # Exact, case-sensitive match; the oldest row wins when names collide.
        stmt = select(Product).where(Product.name == name).order_by(Product.created_at, Product.id).limit(1)
        return self.session.scalars(stmt).first()

    def create(self, **fields: Any) -> Product:
        product = Product(**fields)
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def create_with_variants(self, *, variants: Iterable[dict[str, Any]], **fields: Any) -> Product:
        """Insert a product and its variants in one commit."""
        product = Product(**fields)
        product.variants = [ProductVariant(**variant_fields) for variant_fields in variants]
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def update(self, *, product_id: str, **fields: Any) -> Optional[Product]:
        product = self.get(product_id=product_id)
        if not product:
            return None
        for key, value in fields.items():
            setattr(product, key, value)
        self.session.commit()
        self.session.refresh(product)
        return product

    def delete(self, *, product_id: str) -> bool:
        product = self.get(product_id=product_id)
        if not product:
            return False
        self.session.delete(product)
        self.session.commit()
        return True

    def delete_all(self) -> int:
        self.session.execute(delete(ProductVariant))
        result = self.session.execute(delete(Product))
        self.session.commit()
        return result.rowcount or 0


class ProductVariantsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, *, product_id: str | None = None) -> list[ProductVariant]:
        stmt = select(ProductVariant)
        if product_id is not None:
            stmt = stmt.where(ProductVariant.product_id == product_id)
        stmt = stmt.order_by(ProductVariant.created_at, ProductVariant.id)
        return list(self.session.scalars(stmt).all())

    def get(self, *, variant_id: str) -> Optional[ProductVariant]:
        return self.session.get(ProductVariant, variant_id)

    def get_linked(self, *, product_id: str, shopify_variant_id: str) -> Optional[ProductVariant]:
        stmt = (
            select(ProductVariant)
            .where(
                ProductVariant.product_id == product_id,
                ProductVariant.shopify_variant_id == shopify_variant_id,
            )
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def create(self, *, product_id: str, **fields: Any) -> ProductVariant:
        variant = ProductVariant(product_id=product_id, **fields)
        self.session.add(variant)
        self.session.commit()
        self.session.refresh(variant)
        return variant

    def update(self, *, variant_id: str, **fields: Any) -> Optional[ProductVariant]:
        variant = self.get(variant_id=variant_id)
        if not variant:
            return None
        for key, value in fields.items():
            setattr(variant, key, value)
        self.session.commit()
        self.session.refresh(variant)
        return variant

    def delete(self, *, variant_id: str) -> bool:
        variant = self.get(variant_id=variant_id)
        if not variant:
            return False
        self.session.delete(variant)
        self.session.commit()
        return True
