from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.models import Product, ProductVariant
from catalog_sync.reconciler import CatalogReconciler
from catalog_sync.schemas import PullResult, RemoteProduct


def _remote_tee(*, sku: str = "TEE-M-Black", quantity: int = 3, title: str = "Tee") -> RemoteProduct:
    return RemoteProduct.model_validate(
        {
            "id": 10,
            "title": title,
            "body_html": "<p>Remote copy</p>",
            "product_type": "Shirts",
            "options": [
                {"name": "Size", "position": 1, "values": ["M"]},
                {"name": "Color", "position": 2, "values": ["Black"]},
            ],
            "variants": [
                {
                    "id": 101,
                    "price": "15.00",
                    "sku": sku,
                    "option1": "M",
                    "option2": "Black",
                    "inventory_item_id": 9001,
                    "inventory_quantity": quantity,
                }
            ],
            "images": [{"src": "https://cdn.example.com/tee.jpg"}],
        }
    )


def _snapshot(session) -> tuple:
    products = session.scalars(select(Product).order_by(Product.id)).all()
    variants = session.scalars(select(ProductVariant).order_by(ProductVariant.id)).all()
    return (
        [(p.id, p.name, p.sku, p.description, p.price, p.featured, p.discount) for p in products],
        [(v.id, v.product_id, v.size, v.color, v.stock, v.sku, v.shopify_variant_id) for v in variants],
    )


def test_unmatched_remote_product_is_inserted_with_defaults(db_session):
    result = CatalogReconciler(db_session).reconcile([_remote_tee(quantity=5)])

    product = db_session.scalars(select(Product)).one()
    assert result.products_created == 1
    assert product.name == "Tee"
    assert product.sku == "TEE-M-Black"
    assert product.description == "<p>Remote copy</p>"
    assert product.category == "Shirts"
    assert product.price == Decimal("15.00")
    assert product.images == ["https://cdn.example.com/tee.jpg"]
    assert product.stock == 0
    assert product.featured is False
    assert product.discount == Decimal("0")
    assert product.shopify_product_id == "10"

    variant = db_session.scalars(select(ProductVariant)).one()
    assert (variant.size, variant.color) == ("M", "Black")
    assert variant.stock == 5
    assert variant.shopify_variant_id == "101"


def test_matched_product_keeps_local_fields(db_session):
    db_session.add(
        Product(
            name="Tee",
            description="Local copy",
            price=Decimal("12.00"),
            category="Local",
            featured=True,
            discount=Decimal("10"),
            sku="ABC",
        )
    )
    db_session.commit()

    result = CatalogReconciler(db_session).reconcile([_remote_tee(sku="REMOTE-SKU")])

    product = db_session.scalars(select(Product)).one()
    assert result.products_matched == 1
    assert product.sku == "ABC"
    assert product.description == "Local copy"
    assert product.price == Decimal("12.00")
    assert product.category == "Local"
    assert product.featured is True
    assert product.discount == Decimal("10")


def test_matched_product_with_empty_sku_takes_remote_sku(db_session):
    db_session.add(Product(name="Tee", sku=None))
    db_session.commit()

    CatalogReconciler(db_session).reconcile([_remote_tee()])

    assert db_session.scalars(select(Product)).one().sku == "TEE-M-Black"


def test_name_match_is_case_sensitive(db_session):
    db_session.add(Product(name="tee"))
    db_session.commit()

    result = CatalogReconciler(db_session).reconcile([_remote_tee()])

    assert result.products_created == 1
    assert len(db_session.scalars(select(Product)).all()) == 2


def test_linked_variant_keeps_local_stock_and_takes_remote_description_fields(db_session):
    product = Product(name="Tee", sku="ABC")
    product.variants = [
        ProductVariant(size="Medium", color="Noir", stock=7, sku="OLD", shopify_variant_id="101"),
    ]
    db_session.add(product)
    db_session.commit()

    result = CatalogReconciler(db_session).reconcile([_remote_tee(quantity=3)])

    variant = db_session.scalars(select(ProductVariant)).one()
    assert result.variants_updated == 1
    assert variant.stock == 7
    assert (variant.size, variant.color) == ("M", "Black")
    assert variant.sku == "TEE-M-Black"


def test_unlinked_variant_with_same_size_color_is_treated_as_new(db_session):
    product = Product(name="Tee")
    product.variants = [ProductVariant(size="M", color="Black", stock=2)]
    db_session.add(product)
    db_session.commit()

    result = CatalogReconciler(db_session).reconcile([_remote_tee(quantity=5)])

    variants = db_session.scalars(select(ProductVariant).order_by(ProductVariant.stock)).all()
    assert result.variants_created == 1
    assert [(v.stock, v.shopify_variant_id) for v in variants] == [(2, None), (5, "101")]


def test_second_pass_with_same_input_is_idempotent(db_session):
    reconciler = CatalogReconciler(db_session)
    reconciler.reconcile([_remote_tee()])
    first = _snapshot(db_session)

    second_result = reconciler.reconcile([_remote_tee()])

    assert _snapshot(db_session) == first
    assert second_result.products_created == 0
    assert second_result.variants_created == 0
    assert second_result.products_matched == 1


def test_option_positions_are_read_from_product_options(db_session):
    remote = RemoteProduct.model_validate(
        {
            "id": 20,
            "title": "Mug",
            "options": [{"name": "Color", "position": 1, "values": ["Red"]}],
            "variants": [{"id": 201, "option1": "Red", "inventory_quantity": 1}],
        }
    )

    CatalogReconciler(db_session).reconcile([remote])

    variant = db_session.scalars(select(ProductVariant)).one()
    assert (variant.size, variant.color) == (None, "Red")


def test_storage_error_skips_product_and_continues(db_session, monkeypatch):
    reconciler = CatalogReconciler(db_session)
    original_create = reconciler.products.create

    def flaky_create(**fields):
        if fields["name"] == "Broken":
            raise SQLAlchemyError("disk full")
        return original_create(**fields)

    monkeypatch.setattr(reconciler.products, "create", flaky_create)

    result = reconciler.reconcile([_remote_tee(title="Broken"), _remote_tee(title="Tee")])

    assert [error.key for error in result.errors] == ["Broken"]
    assert result.products_created == 1
    assert [p.name for p in db_session.scalars(select(Product)).all()] == ["Tee"]


def test_reconcile_accumulates_into_given_result(db_session):
    result = PullResult(fetched_count=1)

    CatalogReconciler(db_session).reconcile([_remote_tee()], result)

    assert result.fetched_count == 1
    assert result.variants_created == 1


def test_variant_storage_error_skips_only_that_variant(db_session, monkeypatch):
    remote = RemoteProduct.model_validate(
        {
            "id": 30,
            "title": "Tee",
            "options": [{"name": "Size", "position": 1, "values": ["S", "M"]}],
            "variants": [
                {"id": 301, "option1": "S", "inventory_quantity": 1},
                {"id": 302, "option1": "M", "inventory_quantity": 2},
            ],
        }
    )
    reconciler = CatalogReconciler(db_session)
    original_create = reconciler.variants.create

    def flaky_create(**fields):
        if fields["shopify_variant_id"] == "301":
            raise SQLAlchemyError("constraint failed")
        return original_create(**fields)

    monkeypatch.setattr(reconciler.variants, "create", flaky_create)

    result = reconciler.reconcile([remote])

    assert result.products_created == 1
    assert result.variants_created == 1
    assert [(error.entity, error.key) for error in result.errors] == [("variant", "301")]
    product = db_session.scalars(select(Product)).one()
    assert product.name == "Tee"
    variants = db_session.scalars(select(ProductVariant)).all()
    assert [(v.size, v.stock, v.shopify_variant_id) for v in variants] == [("M", 2, "302")]
