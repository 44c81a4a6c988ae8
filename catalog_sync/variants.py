from __future__ import annotations

import re
from decimal import Decimal
from typing import Sequence

from catalog_sync.schemas import OptionDraft, VariantDraft, VariantPlan

_WHITESPACE = re.compile(r"\s+")


def build_sku(product_name: str, *option_values: str) -> str:
    """``CAP`` + ``One Size`` + ``Default`` -> ``CAP-One-Size-Default``."""
    prefix = product_name[:3].upper()
    return _WHITESPACE.sub("-", "-".join([prefix, *option_values]))


def expand_variants(
    product_name: str,
    sizes: Sequence[str],
    colors: Sequence[str],
    *,
    price: Decimal,
    inventory_quantity: int = 0,
) -> VariantPlan:
    sizes = [size for size in sizes if size]
    colors = [color for color in colors if color]

    def draft(size: str | None, color: str | None) -> VariantDraft:
        values = [value for value in (size, color) if value is not None]
        return VariantDraft(
            option_values=values,
            size=size,
            color=color,
            sku=build_sku(product_name, *values),
            price=price,
            inventory_quantity=inventory_quantity,
        )

    if sizes and colors:
        return VariantPlan(
            options=[OptionDraft(name="Size", values=sizes), OptionDraft(name="Color", values=colors)],
            variants=[draft(size, color) for size in sizes for color in colors],
        )
    if sizes:
        return VariantPlan(
            options=[OptionDraft(name="Size", values=sizes)],
            variants=[draft(size, None) for size in sizes],
        )
    if colors:
        return VariantPlan(
            options=[OptionDraft(name="Color", values=colors)],
            variants=[draft(None, color) for color in colors],
        )
    return VariantPlan(options=[], variants=[draft(None, None)])
