from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SIZE_OPTION_NAMES = frozenset({"size"})
COLOR_OPTION_NAMES = frozenset({"color", "colour"})


class RemoteModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RemoteOption(RemoteModel):
    name: str
    position: int = Field(ge=1, le=3)
    values: list[str] = Field(default_factory=list)


class RemoteImage(RemoteModel):
    src: str


class RemoteVariant(RemoteModel):
    id: int
    product_id: int | None = None
    title: str = ""
    price: Decimal = Decimal("0")
    sku: str | None = None
    option1: str | None = None
    option2: str | None = None
    option3: str | None = None
    inventory_item_id: int | None = None
    inventory_quantity: int = 0

    @field_validator("inventory_quantity", mode="before")
    @classmethod
    def coerce_missing_quantity(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("price", mode="before")
    @classmethod
    def coerce_missing_price(cls, value: Any) -> Any:
        return "0" if value in (None, "") else value

    def option_value(self, position: int) -> str | None:
        value = {1: self.option1, 2: self.option2, 3: self.option3}.get(position)
        return value or None


class RemoteProduct(RemoteModel):
    id: int
    title: str
    body_html: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    options: list[RemoteOption] = Field(default_factory=list)
    variants: list[RemoteVariant] = Field(default_factory=list)
    images: list[RemoteImage] = Field(default_factory=list)

    @property
    def first_variant(self) -> RemoteVariant | None:
        return self.variants[0] if self.variants else None

    def option_position(self, names: frozenset[str]) -> int | None:
        for option in sorted(self.options, key=lambda item: item.position):
            if option.name.strip().lower() in names:
                return option.position
        return None

    def size_and_color(self, variant: RemoteVariant) -> tuple[str | None, str | None]:
        """Map a variant's positional option values onto size and color.

        Positions come from the product's option list by name. A product with no
        option metadata at all falls back to option1 as size and option2 as color.
        """
        if not self.options:
            return variant.option1 or None, variant.option2 or None
        size_position = self.option_position(SIZE_OPTION_NAMES)
        color_position = self.option_position(COLOR_OPTION_NAMES)
        size = variant.option_value(size_position) if size_position else None
        color = variant.option_value(color_position) if color_position else None
        return size, color


class RemoteLocation(RemoteModel):
    id: int
    name: str = ""
    active: bool = True


class InventoryLevel(RemoteModel):
    inventory_item_id: int
    location_id: int
    available: int | None = None


class ParsedProductRow(BaseModel):
    line_number: int
    schema_kind: Literal["wide", "narrow"]
    name: str
    description: str = ""
    price: Decimal
    discount: Decimal = Decimal("0")
    category: str = ""
    sizes: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    featured: bool = False
    stock: int = 0


class OptionDraft(BaseModel):
    name: Literal["Size", "Color"]
    values: list[str]


class VariantDraft(BaseModel):
    option_values: list[str] = Field(default_factory=list)
    size: str | None = None
    color: str | None = None
    sku: str
    price: Decimal
    inventory_quantity: int = 0

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "price": format(self.price, "f"),
            "sku": self.sku,
            "inventory_quantity": self.inventory_quantity,
        }
        for index, value in enumerate(self.option_values, start=1):
            payload[f"option{index}"] = value
        return payload


class VariantPlan(BaseModel):
    options: list[OptionDraft] = Field(default_factory=list)
    variants: list[VariantDraft]


class ProductDraft(BaseModel):
    title: str
    body_html: str = ""
    vendor: str
    product_type: str
    plan: VariantPlan
    images: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body_html": self.body_html,
            "vendor": self.vendor,
            "product_type": self.product_type,
            "options": [option.model_dump() for option in self.plan.options],
            "variants": [variant.to_payload() for variant in self.plan.variants],
            "images": [{"src": src} for src in self.images],
        }


class RowError(BaseModel):
    line_number: int
    name: str | None = None
    message: str


class EntityError(BaseModel):
    entity: Literal["product", "variant"]
    key: str
    message: str


class ImportResult(BaseModel):
    created_count: int = 0
    skipped_count: int = 0
    errors: list[RowError | EntityError] = Field(default_factory=list)
    cancelled: bool = False


class PullResult(BaseModel):
    fetched_count: int = 0
    cleared_count: int = 0
    products_created: int = 0
    products_matched: int = 0
    variants_created: int = 0
    variants_updated: int = 0
    errors: list[EntityError] = Field(default_factory=list)
    cancelled: bool = False


class StockUpdateResult(BaseModel):
    success: bool = True
    updated: list[str] = Field(default_factory=list)
    propagated: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[EntityError] = Field(default_factory=list)
