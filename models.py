import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_CATEGORY = "Diğer"
DEFAULT_CURRENCY = "TRY"
MARKUP_RATE = Decimal("1.15")
MAX_IMAGES = 8

logger = logging.getLogger(__name__)


class ExtractionSettings(BaseModel):
    """Tunable policy knobs for a single extraction run."""

    model_config = ConfigDict(frozen=True)

    markup_rate: Decimal = MARKUP_RATE
    # Source pages append a trailing placeholder/video thumbnail to the gallery
    drop_last_image: bool = True
    max_images: int = MAX_IMAGES
    default_category: str = DEFAULT_CATEGORY
    currency: str = DEFAULT_CURRENCY


# =====================================================================
# Embedded state fragments
# =====================================================================


class _StateModel(BaseModel):
    # Fragments are camelCase and carry far more keys than we read
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NamedValue(_StateModel):
    name: str | None = None


class PriceBox(_StateModel):
    value: float | str | None = None
    text: str | None = None


class PriceState(_StateModel):
    discounted_price: PriceBox | None = None
    selling_price: PriceBox | None = None
    original_price: PriceBox | None = None


class ImageState(_StateModel):
    url: str | None = None


class CategoryState(_StateModel):
    name: str | None = None
    hierarchy: list[NamedValue] = []


class AttributeState(_StateModel):
    key: NamedValue | None = None
    value: NamedValue | None = None


class SkuStock(_StateModel):
    quantity: int = 0

    @field_validator("quantity", mode="before")
    @classmethod
    def null_quantity_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class _OptionState(_StateModel):
    # Stock flags are sometimes null on individual options
    in_stock: bool = False
    sellable: bool = False

    @field_validator("in_stock", "sellable", mode="before")
    @classmethod
    def null_flag_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class SkuVariantState(_OptionState):
    """One purchasable SKU with its own stock record (most granular shape)."""

    attribute_name: str | None = None
    attribute_value: str | None = None
    stock: SkuStock | int | None = None
    price: PriceState | None = None


class FlatVariantState(_OptionState):
    """Option from the flat ``allVariants`` list."""

    value: str | None = None
    price: float | None = None


class GroupedOptionState(_OptionState):
    value: str | None = None
    name: str | None = None


class VariantGroupState(_StateModel):
    """An attribute group from ``slicedAttributes`` (e.g. all "Beden" options)."""

    name: str | None = None
    attributes: list[GroupedOptionState] = []


_OPTION_MODELS: dict[str, type[_StateModel]] = {
    "variants": SkuVariantState,
    "all_variants": FlatVariantState,
    "sliced_attributes": VariantGroupState,
}


class ProductState(_StateModel):
    """The product node shared by every known state fragment version."""

    name: str | None = None
    brand: NamedValue | None = None
    price: PriceState | None = None
    images: list[str | ImageState] = []
    category: CategoryState | None = None
    description: str | None = None
    color: str | None = None
    attributes: list[AttributeState] = []
    variants: list[SkuVariantState] = []
    all_variants: list[FlatVariantState] = []
    sliced_attributes: list[VariantGroupState] = []

    @field_validator("variants", "all_variants", "sliced_attributes", mode="before")
    @classmethod
    def drop_invalid_options(cls, v: Any, info: ValidationInfo) -> Any:
        """Validate option lists per item so one odd option does not void the product."""
        if not isinstance(v, list):
            return v
        item_model = _OPTION_MODELS[info.field_name]
        kept = []
        for index, item in enumerate(v):
            try:
                item_model.model_validate(item)
            except ValidationError as exc:
                logger.debug("Dropping %s[%d]: %s", info.field_name, index, exc.errors()[0]["msg"])
                continue
            kept.append(item)
        return kept


class StateFragment(_StateModel):
    """A known window state global wrapping one product node."""

    product: ProductState

    @classmethod
    def unwrap(cls, data: Any) -> Any:
        return data


class ProductDetailState(StateFragment):
    """``window.__PRODUCT_DETAIL_APP_INITIAL_STATE__`` (legacy template)."""

    kind: Literal["product_detail"] = "product_detail"


class EnvoyProductState(StateFragment):
    """``window["__envoy_product-detail__PROPS"]`` (micro-frontend template)."""

    kind: Literal["envoy"] = "envoy"

    @classmethod
    def unwrap(cls, data: Any) -> Any:
        # Newer builds nest the payload under "props"
        if isinstance(data, dict) and "product" not in data and isinstance(data.get("props"), dict):
            return data["props"]
        return data


# Global variable name -> fragment model, in priority order
STATE_FRAGMENTS: dict[str, type[StateFragment]] = {
    "__PRODUCT_DETAIL_APP_INITIAL_STATE__": ProductDetailState,
    "__envoy_product-detail__PROPS": EnvoyProductState,
}


# =====================================================================
# Canonical record
# =====================================================================


class StockSource(str, Enum):
    """Shape a raw variant option list came from."""

    SKU = "sku"
    GROUPED = "grouped"
    FLAT = "flat"
    MARKUP = "markup"


class StockEntry(BaseModel):
    value: str
    in_stock: bool = False
    sellable: bool = False
    stock_quantity: int = 0
    price: Decimal | None = None


class ProductVariants(BaseModel):
    sizes: list[str] = []
    colors: list[str] = []

    @field_validator("sizes", "colors")
    @classmethod
    def dedupe_preserving_order(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(s.strip() for s in v if s and s.strip()))

    @property
    def has_options(self) -> bool:
        return bool(self.sizes or self.colors)


class ProductRecord(BaseModel):
    url: str = ""
    title: str = Field(min_length=1)
    brand: str | None = None
    description: str = ""
    base_price: Decimal = Field(gt=0)
    marked_up_price: Decimal = Field(gt=0)
    currency: str = DEFAULT_CURRENCY
    images: list[str] = Field(min_length=1)
    variants: ProductVariants = ProductVariants()
    attributes: dict[str, str] = {}
    categories: list[str] = Field(min_length=1)
    tags: list[str] = []

    @field_validator("images")
    @classmethod
    def unique_images(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class StoredProduct(ProductRecord):
    id: int


# =====================================================================
# Category taxonomy
# =====================================================================


class VariantLabels(BaseModel):
    model_config = ConfigDict(frozen=True)

    size_label: str | None = None
    color_label: str | None = None
    material_label: str | None = None


class CategoryConfig(BaseModel):
    """Target-platform category and variant configuration for one keyword group."""

    model_config = ConfigDict(frozen=True)

    target_category: str
    variant_labels: VariantLabels = VariantLabels()
    default_stock: int = 50
    has_variants: bool = True
    # Attribute names worth highlighting for this category
    attributes: tuple[str, ...] = ()


class CategoryRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    keywords: tuple[str, ...]
    config: CategoryConfig


class CategoryTable(BaseModel):
    """Ordered keyword table. Earlier rules win; never mutated after load."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[CategoryRule, ...]
    gender_rules: tuple[CategoryRule, ...] = ()
    default: CategoryConfig


class CategoryMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    config: CategoryConfig
    keyword: str | None = None
    resolution: Literal["keyword", "gender", "default"]


# =====================================================================
# CSV export
# =====================================================================


# Field name -> Shopify import header, in import-file order
CSV_COLUMNS: dict[str, str] = {
    "handle": "Handle",
    "title": "Title",
    "body": "Body (HTML)",
    "vendor": "Vendor",
    "product_category": "Product Category",
    "custom_category": "Custom Category",
    "type": "Type",
    "tags": "Tags",
    "published": "Published",
    "option1_name": "Option1 Name",
    "option1_value": "Option1 Value",
    "option2_name": "Option2 Name",
    "option2_value": "Option2 Value",
    "variant_sku": "Variant SKU",
    "variant_price": "Variant Price",
    "variant_inventory_policy": "Variant Inventory Policy",
    "variant_inventory_quantity": "Variant Inventory Quantity",
    "variant_weight": "Variant Weight",
    "variant_weight_unit": "Variant Weight Unit",
    "status": "Status",
    "image_src": "Image Src",
    "image_position": "Image Position",
}


class CsvRow(BaseModel):
    """One Shopify import row. Image-only rows leave everything but handle/image blank."""

    handle: str
    title: str = ""
    body: str = ""
    vendor: str = ""
    product_category: str = ""
    custom_category: str = ""
    type: str = ""
    tags: str = ""
    published: str = ""
    option1_name: str = ""
    option1_value: str = ""
    option2_name: str = ""
    option2_value: str = ""
    variant_sku: str = ""
    variant_price: str = ""
    variant_inventory_policy: str = ""
    variant_inventory_quantity: str = ""
    variant_weight: str = ""
    variant_weight_unit: str = ""
    status: str = ""
    image_src: str = ""
    image_position: str = ""

    @property
    def is_image_only(self) -> bool:
        return not self.title and bool(self.image_src)

    def as_csv_dict(self) -> dict[str, str]:
        data = self.model_dump()
        return {header: data[name] for name, header in CSV_COLUMNS.items()}
