"""
Product field extractor: ordered fallback chains over a ParsedPage.

Every field is resolved by a FieldChain, an ordered tuple of named strategy
functions. The first strategy whose value passes the chain's validator wins;
values are never merged across strategies. Chain order is the priority order,
so the chains below are the single place where source precedence lives.

  1. Load and validate embedded state fragments (invalid ones are skipped)
  2. brand -> title -> price -> images -> variants -> attributes
     -> categories -> description
  3. Apply image policy, markup, and build the ProductRecord

A required chain that exhausts its strategies raises MissingField, which
aborts the whole extraction. Partial records are never returned.
"""

import html as html_lib
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from errors import InvalidSchema, MissingField
from images import normalize_image_urls
from models import (
    STATE_FRAGMENTS,
    ExtractionSettings,
    ProductRecord,
    ProductState,
    ProductVariants,
    SkuStock,
    StockEntry,
    StockSource,
)
from parser import ParsedPage
from stock import filter_in_stock
from taxonomy import normalize_text

logger = logging.getLogger(__name__)


# =====================================================================
# Context, chains, report
# =====================================================================


@dataclass(frozen=True)
class ExtractionContext:
    """Inputs visible to strategies. Fields resolved earlier are added via replace()."""

    page: ParsedPage
    states: tuple[ProductState, ...] = ()
    settings: ExtractionSettings = field(default_factory=ExtractionSettings)
    brand: str | None = None
    title: str | None = None


Strategy = Callable[[ExtractionContext], Any]


def _non_empty(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


@dataclass(frozen=True)
class FieldChain:
    name: str
    strategies: tuple[tuple[str, Strategy], ...]
    required: bool = False
    validator: Callable[[Any], bool] = _non_empty

    @property
    def strategy_names(self) -> list[str]:
        return [name for name, _ in self.strategies]

    def run(self, ctx: ExtractionContext) -> tuple[Any, str | None]:
        """Return (value, winning strategy name). Raises MissingField for required chains."""
        for strategy_name, strategy in self.strategies:
            value = strategy(ctx)
            if self.validator(value):
                logger.debug("  %s <- %s", self.name, strategy_name)
                return value, strategy_name
        if self.required:
            raise MissingField(self.name)
        return None, None


@dataclass
class ExtractionReport:
    """Provenance of one extraction: which strategy won each field."""

    sources: dict[str, str | None] = field(default_factory=dict)
    fragments: list[str] = field(default_factory=list)
    invalid_fragments: list[str] = field(default_factory=list)
    images_collected: int = 0
    images_kept: int = 0
    category_defaulted: bool = False
    elapsed: float = 0.0


# =====================================================================
# State fragments
# =====================================================================


def load_state_fragments(page: ParsedPage, report: ExtractionReport | None = None) -> list[ProductState]:
    """Validate known window state fragments, in priority order.

    Fragments that are present but malformed are logged and skipped.
    """
    states: list[ProductState] = []

    for name in page.malformed_fragments:
        if name in STATE_FRAGMENTS:
            logger.warning("%s", InvalidSchema(name, "payload is not valid JSON"))
            if report is not None:
                report.invalid_fragments.append(name)

    for name, model in STATE_FRAGMENTS.items():
        if name not in page.state_fragments:
            continue
        try:
            states.append(validate_fragment(name, page.state_fragments[name]))
        except InvalidSchema as exc:
            logger.warning("%s", exc)
            if report is not None:
                report.invalid_fragments.append(name)
            continue
        if report is not None:
            report.fragments.append(name)

    return states


def validate_fragment(name: str, data: Any) -> ProductState:
    model = STATE_FRAGMENTS[name]
    try:
        return model.model_validate(model.unwrap(data)).product
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        raise InvalidSchema(name, f"{location}: {first['msg']}") from exc


def _json_ld_products(page: ParsedPage) -> list[dict]:
    products = []
    for block in page.json_ld:
        ld_type = block.get("@type", "")
        types = ld_type if isinstance(ld_type, list) else [ld_type]
        if "Product" in types or "ProductGroup" in types:
            products.append(block)
    return products


def _clean_html(text: str) -> str:
    """Strip HTML tags and normalize whitespace."""
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_lib.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


# =====================================================================
# Title
# =====================================================================

# Trailing "1.234,56 TL", "299 TL", "₺49,90" or a bare "1.234,56"
_PRICE_TAIL_RE = re.compile(
    r"(?:\s*₺\s*\d[\d.]*(?:,\d{1,2})?"
    r"|\s*\d{1,3}(?:[.\s]\d{3})*(?:,\d{1,2})?\s*(?:TL|₺)"
    r"|\s*\d[\d.]*,\d{2})\s*$",
    re.IGNORECASE,
)
_LOW_STOCK_RE = re.compile(r"(?:tükenmek üzere|son\s+\d+\s+ürün)\s*!?", re.IGNORECASE)


def strip_price(text: str, brand: str | None = None) -> str:
    """Remove price substrings trailing the title."""
    while True:
        stripped = _PRICE_TAIL_RE.sub("", text)
        if stripped == text:
            return text
        text = stripped


def strip_low_stock_marker(text: str, brand: str | None = None) -> str:
    return _LOW_STOCK_RE.sub(" ", text)


def collapse_whitespace(text: str, brand: str | None = None) -> str:
    return " ".join(text.split()).strip(" ,-")


def dedupe_brand(text: str, brand: str | None = None) -> str:
    """Keep the first occurrence of the brand token, drop the repeats."""
    if not brand or not brand.strip():
        return text
    pattern = re.compile(rf"(?<!\w){re.escape(brand.strip())}(?!\w)", re.IGNORECASE)
    first = pattern.search(text)
    if not first:
        return text
    head, tail = text[: first.end()], text[first.end() :]
    return " ".join((head + pattern.sub(" ", tail)).split())


TITLE_CLEANUP_STEPS: tuple[Callable[[str, str | None], str], ...] = (
    strip_price,
    strip_low_stock_marker,
    collapse_whitespace,
    dedupe_brand,
)


def clean_title(text: str, brand: str | None = None) -> str:
    text = html_lib.unescape(text)
    for step in TITLE_CLEANUP_STEPS:
        text = step(text, brand)
    return text


def _title_from_state(ctx: ExtractionContext) -> str | None:
    for state in ctx.states:
        if not state.name or not state.name.strip():
            continue
        brand = state.brand.name if state.brand and state.brand.name else ctx.brand
        raw = f"{brand} {state.name}" if brand else state.name
        return clean_title(raw, brand)
    return None


TITLE_SELECTORS = ("h1.pr-new-br", ".prdct-desc-cntnr-name", "h1.product-title", "h1")


def _title_from_heading(ctx: ExtractionContext) -> str | None:
    for selector in TITLE_SELECTORS:
        text = ctx.page.select_text(selector)
        if text:
            return clean_title(text, ctx.brand)
    return None


def _title_from_first_block(ctx: ExtractionContext) -> str | None:
    block = ctx.page.soup.select_one(".pr-in-w")
    if not block:
        return None
    first = next(iter(block.stripped_strings), "")
    return clean_title(first, ctx.brand) if first else None


TITLE_CHAIN = FieldChain(
    name="title",
    required=True,
    strategies=(
        ("state_brand_name", _title_from_state),
        ("markup_heading", _title_from_heading),
        ("first_block_text", _title_from_first_block),
    ),
)


# =====================================================================
# Brand and description
# =====================================================================


def _brand_from_state(ctx: ExtractionContext) -> str | None:
    for state in ctx.states:
        if state.brand and state.brand.name and state.brand.name.strip():
            return state.brand.name.strip()
    return None


def _brand_from_markup(ctx: ExtractionContext) -> str | None:
    for selector in ("h1.pr-new-br a", ".product-brand-name-with-link", ".product-brand-name-without-link"):
        text = ctx.page.select_text(selector)
        if text:
            return text
    return None


def _brand_from_json_ld(ctx: ExtractionContext) -> str | None:
    for ld in _json_ld_products(ctx.page):
        brand = ld.get("brand")
        if isinstance(brand, dict):
            brand = brand.get("name")
        if isinstance(brand, str) and brand.strip():
            return brand.strip()
    return None


BRAND_CHAIN = FieldChain(
    name="brand",
    strategies=(
        ("state_brand", _brand_from_state),
        ("markup_brand", _brand_from_markup),
        ("json_ld_brand", _brand_from_json_ld),
    ),
)


def _description_from_state(ctx: ExtractionContext) -> str | None:
    for state in ctx.states:
        if state.description:
            return _clean_html(state.description)
    return None


def _description_from_markup(ctx: ExtractionContext) -> str | None:
    for selector in (".product-description", ".detail-desc-contents", ".info-wrapper"):
        text = ctx.page.select_text(selector)
        if text:
            return " ".join(text.split())
    return None


def _description_from_json_ld(ctx: ExtractionContext) -> str | None:
    for ld in _json_ld_products(ctx.page):
        if isinstance(ld.get("description"), str):
            return _clean_html(ld["description"])
    return None


def _description_from_og(ctx: ExtractionContext) -> str | None:
    desc = ctx.page.og_tags.get("description")
    return _clean_html(desc) if desc else None


DESCRIPTION_CHAIN = FieldChain(
    name="description",
    strategies=(
        ("state_description", _description_from_state),
        ("markup_description", _description_from_markup),
        ("json_ld_description", _description_from_json_ld),
        ("og_description", _description_from_og),
    ),
)


# =====================================================================
# Price
# =====================================================================

_PRICE_TOKEN_RE = re.compile(r"\d[\d.,]*")


def _normalize_decimal_separator(token: str) -> str:
    """Turn "1.234,56" / "1,234.56" / "1234,56" / "1.234" into a Decimal-parsable string."""
    last_comma, last_dot = token.rfind(","), token.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        decimal_sep = "," if last_comma > last_dot else "."
        thousands_sep = "." if decimal_sep == "," else ","
        return token.replace(thousands_sep, "").replace(decimal_sep, ".")
    if last_comma >= 0:
        if token.count(",") > 1:
            return token.replace(",", "")
        return token.replace(",", ".")
    if last_dot >= 0 and (token.count(".") > 1 or re.search(r"\.\d{3}$", token)):
        # Turkish thousands grouping: "1.234" is one thousand two hundred thirty-four
        return token.replace(".", "")
    return token


def parse_price(raw: Any) -> Decimal | None:
    """Parse a raw price (state number or display text) into a positive Decimal."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        match = _PRICE_TOKEN_RE.search(raw)
        if not match:
            return None
        token = _normalize_decimal_separator(match.group(0).rstrip(".,"))
        try:
            value = Decimal(token)
        except InvalidOperation:
            return None
    else:
        return None
    # NaN and Infinity are legal in state literals
    if not value.is_finite():
        return None
    return value if value > 0 else None


def markup_price(base: Decimal, rate: Decimal) -> Decimal:
    return (base * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# Discounted boxes first, list price last
PRICE_SELECTORS = (
    ("discounted_box", "span.prc-dsc"),
    ("discounted_box_legacy", ".prc-box-dscntd"),
    ("featured_discounted", ".product-price-container .discounted"),
    ("selling_box", ".prc-box-sllng"),
    ("list_price", "span.prc-org"),
)


def _selector_price(selector: str) -> Strategy:
    def strategy(ctx: ExtractionContext) -> Decimal | None:
        return parse_price(ctx.page.select_text(selector))

    return strategy


def _state_price(box: str) -> Strategy:
    def strategy(ctx: ExtractionContext) -> Decimal | None:
        for state in ctx.states:
            price_box = getattr(state.price, box, None) if state.price else None
            if price_box is None:
                continue
            value = parse_price(price_box.value) or parse_price(price_box.text)
            if value:
                return value
        return None

    return strategy


def _price_from_json_ld(ctx: ExtractionContext) -> Decimal | None:
    for ld in _json_ld_products(ctx.page):
        offers = ld.get("offers")
        if isinstance(offers, list) and offers:
            offers = offers[0]
        if isinstance(offers, dict):
            value = parse_price(offers.get("price") or offers.get("lowPrice"))
            if value:
                return value
    return None


PRICE_CHAIN = FieldChain(
    name="price",
    required=True,
    strategies=(
        *((name, _selector_price(selector)) for name, selector in PRICE_SELECTORS),
        ("state_discounted_price", _state_price("discounted_price")),
        ("state_selling_price", _state_price("selling_price")),
        ("json_ld_offer", _price_from_json_ld),
    ),
)


# =====================================================================
# Images
# =====================================================================


def _images_from_state(ctx: ExtractionContext) -> list[str]:
    for state in ctx.states:
        candidates = [img if isinstance(img, str) else (img.url or "") for img in state.images]
        urls = normalize_image_urls(candidates)
        if urls:
            return urls
    return []


def _images_from_json_ld(ctx: ExtractionContext) -> list[str]:
    candidates: list[str] = []
    for ld in _json_ld_products(ctx.page):
        image = ld.get("image")
        if isinstance(image, str):
            candidates.append(image)
        elif isinstance(image, dict) and isinstance(image.get("url"), str):
            candidates.append(image["url"])
        elif isinstance(image, list):
            for item in image:
                if isinstance(item, str):
                    candidates.append(item)
                elif isinstance(item, dict) and isinstance(item.get("contentUrl") or item.get("url"), str):
                    candidates.append(item.get("contentUrl") or item["url"])
    return normalize_image_urls(candidates)


def _images_from_og(ctx: ExtractionContext) -> list[str]:
    image = ctx.page.og_tags.get("image")
    return normalize_image_urls([image]) if image else []


def _images_from_gallery(ctx: ExtractionContext) -> list[str]:
    return normalize_image_urls(ctx.page.gallery_images)


IMAGES_CHAIN = FieldChain(
    name="images",
    required=True,
    strategies=(
        ("state_images", _images_from_state),
        ("json_ld_images", _images_from_json_ld),
        ("og_image", _images_from_og),
        ("gallery_markup", _images_from_gallery),
    ),
)


def apply_image_policy(urls: list[str], settings: ExtractionSettings) -> list[str]:
    """Drop the trailing gallery entry (when there is more than one) and cap the count."""
    if settings.drop_last_image and len(urls) > 1:
        urls = urls[:-1]
    return urls[: settings.max_images]


# =====================================================================
# Variants
# =====================================================================

SIZE_GROUP_NAMES = frozenset({"beden", "numara", "yas", "boyut", "size", "miktar", "hacim"})
COLOR_ATTRIBUTE_NAMES = frozenset({"renk", "color", "colour", "web color"})


def _stock_quantity(stock: SkuStock | int | None) -> int:
    if isinstance(stock, SkuStock):
        return stock.quantity
    return stock or 0


def _sizes_from_sku_variants(ctx: ExtractionContext) -> list[str] | None:
    for state in ctx.states:
        options = [
            v
            for v in state.variants
            if v.attribute_value and normalize_text(v.attribute_name or "") not in COLOR_ATTRIBUTE_NAMES
        ]
        if not options:
            continue
        entries = [
            StockEntry(
                value=v.attribute_value,
                in_stock=v.in_stock,
                sellable=v.sellable,
                stock_quantity=_stock_quantity(v.stock),
                price=parse_price(v.price.discounted_price.value)
                if v.price and v.price.discounted_price
                else None,
            )
            for v in options
        ]
        return filter_in_stock(entries, StockSource.SKU)
    return None


def _sizes_from_grouped(ctx: ExtractionContext) -> list[str] | None:
    for state in ctx.states:
        for group in state.sliced_attributes:
            if normalize_text(group.name or "") not in SIZE_GROUP_NAMES:
                continue
            entries = [
                StockEntry(value=opt.value or opt.name, in_stock=opt.in_stock, sellable=opt.sellable)
                for opt in group.attributes
                if opt.value or opt.name
            ]
            if entries:
                return filter_in_stock(entries, StockSource.GROUPED)
    return None


def _sizes_from_flat(ctx: ExtractionContext) -> list[str] | None:
    for state in ctx.states:
        entries = [
            StockEntry(value=v.value, in_stock=v.in_stock, sellable=v.sellable, price=parse_price(v.price))
            for v in state.all_variants
            if v.value
        ]
        if entries:
            return filter_in_stock(entries, StockSource.FLAT)
    return None


def _sizes_from_markup(ctx: ExtractionContext) -> list[str] | None:
    buttons = ctx.page.soup.select(".variants .sp-itm, .size-variant-wrapper .sp-itm")
    if not buttons:
        return None
    entries = []
    for button in buttons:
        classes = button.get("class") or []
        available = "so" not in classes and not button.has_attr("disabled")
        entries.append(StockEntry(value=button.get_text(strip=True), in_stock=available, sellable=available))
    return filter_in_stock(entries, StockSource.MARKUP)


# The first shape present on the page is authoritative, even when every option
# in it is sold out; later shapes are less precise about stock.
SIZES_CHAIN = FieldChain(
    name="sizes",
    validator=lambda v: v is not None,
    strategies=(
        ("state_sku_variants", _sizes_from_sku_variants),
        ("state_grouped_variants", _sizes_from_grouped),
        ("state_flat_variants", _sizes_from_flat),
        ("markup_size_buttons", _sizes_from_markup),
    ),
)


def _colors_from_state(ctx: ExtractionContext) -> list[str]:
    for state in ctx.states:
        if state.color and state.color.strip():
            # "Siyah-001" / "Lacivert - Mat": the part after the separator is a qualifier
            head = state.color.split("-", 1)[0].strip()
            if head:
                return [head]
    return []


def _colors_from_attributes(ctx: ExtractionContext) -> list[str]:
    pairs: list[tuple[str, str]] = []
    for state in ctx.states:
        pairs.extend((a.key.name, a.value.name) for a in state.attributes if a.key and a.value and a.key.name and a.value.name)
    for ld in _json_ld_products(ctx.page):
        for prop in ld.get("additionalProperty") or []:
            if isinstance(prop, dict) and prop.get("name") and prop.get("value"):
                pairs.append((str(prop["name"]), str(prop["value"])))
    for name, value in pairs:
        if normalize_text(name) in COLOR_ATTRIBUTE_NAMES:
            colors = [c.strip() for c in value.split(",") if c.strip()]
            if colors:
                return colors
    return []


COLORS_CHAIN = FieldChain(
    name="colors",
    strategies=(
        ("state_color", _colors_from_state),
        ("color_attribute", _colors_from_attributes),
    ),
)


# =====================================================================
# Attributes
# =====================================================================


def _attributes_from_json_ld(ctx: ExtractionContext) -> dict[str, str]:
    attributes: dict[str, str] = {}
    for ld in ctx.page.json_ld:
        props = ld.get("additionalProperty")
        if not isinstance(props, list):
            continue
        for prop in props:
            if not isinstance(prop, dict) or not prop.get("name"):
                continue
            value = prop.get("value")
            if value is None or value == "":
                value = prop.get("unitText")
            if value is None or value == "":
                continue
            attributes[str(prop["name"]).strip()] = str(value).strip()
    return attributes


def _attributes_from_state(ctx: ExtractionContext) -> dict[str, str]:
    for state in ctx.states:
        attributes = {
            a.key.name.strip(): a.value.name.strip()
            for a in state.attributes
            if a.key and a.value and a.key.name and a.value.name
        }
        if attributes:
            return attributes
    return {}


def _attributes_from_markup(ctx: ExtractionContext) -> dict[str, str]:
    soup = ctx.page.soup
    attributes: dict[str, str] = {}
    for prop in soup.select(".details-section .details-property"):
        key = prop.select_one(".details-property-key")
        value = prop.select_one(".details-property-value")
        if key and value and key.get_text(strip=True) and value.get_text(strip=True):
            attributes[key.get_text(strip=True)] = value.get_text(strip=True)
    for item in soup.select(".product-feature-container .featured-item"):
        key = item.select_one(".feature-name")
        value = item.select_one(".feature-value")
        if key and value and key.get_text(strip=True) and value.get_text(strip=True):
            attributes[key.get_text(strip=True)] = value.get_text(strip=True)
    for li in soup.select(".product-information-items li"):
        key, sep, value = li.get_text(" ", strip=True).partition(":")
        if sep and key.strip() and value.strip():
            attributes[key.strip()] = value.strip()
    return attributes


ATTRIBUTES_CHAIN = FieldChain(
    name="attributes",
    strategies=(
        ("json_ld_additional_property", _attributes_from_json_ld),
        ("state_attributes", _attributes_from_state),
        ("markup_properties", _attributes_from_markup),
    ),
)


# =====================================================================
# Categories
# =====================================================================

_ROOT_CATEGORIES = frozenset({"anasayfa", "ana sayfa", "trendyol"})
_TITLE_CATEGORY_RE = re.compile(r"(?:in|de|da) ([^>]+?) (?:Modelleri|Fiyatları|Ürünleri)", re.IGNORECASE)

# Checked against the folded product title, in order
TITLE_CATEGORY_KEYWORDS = (
    ("saat", "Saat"),
    ("ayakkabi", "Ayakkabı"),
    ("canta", "Çanta"),
)


def clean_categories(names: list[str]) -> list[str]:
    """Trim, drop path-joined and site-root crumbs, dedupe preserving order."""
    cleaned = []
    for name in names:
        name = " ".join(str(name).split())
        if not name or ">" in name or normalize_text(name) in _ROOT_CATEGORIES:
            continue
        cleaned.append(name)
    return list(dict.fromkeys(cleaned))


def _categories_from_hierarchy(ctx: ExtractionContext) -> list[str]:
    for state in ctx.states:
        if state.category and state.category.hierarchy:
            names = clean_categories([n.name for n in state.category.hierarchy if n.name])
            if names:
                return names
    return []


def _categories_from_state_name(ctx: ExtractionContext) -> list[str]:
    for state in ctx.states:
        if state.category and state.category.name:
            return clean_categories([state.category.name])
    return []


def _categories_from_breadcrumbs(ctx: ExtractionContext) -> list[str]:
    return clean_categories(ctx.page.breadcrumbs)


def _categories_from_info_label(ctx: ExtractionContext) -> list[str]:
    parts: list[str] = []
    for el in ctx.page.soup.select('[data-tracker-id="Category Info"]'):
        parts.extend(el.get_text(" ", strip=True).split(">"))
    return clean_categories(parts)


def _categories_from_page_title(ctx: ExtractionContext) -> list[str]:
    match = _TITLE_CATEGORY_RE.search(ctx.page.page_title)
    return clean_categories([match.group(1)]) if match else []


def _categories_from_title_keyword(ctx: ExtractionContext) -> list[str]:
    folded = normalize_text(ctx.title or "")
    for keyword, category in TITLE_CATEGORY_KEYWORDS:
        if keyword in folded:
            return [category]
    return []


CATEGORIES_CHAIN = FieldChain(
    name="categories",
    required=True,
    strategies=(
        ("state_hierarchy", _categories_from_hierarchy),
        ("state_category_name", _categories_from_state_name),
        ("breadcrumbs", _categories_from_breadcrumbs),
        ("category_info_label", _categories_from_info_label),
        ("page_title_pattern", _categories_from_page_title),
        ("title_keyword", _categories_from_title_keyword),
        ("default_category", lambda ctx: [ctx.settings.default_category]),
    ),
)


FIELD_CHAINS = (
    BRAND_CHAIN,
    TITLE_CHAIN,
    PRICE_CHAIN,
    IMAGES_CHAIN,
    SIZES_CHAIN,
    COLORS_CHAIN,
    ATTRIBUTES_CHAIN,
    CATEGORIES_CHAIN,
    DESCRIPTION_CHAIN,
)


# =====================================================================
# Main Entry Point
# =====================================================================


def extract(
    page: ParsedPage,
    url: str | None = None,
    settings: ExtractionSettings | None = None,
) -> ProductRecord:
    """Extract a canonical ProductRecord from a parsed page. Raises MissingField."""
    record, _ = extract_with_report(page, url=url, settings=settings)
    return record


def extract_with_report(
    page: ParsedPage,
    url: str | None = None,
    settings: ExtractionSettings | None = None,
) -> tuple[ProductRecord, ExtractionReport]:
    """Run every field chain and return the record with its provenance report."""
    settings = settings or ExtractionSettings()
    report = ExtractionReport()
    t0 = time.monotonic()

    states = load_state_fragments(page, report)
    ctx = ExtractionContext(page=page, states=tuple(states), settings=settings)

    def run(chain: FieldChain, context: ExtractionContext) -> Any:
        value, source = chain.run(context)
        report.sources[chain.name] = source
        return value

    brand = run(BRAND_CHAIN, ctx)
    ctx = replace(ctx, brand=brand)

    title = run(TITLE_CHAIN, ctx)
    ctx = replace(ctx, title=title)

    base_price = run(PRICE_CHAIN, ctx)

    collected = run(IMAGES_CHAIN, ctx)
    images = apply_image_policy(collected, settings)
    report.images_collected = len(collected)
    report.images_kept = len(images)
    if not images:
        raise MissingField("images")

    sizes = run(SIZES_CHAIN, ctx) or []
    colors = run(COLORS_CHAIN, ctx) or []
    attributes = run(ATTRIBUTES_CHAIN, ctx) or {}

    categories = run(CATEGORIES_CHAIN, ctx)
    report.category_defaulted = report.sources.get("categories") == "default_category"
    if report.category_defaulted:
        logger.info("No category source found, using default '%s'", settings.default_category)

    description = run(DESCRIPTION_CHAIN, ctx) or ""

    record = ProductRecord(
        url=url if url is not None else page.url,
        title=title,
        brand=brand,
        description=description,
        base_price=base_price,
        marked_up_price=markup_price(base_price, settings.markup_rate),
        currency=settings.currency,
        images=images,
        variants=ProductVariants(sizes=sizes, colors=colors),
        attributes=attributes,
        categories=categories,
        tags=list(categories),
    )
    report.elapsed = time.monotonic() - t0

    logger.info(
        "Extracted '%s': %s %s, %d images, %d sizes, %d colors, categories=%s",
        record.title,
        record.base_price,
        record.currency,
        len(record.images),
        len(record.variants.sizes),
        len(record.variants.colors),
        " > ".join(record.categories),
    )
    return record, report
