"""Tests for extractor: fallback chains, title cleanup, price parsing and extraction failures."""

import logging
from decimal import Decimal

import pytest

from errors import MissingField
from extractor import (
    CATEGORIES_CHAIN,
    PRICE_CHAIN,
    TITLE_CHAIN,
    TITLE_CLEANUP_STEPS,
    apply_image_policy,
    clean_title,
    collapse_whitespace,
    dedupe_brand,
    extract,
    extract_with_report,
    markup_price,
    parse_price,
    strip_low_stock_marker,
    strip_price,
)
from models import ExtractionSettings
from parser import parse_html

IMAGE_BODY = '<div class="product-slide"><img src="https://cdn.dsmcdn.com/ty1/p/a.jpg"></div>'
PRICE_BODY = '<span class="prc-dsc">299,90 TL</span>'


# ============================================================================
# Price parsing
# ============================================================================
class TestParsePrice:
    @pytest.mark.parametrize("raw,expected", [
        ("1.234,56 TL", Decimal("1234.56")),
        ("1234.56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("299 TL", Decimal("299")),
        ("₺49,90", Decimal("49.90")),
        ("1.234 TL", Decimal("1234")),
        ("12.50", Decimal("12.50")),
        ("1.234.567,00", Decimal("1234567.00")),
        (1234.56, Decimal("1234.56")),
        (100, Decimal("100")),
    ])
    def test_parses(self, raw, expected):
        assert parse_price(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "Fiyat yok", "0,00 TL", 0, -5, True, float("nan"), float("inf")])
    def test_rejects(self, raw):
        assert parse_price(raw) is None

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_state_price_falls_through(self, make_page, bad):
        html = make_page(state={"product": {
            "name": "Tişört",
            "images": ["/ty1/a.jpg"],
            "price": {"discountedPrice": {"value": bad}, "sellingPrice": {"value": 100}},
        }})
        record, report = extract_with_report(parse_html(html))
        assert record.base_price == Decimal("100")
        assert report.sources["price"] == "state_selling_price"

    def test_markup_rounds_half_up(self):
        assert markup_price(Decimal("1234.56"), Decimal("1.15")) == Decimal("1419.74")
        assert markup_price(Decimal("0.10"), Decimal("1.15")) == Decimal("0.12")

    @pytest.mark.parametrize("base", ["1", "9.99", "1234.56", "250", "0.01"])
    def test_markup_matches_rounded_product(self, base):
        result = markup_price(Decimal(base), Decimal("1.15"))
        assert result == round(Decimal(base) * Decimal("1.15"), 2)
        assert result.as_tuple().exponent == -2


# ============================================================================
# Title cleanup
# ============================================================================
class TestTitleCleanup:
    def test_steps_are_ordered(self):
        assert TITLE_CLEANUP_STEPS == (strip_price, strip_low_stock_marker, collapse_whitespace, dedupe_brand)

    def test_strip_trailing_price(self):
        assert strip_price("Nike Air Max 90 1.234,56 TL") == "Nike Air Max 90"

    def test_strip_price_keeps_model_numbers(self):
        assert strip_price("Nike Air Max 90") == "Nike Air Max 90"

    def test_strip_low_stock_marker(self):
        assert collapse_whitespace(strip_low_stock_marker("Nike Air Tükenmek Üzere")) == "Nike Air"
        assert collapse_whitespace(strip_low_stock_marker("Son 3 Ürün Nike Air")) == "Nike Air"

    def test_collapse_whitespace(self):
        assert collapse_whitespace("  Nike \n  Air\tMax ") == "Nike Air Max"

    def test_dedupe_brand_keeps_first(self):
        assert dedupe_brand("Nike Air Max 90 Nike", "Nike") == "Nike Air Max 90"

    def test_dedupe_brand_is_case_insensitive(self):
        assert dedupe_brand("Nike Air NIKE Max", "nike") == "Nike Air Max"

    def test_dedupe_brand_without_brand(self):
        assert dedupe_brand("Nike Air Nike", None) == "Nike Air Nike"

    def test_full_cleanup(self):
        assert clean_title("Nike  Air Max 90 Nike 299 TL", "Nike") == "Nike Air Max 90"


# ============================================================================
# Full extraction from embedded state
# ============================================================================
class TestStatePage:
    def test_record_fields(self, state_page_html):
        record = extract(parse_html(state_page_html), url="https://www.trendyol.com/x-p-1")

        assert record.url == "https://www.trendyol.com/x-p-1"
        assert record.title == "Nike Air Max 90"
        assert record.brand == "Nike"
        assert record.description == "Rahat & hafif"
        assert record.base_price == Decimal("1234.56")
        assert record.marked_up_price == Decimal("1419.74")
        assert record.currency == "TRY"
        assert record.variants.sizes == ["38", "39"]
        assert record.variants.colors == ["Siyah"]
        assert record.attributes == {"Materyal": "Deri"}
        assert record.categories == ["Ayakkabı", "Sneaker"]
        assert record.tags == record.categories

    def test_last_image_dropped(self, state_page_html):
        record = extract(parse_html(state_page_html))
        assert record.images == [
            "https://cdn.dsmcdn.com/ty123/product/media/images/1_org_zoom.jpg",
            "https://cdn.dsmcdn.com/ty123/product/media/images/2_org_zoom.jpg",
        ]

    def test_report_names_winning_strategies(self, state_page_html):
        _, report = extract_with_report(parse_html(state_page_html))
        assert report.sources["title"] == "state_brand_name"
        assert report.sources["price"] == "state_discounted_price"
        assert report.sources["images"] == "state_images"
        assert report.sources["sizes"] == "state_sku_variants"
        assert report.sources["colors"] == "state_color"
        assert report.sources["categories"] == "state_hierarchy"
        assert report.fragments == ["__PRODUCT_DETAIL_APP_INITIAL_STATE__"]
        assert report.images_collected == 3
        assert report.images_kept == 2
        assert not report.category_defaulted

    def test_envoy_fragment_inside_props(self, make_page, product_state):
        html = make_page(envoy={"props": {"product": product_state}})
        record, report = extract_with_report(parse_html(html))
        assert record.title == "Nike Air Max 90"
        assert report.fragments == ["__envoy_product-detail__PROPS"]

    def test_selector_price_beats_state_price(self, make_page, product_state):
        html = make_page(state={"product": product_state}, body='<span class="prc-dsc">999,00 TL</span>')
        record, report = extract_with_report(parse_html(html))
        assert record.base_price == Decimal("999.00")
        assert report.sources["price"] == "discounted_box"

    def test_selling_price_when_no_discount(self, make_page, product_state):
        product_state["price"] = {"sellingPrice": {"value": "1.500,00"}}
        record = extract(parse_html(make_page(state={"product": product_state})))
        assert record.base_price == Decimal("1500.00")

    def test_extraction_is_repeatable(self, state_page_html):
        page = parse_html(state_page_html)
        assert extract(page) == extract(page)


# ============================================================================
# Invalid fragments
# ============================================================================
class TestInvalidFragments:
    def test_wrong_shape_is_skipped_and_logged(self, make_page, caplog):
        html = make_page(state={"product": "not-an-object"}, body=IMAGE_BODY + PRICE_BODY + "<h1>Basit Tişört</h1>")
        with caplog.at_level(logging.WARNING, logger="extractor"):
            record, report = extract_with_report(parse_html(html))

        assert record.title == "Basit Tişört"
        assert report.invalid_fragments == ["__PRODUCT_DETAIL_APP_INITIAL_STATE__"]
        assert "unexpected shape" in caplog.text

    def test_malformed_json_is_skipped(self, make_page):
        html = make_page(
            raw_script="window.__PRODUCT_DETAIL_APP_INITIAL_STATE__ = {bad json};",
            body=IMAGE_BODY + PRICE_BODY + "<h1>Basit Tişört</h1>",
        )
        record, report = extract_with_report(parse_html(html))
        assert record.title == "Basit Tişört"
        assert report.invalid_fragments == ["__PRODUCT_DETAIL_APP_INITIAL_STATE__"]

    def test_one_bad_fragment_does_not_hide_another(self, make_page, product_state):
        html = make_page(state={"product": {"images": "x"}}, envoy={"product": product_state})
        record, report = extract_with_report(parse_html(html))
        assert record.title == "Nike Air Max 90"
        assert report.invalid_fragments == ["__PRODUCT_DETAIL_APP_INITIAL_STATE__"]
        assert report.fragments == ["__envoy_product-detail__PROPS"]

    def test_null_stock_flags_keep_the_fragment(self, make_page, product_state):
        product_state["variants"][0]["inStock"] = None
        product_state["variants"][1]["stock"] = {"quantity": None}
        record, report = extract_with_report(parse_html(make_page(state={"product": product_state})))
        assert record.title == "Nike Air Max 90"
        assert report.invalid_fragments == []
        assert record.variants.sizes == ["39"]

    def test_unreadable_option_is_dropped_alone(self, make_page, product_state):
        product_state["variants"][0]["inStock"] = {"unexpected": "object"}
        record, report = extract_with_report(parse_html(make_page(state={"product": product_state})))
        assert report.fragments == ["__PRODUCT_DETAIL_APP_INITIAL_STATE__"]
        assert record.variants.sizes == ["39"]


# ============================================================================
# Markup fallbacks
# ============================================================================
class TestMarkupPage:
    def test_record_fields(self, markup_page_html):
        record, report = extract_with_report(parse_html(markup_page_html))

        assert record.title == "Nike Air Max 90"
        assert record.brand == "Nike"
        assert record.base_price == Decimal("1234.56")
        assert record.marked_up_price == Decimal("1419.74")
        assert record.images == [
            "https://cdn.dsmcdn.com/ty1/p/1_org_zoom.jpg",
            "https://cdn.dsmcdn.com/ty1/p/2_org_zoom.jpg",
        ]
        assert record.variants.sizes == ["40", "42"]
        assert record.categories == ["Ayakkabı", "Sneaker"]

        assert report.sources["title"] == "markup_heading"
        assert report.sources["price"] == "discounted_box"
        assert report.sources["images"] == "gallery_markup"
        assert report.sources["sizes"] == "markup_size_buttons"
        assert report.sources["categories"] == "breadcrumbs"

    def test_og_image_before_gallery(self, make_page):
        head = '<meta property="og:image" content="//cdn.dsmcdn.com/ty9/og.jpg">'
        html = make_page(head=head, body=IMAGE_BODY + PRICE_BODY + "<h1>Ürün Adı</h1>")
        record = extract(parse_html(html))
        # A single collected image is never dropped
        assert record.images == ["https://cdn.dsmcdn.com/ty9/og_org_zoom.jpg"]

    def test_json_ld_attributes(self, make_page):
        head = (
            '<script type="application/ld+json">{"@type": "Product", "name": "X", '
            '"additionalProperty": [{"name": "Materyal", "value": "Pamuk"}, '
            '{"name": "Hacim", "unitText": "50 ml"}, {"name": "Boş"}]}</script>'
        )
        html = make_page(head=head, body=IMAGE_BODY + PRICE_BODY + "<h1>Ürün Adı</h1>")
        record, report = extract_with_report(parse_html(html))
        assert record.attributes == {"Materyal": "Pamuk", "Hacim": "50 ml"}
        assert report.sources["attributes"] == "json_ld_additional_property"

    def test_json_ld_offer_price(self, make_page):
        head = '<script type="application/ld+json">{"@type": "Product", "offers": {"price": "249.99"}}</script>'
        html = make_page(head=head, body=IMAGE_BODY + "<h1>Ürün Adı</h1>")
        record, report = extract_with_report(parse_html(html))
        assert record.base_price == Decimal("249.99")
        assert report.sources["price"] == "json_ld_offer"


# ============================================================================
# Variants
# ============================================================================
class TestVariants:
    def _extract(self, make_page, product):
        product.setdefault("name", "Tişört")
        product.setdefault("images", ["/ty1/a.jpg"])
        product.setdefault("price", {"discountedPrice": {"value": 100}})
        return extract_with_report(parse_html(make_page(state={"product": product})))

    def test_grouped_accepts_sellable(self, make_page):
        record, report = self._extract(make_page, {
            "slicedAttributes": [
                {"name": "Renk", "attributes": [{"value": "Mavi", "inStock": True}]},
                {"name": "Beden", "attributes": [
                    {"value": "S", "inStock": False, "sellable": True},
                    {"value": "M", "inStock": False, "sellable": False},
                    {"value": "L", "inStock": True},
                ]},
            ],
        })
        assert record.variants.sizes == ["S", "L"]
        assert report.sources["sizes"] == "state_grouped_variants"

    def test_flat_accepts_sellable(self, make_page):
        record, report = self._extract(make_page, {
            "allVariants": [
                {"value": "36", "inStock": True},
                {"value": "37", "sellable": True},
                {"value": "38"},
            ],
        })
        assert record.variants.sizes == ["36", "37"]
        assert report.sources["sizes"] == "state_flat_variants"

    def test_sku_list_requires_in_stock(self, make_page):
        record, _ = self._extract(make_page, {
            "variants": [
                {"attributeName": "Beden", "attributeValue": "S", "inStock": False, "sellable": True},
                {"attributeName": "Beden", "attributeValue": "M", "inStock": True},
            ],
        })
        assert record.variants.sizes == ["M"]

    def test_sold_out_sku_list_is_authoritative(self, make_page):
        record, report = self._extract(make_page, {
            "variants": [{"attributeName": "Beden", "attributeValue": "S", "inStock": False}],
            "allVariants": [{"value": "S", "inStock": True}],
        })
        assert record.variants.sizes == []
        assert report.sources["sizes"] == "state_sku_variants"

    def test_no_variant_shapes(self, make_page):
        record, report = self._extract(make_page, {})
        assert record.variants.sizes == []
        assert not record.variants.has_options
        assert report.sources["sizes"] is None

    def test_colors_from_comma_separated_attribute(self, make_page):
        record, report = self._extract(make_page, {
            "attributes": [{"key": {"name": "Renk"}, "value": {"name": "Kırmızı, Mavi"}}],
        })
        assert record.variants.colors == ["Kırmızı", "Mavi"]
        assert report.sources["colors"] == "color_attribute"


# ============================================================================
# Categories
# ============================================================================
class TestCategories:
    def test_chain_order(self):
        assert CATEGORIES_CHAIN.strategy_names == [
            "state_hierarchy",
            "state_category_name",
            "breadcrumbs",
            "category_info_label",
            "page_title_pattern",
            "title_keyword",
            "default_category",
        ]

    def test_category_info_label(self, make_page):
        body = IMAGE_BODY + PRICE_BODY + '<h1>Ürün</h1><span data-tracker-id="Category Info">Ayakkabı > Sneaker</span>'
        record = extract(parse_html(make_page(body=body)))
        assert record.categories == ["Ayakkabı", "Sneaker"]

    def test_page_title_pattern(self, make_page):
        html = make_page(title="Trendyol'da Kadın Sneaker Modelleri", body=IMAGE_BODY + PRICE_BODY + "<h1>Ürün</h1>")
        record = extract(parse_html(html))
        assert record.categories == ["Kadın Sneaker"]

    def test_title_keyword(self, make_page):
        record = extract(parse_html(make_page(body=IMAGE_BODY + PRICE_BODY + "<h1>Casio Kol Saati</h1>")))
        assert record.categories == ["Saat"]

    def test_default_when_nothing_matches(self, make_page):
        record, report = extract_with_report(parse_html(make_page(body=IMAGE_BODY + PRICE_BODY + "<h1>Ürün</h1>")))
        assert record.categories == ["Diğer"]
        assert record.tags == ["Diğer"]
        assert report.category_defaulted

    def test_default_is_configurable(self, make_page):
        html = make_page(body=IMAGE_BODY + PRICE_BODY + "<h1>Ürün</h1>")
        record = extract(parse_html(html), settings=ExtractionSettings(default_category="Genel"))
        assert record.categories == ["Genel"]


# ============================================================================
# Required fields
# ============================================================================
class TestMissingFields:
    def test_missing_title(self, make_page):
        with pytest.raises(MissingField) as exc_info:
            extract(parse_html(make_page(body=IMAGE_BODY + PRICE_BODY)))
        assert exc_info.value.field == "title"

    def test_missing_price(self, make_page):
        with pytest.raises(MissingField) as exc_info:
            extract(parse_html(make_page(body=IMAGE_BODY + "<h1>Ürün</h1>")))
        assert exc_info.value.field == "price"

    def test_missing_images(self, make_page):
        body = PRICE_BODY + '<h1>Ürün</h1><div class="product-slide"><img src="/static/video.mp4"></div>'
        with pytest.raises(MissingField) as exc_info:
            extract(parse_html(make_page(body=body)))
        assert exc_info.value.field == "images"

    def test_required_chains(self):
        assert TITLE_CHAIN.required
        assert PRICE_CHAIN.required
        assert CATEGORIES_CHAIN.required


# ============================================================================
# Image policy
# ============================================================================
class TestImagePolicy:
    def test_drops_last_of_many(self):
        assert apply_image_policy(["a", "b", "c"], ExtractionSettings()) == ["a", "b"]

    def test_keeps_single_image(self):
        assert apply_image_policy(["a"], ExtractionSettings()) == ["a"]

    def test_drop_can_be_disabled(self):
        assert apply_image_policy(["a", "b"], ExtractionSettings(drop_last_image=False)) == ["a", "b"]

    def test_caps_after_drop(self):
        urls = [str(i) for i in range(12)]
        assert apply_image_policy(urls, ExtractionSettings()) == urls[:8]
