"""Shared page builders and fixtures for the test suite."""

import json
from decimal import Decimal

import pytest

from models import ProductRecord, ProductVariants
from taxonomy import load_category_table

STATE_GLOBAL = "__PRODUCT_DETAIL_APP_INITIAL_STATE__"
ENVOY_GLOBAL = "__envoy_product-detail__PROPS"

# Real product pages are large; fetch checks reject tiny documents
PADDING = "<p>" + "Ürün açıklaması ve kargo bilgileri. " * 40 + "</p>"


def build_page(state=None, envoy=None, head="", body="", title="Ürün", raw_script=""):
    """Assemble a product page with optional embedded state fragments."""
    scripts = []
    if state is not None:
        scripts.append(f"<script>window.{STATE_GLOBAL} = {json.dumps(state)};</script>")
    if envoy is not None:
        scripts.append(f'<script>window["{ENVOY_GLOBAL}"] = {json.dumps(envoy)};</script>')
    if raw_script:
        scripts.append(f"<script>{raw_script}</script>")
    return (
        f"<html><head><title>{title}</title>{head}</head>"
        f"<body>{body}{''.join(scripts)}{PADDING}</body></html>"
    )


def sample_product_state() -> dict:
    return {
        "name": "Air Max 90",
        "brand": {"name": "Nike"},
        "price": {
            "discountedPrice": {"value": 1234.56, "text": "1.234,56 TL"},
            "sellingPrice": {"value": 1500, "text": "1.500 TL"},
        },
        "images": [
            "/ty123/product/media/images/1.jpg",
            "/ty123/product/media/images/2.jpg",
            "/ty123/product/media/images/3.jpg",
        ],
        "category": {
            "name": "Sneaker",
            "hierarchy": [{"name": "Ayakkabı"}, {"name": "Sneaker"}],
        },
        "description": "<p>Rahat &amp; hafif</p>",
        "color": "Siyah-001",
        "attributes": [{"key": {"name": "Materyal"}, "value": {"name": "Deri"}}],
        "variants": [
            {"attributeName": "Beden", "attributeValue": "38", "inStock": True, "stock": {"quantity": 4}},
            {"attributeName": "Beden", "attributeValue": "39", "inStock": True, "stock": 2},
            {"attributeName": "Beden", "attributeValue": "40", "inStock": False, "sellable": True},
        ],
    }


MARKUP_BODY = """
<div class="product-container">
  <h1 class="pr-new-br"><a href="/nike">Nike</a> <span>Air Max 90</span></h1>
  <div class="product-price-container">
    <span class="prc-org">1.500,00 TL</span>
    <span class="prc-dsc">1.234,56 TL</span>
  </div>
  <div class="breadcrumb-wrapper"><ul class="breadcrumb">
    <li>Anasayfa</li><li>Ayakkabı</li><li>Sneaker</li>
  </ul></div>
  <div class="product-slide"><img src="https://cdn.dsmcdn.com/ty1/p/1_200x200.jpg"></div>
  <div class="product-slide"><img src="https://cdn.dsmcdn.com/ty1/p/2_200x200.jpg"></div>
  <div class="product-slide"><img src="https://cdn.dsmcdn.com/ty1/p/3_200x200.jpg"></div>
  <div class="variants">
    <div class="sp-itm">40</div>
    <div class="sp-itm so">41</div>
    <div class="sp-itm">42</div>
  </div>
</div>
"""


@pytest.fixture
def make_page():
    return build_page


@pytest.fixture
def product_state():
    return sample_product_state()


@pytest.fixture
def state_page_html():
    return build_page(state={"product": sample_product_state()})


@pytest.fixture
def markup_page_html():
    return build_page(body=MARKUP_BODY)


@pytest.fixture(scope="session")
def category_table():
    return load_category_table()


@pytest.fixture
def make_record():
    def _make(**overrides) -> ProductRecord:
        data = {
            "url": "https://www.trendyol.com/nike/air-max-90-p-1",
            "title": "Nike Air Max 90",
            "brand": "Nike",
            "description": "Rahat ve hafif",
            "base_price": Decimal("1234.56"),
            "marked_up_price": Decimal("1419.74"),
            "images": ["https://cdn.dsmcdn.com/ty1/p/1_org_zoom.jpg"],
            "variants": ProductVariants(),
            "attributes": {},
            "categories": ["Ayakkabı", "Sneaker"],
            "tags": ["Ayakkabı", "Sneaker"],
        }
        data.update(overrides)
        return ProductRecord(**data)

    return _make
