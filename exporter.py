"""
Shopify product CSV export.

One ProductRecord becomes one or more rows: a full row per size x color
combination (or a single row when the product has no options), followed by
image-only continuation rows for every image after the first.
"""

import csv
import html
import io
import logging
import re
from collections.abc import Iterable
from itertools import product as cross_product
from typing import TextIO

from models import CSV_COLUMNS, CategoryConfig, CsvRow, ProductRecord
from taxonomy import normalize_text

logger = logging.getLogger(__name__)

DEFAULT_SIZE_LABEL = "Beden"
DEFAULT_COLOR_LABEL = "Renk"
DEFAULT_VENDOR = "Trendyol"
ATTRIBUTES_HEADING = "Ürün Özellikleri"

PUBLISHED = "TRUE"
STATUS = "active"
INVENTORY_POLICY = "deny"
VARIANT_WEIGHT = "0.5"
VARIANT_WEIGHT_UNIT = "kg"

EXPORT_FILENAME = "shopify_products.csv"

_HANDLE_RE = re.compile(r"[^a-z0-9]+")


def make_handle(title: str) -> str:
    """URL-safe handle: "Nike Air Max 90 Ayakkabı" -> "nike-air-max-90-ayakkabi"."""
    return _HANDLE_RE.sub("-", normalize_text(title)).strip("-") or "product"


def build_body(record: ProductRecord, config: CategoryConfig) -> str:
    """Description followed by an HTML list of attributes, category allowlist first."""
    body = html.escape(record.description, quote=False)
    if not record.attributes:
        return body

    allowlist = [name for name in config.attributes if name in record.attributes]
    ordered = allowlist + [name for name in record.attributes if name not in allowlist]
    items = "\n".join(
        f"<li><strong>{html.escape(name)}:</strong> {html.escape(record.attributes[name])}</li>"
        for name in ordered
    )
    return f"{body}\n\n<h3>{ATTRIBUTES_HEADING}</h3>\n<ul>{items}</ul>"


def _vendor(record: ProductRecord) -> str:
    if record.brand:
        return record.brand
    return record.categories[0] if record.categories else DEFAULT_VENDOR


def _base_row(record: ProductRecord, config: CategoryConfig, handle: str) -> CsvRow:
    return CsvRow(
        handle=handle,
        title=record.title,
        body=build_body(record, config),
        vendor=_vendor(record),
        product_category=config.target_category,
        custom_category=" > ".join(record.categories),
        type=record.categories[-1],
        tags=", ".join(record.tags),
        published=PUBLISHED,
        variant_price=f"{record.marked_up_price:.2f}",
        variant_inventory_policy=INVENTORY_POLICY,
        variant_inventory_quantity=str(config.default_stock),
        variant_weight=VARIANT_WEIGHT,
        variant_weight_unit=VARIANT_WEIGHT_UNIT,
        status=STATUS,
    )


def _variant_rows(record: ProductRecord, config: CategoryConfig, base: CsvRow) -> list[CsvRow]:
    sizes = record.variants.sizes
    colors = record.variants.colors
    labels = config.variant_labels

    # Option columns are taken in order of presence: sizes first, then colors
    dimensions = []
    if sizes:
        dimensions.append((labels.size_label or DEFAULT_SIZE_LABEL, sizes))
    if colors:
        dimensions.append((labels.color_label or DEFAULT_COLOR_LABEL, colors))

    rows = []
    for combo in cross_product(*(values for _, values in dimensions)):
        update = {"variant_sku": "-".join([base.handle, *combo])}
        for i, ((label, _), value) in enumerate(zip(dimensions, combo), start=1):
            update[f"option{i}_name"] = label
            update[f"option{i}_value"] = value
        rows.append(base.model_copy(update=update))
    return rows


def serialize(record: ProductRecord, config: CategoryConfig) -> list[CsvRow]:
    """Expand a record into Shopify import rows.

    Variant rows: max(1, |sizes|) * max(1, |colors|), each carrying the
    primary image at position 1, or a single row when the category has no
    variants. Image rows: one per remaining image.
    """
    handle = make_handle(record.title)
    base = _base_row(record, config, handle)

    if config.has_variants and record.variants.has_options:
        rows = _variant_rows(record, config, base)
    else:
        rows = [base.model_copy(update={"variant_sku": handle})]

    primary, *rest = record.images
    rows = [row.model_copy(update={"image_src": primary, "image_position": "1"}) for row in rows]
    rows.extend(
        CsvRow(handle=handle, image_src=url, image_position=str(position))
        for position, url in enumerate(rest, start=2)
    )

    logger.info(
        "Serialized '%s': %d variant rows, %d image rows -> %s",
        handle,
        len(rows) - len(rest),
        len(rest),
        config.target_category,
    )
    return rows


# ---------------------------------------------------------------------------
# CSV output
# ---------------------------------------------------------------------------


def write_csv(rows: Iterable[CsvRow], stream: TextIO) -> int:
    """Write the header and rows in import column order. Returns the row count."""
    writer = csv.DictWriter(stream, fieldnames=list(CSV_COLUMNS.values()))
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row.as_csv_dict())
        count += 1
    return count


def to_csv_text(rows: Iterable[CsvRow]) -> str:
    buf = io.StringIO()
    write_csv(rows, buf)
    return buf.getvalue()
