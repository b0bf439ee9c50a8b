"""Keyword-driven category classification into the Shopify product taxonomy.

The table is an ordered list of keyword rules loaded once from
category_table.json. Classification normalizes the raw category strings
(Turkish-aware lowercasing, diacritics folded to ASCII) and walks the rules
in declared order:
  - keyword rules: most specific groups first (e.g. sneaker before footwear)
  - gender rules: female/male keywords when nothing specific matched
  - default: the table's catch-all configuration
Matching is substring containment, so "spor ayakkabi" in "erkek spor
ayakkabi modelleri" matches. The first rule to match wins; ties are decided
by table order only.
"""

import logging
import os
import unicodedata
from pathlib import Path

import orjson

from models import CategoryConfig, CategoryMatch, CategoryRule, CategoryTable

logger = logging.getLogger(__name__)

CATEGORY_TABLE_FILE = Path(
    os.environ.get("PRODUCT_EXPORT_CATEGORY_TABLE", Path(__file__).parent / "category_table.json")
)

# str.lower() turns "I" into "i" and "İ" into "i̇"; Turkish needs ı/i.
_TURKISH_LOWER = str.maketrans({"I": "ı", "İ": "i"})
# Letters NFKD does not decompose
_ASCII_FOLD = str.maketrans({"ı": "i", "ø": "o", "æ": "ae", "ß": "ss", "đ": "d", "ł": "l"})


def normalize_text(text: str) -> str:
    """Lowercase, trim, collapse whitespace and fold diacritics to ASCII.

    "Ayakkabı" -> "ayakkabi", "ÇANTA" -> "canta", "İç Giyim" -> "ic giyim".
    """
    text = text.translate(_TURKISH_LOWER).lower().translate(_ASCII_FOLD)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.split())


# =====================================================================
# Table loading
# =====================================================================


def _normalize_rule(rule: CategoryRule) -> CategoryRule:
    keywords = tuple(dict.fromkeys(k for k in (normalize_text(k) for k in rule.keywords) if k))
    return CategoryRule(keywords=keywords, config=rule.config)


def build_category_table(data: dict) -> CategoryTable:
    """Validate raw table data and pre-normalize every keyword."""
    table = CategoryTable.model_validate(data)
    return CategoryTable(
        rules=tuple(_normalize_rule(r) for r in table.rules),
        gender_rules=tuple(_normalize_rule(r) for r in table.gender_rules),
        default=table.default,
    )


def load_category_table(path: str | Path = CATEGORY_TABLE_FILE) -> CategoryTable:
    """Load the category table from JSON. Call once at startup and pass it around."""
    path = Path(path)
    table = build_category_table(orjson.loads(path.read_bytes()))
    logger.info(
        "Loaded category table from %s: %d rules, %d gender rules",
        path.name,
        len(table.rules),
        len(table.gender_rules),
    )
    return table


# =====================================================================
# Classification
# =====================================================================


def _first_match(rules: tuple[CategoryRule, ...], haystack: list[str]) -> tuple[CategoryRule, str] | None:
    for rule in rules:
        for keyword in rule.keywords:
            if any(keyword in category for category in haystack):
                return rule, keyword
    return None


def resolve(categories: list[str], table: CategoryTable) -> CategoryMatch:
    """Classify raw category strings and report how the config was chosen."""
    # Dedup keeps the result independent of repeated inputs
    normalized = list(dict.fromkeys(n for n in (normalize_text(c) for c in categories if c) if n))

    hit = _first_match(table.rules, normalized)
    if hit:
        rule, keyword = hit
        logger.debug("Category keyword '%s' -> %s", keyword, rule.config.target_category)
        return CategoryMatch(config=rule.config, keyword=keyword, resolution="keyword")

    hit = _first_match(table.gender_rules, normalized)
    if hit:
        rule, keyword = hit
        logger.info("No specific category for %s, using gender keyword '%s'", categories, keyword)
        return CategoryMatch(config=rule.config, keyword=keyword, resolution="gender")

    logger.info("No category rule matched %s, using default configuration", categories)
    return CategoryMatch(config=table.default, resolution="default")


def classify(categories: list[str], table: CategoryTable) -> CategoryConfig:
    return resolve(categories, table).config
