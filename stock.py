"""
Variant stock filtering.

Different state shapes expose stock signals with different completeness:
the per-SKU list always carries ``inStock``, while the grouped/flat lists
and size buttons sometimes only carry ``sellable``. The granular shape is
held to the strict rule, the others accept either flag.
"""

import logging
from collections.abc import Iterable

from models import StockEntry, StockSource

logger = logging.getLogger(__name__)

STRICT_SOURCES = frozenset({StockSource.SKU})


def is_available(entry: StockEntry, source: StockSource) -> bool:
    if source in STRICT_SOURCES:
        return entry.in_stock
    return entry.in_stock or entry.sellable


def filter_in_stock(entries: Iterable[StockEntry], source: StockSource) -> list[str]:
    """Return the display values of sellable options, in first-seen order, without duplicates."""
    kept: dict[str, None] = {}
    dropped = 0
    for entry in entries:
        value = entry.value.strip()
        if not value:
            continue
        if is_available(entry, source):
            kept.setdefault(value, None)
        else:
            dropped += 1
    if dropped:
        logger.debug("Dropped %d out-of-stock %s options", dropped, source.value)
    return list(kept)
