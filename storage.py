"""In-memory product store keyed by url, with a short recent-url history."""

import logging
import threading
from collections import deque

from models import ProductRecord, StoredProduct

logger = logging.getLogger(__name__)

HISTORY_SIZE = 3


class MemStorage:
    def __init__(self, history_size: int = HISTORY_SIZE):
        self._lock = threading.Lock()
        self._products: dict[str, StoredProduct] = {}
        self._history: deque[str] = deque(maxlen=history_size)
        self._next_id = 1

    def save(self, record: ProductRecord) -> StoredProduct:
        with self._lock:
            stored = StoredProduct(id=self._next_id, **record.model_dump())
            self._next_id += 1
            self._products[stored.url] = stored
            # Most recent first; a revisited url moves to the front
            if stored.url in self._history:
                self._history.remove(stored.url)
            self._history.appendleft(stored.url)
        logger.info("Stored product %d for %s", stored.id, stored.url)
        return stored

    def get(self, url: str) -> StoredProduct | None:
        with self._lock:
            return self._products.get(url)

    def reset(self) -> None:
        """Clear cached products and restart ids. History is kept."""
        with self._lock:
            self._products.clear()
            self._next_id = 1

    def history(self) -> list[str]:
        with self._lock:
            return list(self._history)
