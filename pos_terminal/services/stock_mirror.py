"""Optimistic per-session mirror of the shop's available stock.

The mirror is seeded from the backend's stock listing and then mutated only
by cart operations, so the catalog reflects what is left without a round trip.
It goes stale after ``stale_after`` seconds, after a checkout failure
(``invalidate``) and after a successful checkout (the caller refreshes).
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from pos_terminal.core.schemas import StockItem

logger = logging.getLogger(__name__)


class StockMirror:
    def __init__(self, stale_after: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.stale_after = stale_after
        self._clock = clock
        self._items: Dict[str, StockItem] = {}
        self._remaining: Dict[str, int] = {}
        self._seeded_at: Optional[float] = None
        self._invalid = False

    def seed(self, rows: Iterable[StockItem], reserved: Optional[Mapping[str, int]] = None) -> None:
        """Replace the snapshot. ``reserved`` holds quantities already taken by carts."""
        reserved = reserved or {}
        items: Dict[str, StockItem] = {}
        remaining: Dict[str, int] = {}
        for row in rows:
            items[row.product_id] = row
            remaining[row.product_id] = max(0, row.available - reserved.get(row.product_id, 0))
        self._items = items
        self._remaining = remaining
        self._seeded_at = self._clock()
        self._invalid = False
        logger.debug("stock mirror seeded with %d products", len(items))

    def is_seeded(self) -> bool:
        return self._seeded_at is not None

    def is_stale(self) -> bool:
        if self._seeded_at is None or self._invalid:
            return True
        return self._clock() - self._seeded_at >= self.stale_after

    def invalidate(self) -> None:
        self._invalid = True

    def get(self, product_id: str) -> Optional[StockItem]:
        return self._items.get(product_id)

    def server_available(self, product_id: str) -> int:
        item = self._items.get(product_id)
        return item.available if item else 0

    def available(self, product_id: str) -> int:
        return self._remaining.get(product_id, 0)

    def take(self, product_id: str, qty: int = 1) -> None:
        self._remaining[product_id] = self.available(product_id) - qty

    def give_back(self, product_id: str, qty: int) -> None:
        self._remaining[product_id] = self.available(product_id) + qty

    def items(self) -> List[StockItem]:
        return list(self._items.values())

    def find_by_code(self, code: str) -> Optional[StockItem]:
        for item in self._items.values():
            if item.matches_code(code):
                return item
        return None

    def search(self, q: Optional[str] = None) -> List[StockItem]:
        if not q:
            return self.items()
        q = q.lower()
        return [i for i in self._items.values() if q in i.name.lower() or q in (i.sku or "").lower()]
