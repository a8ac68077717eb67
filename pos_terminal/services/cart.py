"""Cart state: lines keyed by product, bounded by a live stock ceiling.

Every quantity change is mirrored into the :class:`StockMirror` so that
``taken by the cart + remaining in the mirror`` stays equal to the stock the
backend reported, until a checkout actually commits.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pos_terminal.core.errors import NotFound, errmsg
from pos_terminal.core.schemas import CheckoutItem, DiscountSpec, StockItem
from pos_terminal.services.stock_mirror import StockMirror

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class Notice:
    level: str  # info | success | error
    code: str
    message: str
    speak: bool = False


def notice(level: str, message: str, speak: bool = False) -> Notice:
    code = next((k for k, v in vars(errmsg).items() if v == message), "NOTICE")
    return Notice(level=level, code=code, message=message, speak=speak)


@dataclass
class CartLine:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    stock_ceiling: int
    sku: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    other_charges: Decimal
    total: Decimal


def compute_totals(lines: Iterable[CartLine], discount: DiscountSpec, other_charges: Decimal = ZERO) -> Totals:
    subtotal = sum((l.line_total for l in lines), ZERO)
    if not discount.value:
        discount_amount = ZERO
    elif discount.kind == "flat":
        discount_amount = discount.value
    else:
        discount_amount = subtotal * discount.value / 100
    other_charges = other_charges or ZERO
    total = subtotal - discount_amount + other_charges
    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        other_charges=other_charges,
        total=max(ZERO, total),
    )


@dataclass
class Cart:
    mirror: StockMirror
    _lines: Dict[str, CartLine] = field(default_factory=dict)
    # products whose stock was handed back to the mirror while their line stayed
    _released: Set[str] = field(default_factory=set)

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def reserved(self) -> Dict[str, int]:
        return {pid: l.quantity for pid, l in self._lines.items()}

    def checkout_items(self) -> tuple:
        return tuple(
            CheckoutItem(product_id=l.product_id, quantity=l.quantity, unit_price=l.unit_price)
            for l in self._lines.values()
        )

    # ---------- operations ----------

    def add_item(self, product: StockItem) -> List[Notice]:
        pid = product.product_id
        line = self._lines.get(pid)
        available = self.mirror.available(pid)
        if available <= 0:
            return [notice("info", errmsg.NO_MORE_STOCK if line else errmsg.OUT_OF_STOCK)]

        if line is None:
            self._lines[pid] = CartLine(
                product_id=pid,
                name=product.name,
                sku=product.sku,
                quantity=1,
                unit_price=product.unit_price,
                stock_ceiling=available,
            )
        elif line.quantity >= line.stock_ceiling:
            return [notice("info", errmsg.NO_MORE_STOCK)]
        else:
            line.quantity += 1

        self._take(pid, 1)
        logger.debug("add_item %s -> qty=%d", pid, self._lines[pid].quantity)
        return []

    def update_quantity(self, product_id: str, new_quantity: int) -> List[Notice]:
        line = self._require(product_id)
        if new_quantity <= 0:
            return self.remove_item(product_id)

        notices: List[Notice] = []
        if new_quantity > line.stock_ceiling:
            new_quantity = line.stock_ceiling
            notices.append(notice("info", errmsg.EXCEEDS_STOCK))
            if new_quantity <= 0:
                return notices + self.remove_item(product_id)

        delta = new_quantity - line.quantity
        self._take(product_id, delta)
        line.quantity = new_quantity
        logger.debug("update_quantity %s -> qty=%d", product_id, new_quantity)
        return notices

    def remove_item(self, product_id: str) -> List[Notice]:
        line = self._require(product_id)
        del self._lines[product_id]
        self._give_back(product_id, line.quantity)
        self._released.discard(product_id)
        logger.debug("remove_item %s (restored %d)", product_id, line.quantity)
        return []

    def clear(self) -> List[Notice]:
        self.release_stock()
        self._lines.clear()
        self._released.clear()
        return [notice("info", errmsg.CART_CLEARED)]

    # ---------- bulk transitions used by the session ----------

    def release_stock(self) -> None:
        """Give every line's stock back to the mirror, keeping the lines.

        Released lines stop moving stock in the mirror until the next reseed
        (:meth:`mark_reserved`), so a later edit cannot return the same units twice.
        """
        for line in self._lines.values():
            self._give_back(line.product_id, line.quantity)
            self._released.add(line.product_id)

    def reacquire(self) -> None:
        """Take released quantities out of the mirror again."""
        for pid in self._released:
            line = self._lines.get(pid)
            if line is not None:
                self.mirror.take(pid, line.quantity)
        self._released.clear()

    def mark_reserved(self) -> None:
        """The mirror was reseeded with every line subtracted."""
        self._released.clear()

    def drop_lines(self) -> List[CartLine]:
        """Empty the cart without touching the mirror (stock stays taken)."""
        lines = self.lines
        self._lines.clear()
        self._released.clear()
        return lines

    def put_lines(self, lines: Iterable[CartLine]) -> None:
        for line in lines:
            self._lines[line.product_id] = line

    def reconcile(self, limits: Mapping[str, int]) -> List[Notice]:
        """Clamp lines to freshly fetched stock; ``limits`` maps product to its new ceiling."""
        notices: List[Notice] = []
        for pid, line in list(self._lines.items()):
            limit = max(0, limits.get(pid, 0))
            if line.quantity > limit:
                notices.append(notice("info", errmsg.STOCK_REDUCED))
                if limit == 0:
                    del self._lines[pid]
                    self._released.discard(pid)
                    continue
                line.quantity = limit
            line.stock_ceiling = limit
        return notices

    def _take(self, product_id: str, qty: int) -> None:
        if product_id not in self._released:
            self.mirror.take(product_id, qty)

    def _give_back(self, product_id: str, qty: int) -> None:
        if product_id not in self._released:
            self.mirror.give_back(product_id, qty)

    def _require(self, product_id: str) -> CartLine:
        line = self._lines.get(product_id)
        if line is None:
            raise NotFound(errmsg.ITEM_NOT_IN_CART)
        return line
