"""Terminal session: one sale-in-progress and everything around it.

State machine::

    EMPTY -> BUILDING (add/update/remove) -> SUBMITTING -> EMPTY     (sale created)
                                                        -> BUILDING  (failure, stock restored)

Mutations run under the session lock. The ``POST /sales`` call runs outside
it while the session is SUBMITTING; every mutation and a second checkout are
rejected during that window.
"""

import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pos_terminal.core.errors import (
    BackendError,
    CheckoutInProgress,
    NotFound,
    ValidationRejected,
    errmsg,
)
from pos_terminal.core.schemas import (
    PAYMENT_METHODS,
    CheckoutPayload,
    Customer,
    DiscountSpec,
    SaleRecord,
    StockItem,
    parse_sale,
)
from pos_terminal.services.cart import ZERO, Cart, CartLine, Notice, Totals, compute_totals, notice
from pos_terminal.services.scan import ScanDebouncer
from pos_terminal.services.stock_mirror import StockMirror

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    EMPTY = "empty"
    BUILDING = "building"
    SUBMITTING = "submitting"


@dataclass
class HeldOrder:
    id: str
    lines: List[CartLine]
    discount: DiscountSpec
    other_charges: Decimal
    customer_id: Optional[str]
    payment_method: str
    held_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def totals(self) -> Totals:
        return compute_totals(self.lines, self.discount, self.other_charges)


class PosSession:
    def __init__(
        self,
        backend,
        shop_id: Optional[str],
        user_id: Optional[str] = None,
        terminal_id: Optional[str] = None,
        *,
        scan_window: float = 2.0,
        stale_after: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not shop_id:
            raise ValidationRejected(errmsg.NO_SHOP)
        self.id = uuid.uuid4().hex
        self.backend = backend
        self.shop_id = shop_id
        self.user_id = user_id
        self.terminal_id = terminal_id
        self.opened_at = datetime.now(timezone.utc).isoformat()

        self.mirror = StockMirror(stale_after=stale_after, clock=clock)
        self.cart = Cart(self.mirror)
        self.discount = DiscountSpec()
        self.other_charges = ZERO
        self.customer_id: Optional[str] = None
        self.payment_method = "cash"
        self.receipt: Optional[SaleRecord] = None
        self.held: Dict[str, HeldOrder] = {}
        self.customers: List[Customer] = []
        self.closed = False

        self._scanner = ScanDebouncer(window=scan_window, clock=clock)
        self._lock = threading.RLock()
        self._submitting = False
        self._idempotency_key: Optional[str] = None

    # ---------- derived ----------

    @property
    def state(self) -> SessionState:
        if self._submitting:
            return SessionState.SUBMITTING
        return SessionState.EMPTY if self.cart.is_empty() else SessionState.BUILDING

    def totals(self) -> Totals:
        return compute_totals(self.cart.lines, self.discount, self.other_charges)

    def build_payload(self) -> CheckoutPayload:
        return CheckoutPayload(
            shop_id=self.shop_id,
            customer_id=self.customer_id,
            payment_method=self.payment_method,
            discount_amount=self.totals().discount_amount,
            other_charges=self.other_charges,
            items=self.cart.checkout_items(),
        )

    def _guard(self) -> None:
        if self.closed:
            raise ValidationRejected(errmsg.SESSION_CLOSED)
        if self._submitting:
            raise CheckoutInProgress(errmsg.CHECKOUT_IN_PROGRESS)

    def _touch(self) -> None:
        # sale content changed: a retry is a different sale
        self._idempotency_key = None

    # ---------- stock ----------

    def refresh_stock(self) -> List[Notice]:
        with self._lock:
            self._guard()
        try:
            rows = self.backend.get_stocks(self.shop_id)
        except BackendError as e:
            logger.warning("stock load failed for shop %s: %s", self.shop_id, e.message)
            raise BackendError(errmsg.STOCK_LOAD_FAILED, status=e.status) from e
        with self._lock:
            if self._submitting:
                # a checkout started during the fetch; its lines are not touched
                logger.info("stock refresh for shop %s dropped: checkout in progress", self.shop_id)
                return []
            return self._apply_stock(rows)

    def _apply_stock(self, rows: List[StockItem]) -> List[Notice]:
        held = self._held_reserved()
        server = {r.product_id: r.available for r in rows}
        limits = {pid: server.get(pid, 0) - held.get(pid, 0) for pid in self.cart.reserved()}
        notices = self.cart.reconcile(limits)
        if notices:
            self._touch()
        reserved = Counter(self.cart.reserved())
        reserved.update(held)
        self.mirror.seed(rows, reserved)
        self.cart.mark_reserved()
        logger.info("stock refreshed for shop %s: %d products", self.shop_id, len(rows))
        return notices

    def _held_reserved(self) -> Counter:
        c: Counter = Counter()
        for order in self.held.values():
            for line in order.lines:
                c[line.product_id] += line.quantity
        return c

    def _refresh_if_stale(self) -> List[Notice]:
        if self._submitting or not self.mirror.is_stale():
            return []
        try:
            return self.refresh_stock()
        except BackendError:
            if not self.mirror.is_seeded():
                raise
            logger.warning("serving stale stock for shop %s", self.shop_id)
            return []

    def catalog(self, q: Optional[str] = None) -> Tuple[List[Tuple[StockItem, int]], List[Notice]]:
        notices = self._refresh_if_stale()
        with self._lock:
            return [(item, self.mirror.available(item.product_id)) for item in self.mirror.search(q)], notices

    # ---------- cart operations ----------

    def add_item(self, product_id: str) -> List[Notice]:
        notices = self._refresh_if_stale()
        with self._lock:
            self._guard()
            product = self.mirror.get(product_id)
            if product is None:
                raise NotFound(errmsg.PRODUCT_NOT_FOUND)
            self._touch()
            return notices + self.cart.add_item(product)

    def update_quantity(self, product_id: str, quantity: int) -> List[Notice]:
        with self._lock:
            self._guard()
            self._touch()
            return self.cart.update_quantity(product_id, quantity)

    def remove_item(self, product_id: str) -> List[Notice]:
        with self._lock:
            self._guard()
            self._touch()
            return self.cart.remove_item(product_id)

    def clear_cart(self) -> List[Notice]:
        with self._lock:
            self._guard()
            self._touch()
            return self.cart.clear()

    def set_discount(self, discount: DiscountSpec) -> None:
        with self._lock:
            self._guard()
            self._touch()
            self.discount = discount

    def set_other_charges(self, amount: Decimal) -> None:
        if amount < 0:
            raise ValidationRejected("Other charges cannot be negative")
        with self._lock:
            self._guard()
            self._touch()
            self.other_charges = amount

    def set_payment_method(self, method: str) -> None:
        if method not in PAYMENT_METHODS:
            raise ValidationRejected(errmsg.INVALID_PAYMENT_METHOD)
        with self._lock:
            self._guard()
            self._touch()
            self.payment_method = method

    def set_customer(self, customer_id: Optional[str]) -> None:
        if customer_id is not None:
            if not any(c.id == customer_id for c in self.customers):
                self.load_customers()
            if not any(c.id == customer_id for c in self.customers):
                raise NotFound(errmsg.CUSTOMER_NOT_FOUND)
        with self._lock:
            self._guard()
            self._touch()
            self.customer_id = customer_id

    def load_customers(self, q: Optional[str] = None) -> List[Customer]:
        self.customers = self.backend.get_customers()
        if not q:
            return list(self.customers)
        q = q.lower()
        return [c for c in self.customers if q in c.name.lower()]

    # ---------- scanning ----------

    def scan(self, code: str) -> Tuple[bool, List[Notice]]:
        """Returns ``(accepted, notices)``; a debounced duplicate is not accepted."""
        with self._lock:
            self._guard()
            if not self._scanner.accept(code):
                logger.debug("duplicate scan %r ignored", code)
                return False, []
        notices = self._refresh_if_stale()
        with self._lock:
            product = self.mirror.find_by_code(code)
            if product is None:
                return True, notices + [notice("error", errmsg.PRODUCT_NOT_FOUND)]
            if self.mirror.available(product.product_id) <= 0:
                return True, notices + [notice("info", errmsg.OUT_OF_STOCK, speak=True)]
            return True, notices + self.add_item(product.product_id)

    # ---------- checkout ----------

    def submit_checkout(self) -> Tuple[SaleRecord, List[Notice]]:
        with self._lock:
            self._guard()
            if self.cart.is_empty():
                raise ValidationRejected(errmsg.CART_EMPTY)
            if not self.shop_id:
                raise ValidationRejected(errmsg.NO_SHOP)
            if self.payment_method == "credit" and not self.customer_id:
                raise ValidationRejected(errmsg.CUSTOMER_REQUIRED)
            payload = self.build_payload()
            if self._idempotency_key is None:
                self._idempotency_key = uuid.uuid4().hex
            key = self._idempotency_key
            self._submitting = True

        logger.info(
            "submitting sale shop=%s lines=%d key=%s", self.shop_id, len(payload.items), key
        )
        sale: Optional[SaleRecord] = None
        try:
            sale = parse_sale(self.backend.create_sale(payload, idempotency_key=key))
            if sale is None:
                raise BackendError(errmsg.INVALID_SALE_RESPONSE)
        finally:
            with self._lock:
                self._submitting = False
                if sale is None:
                    # sale did not happen: give the optimistic decrement back, keep the cart
                    self.cart.release_stock()
                    self.mirror.invalidate()
                    logger.warning("sale failed for shop %s; stock restored, cart kept", self.shop_id)
                else:
                    self.cart.drop_lines()
                    self.discount = DiscountSpec()
                    self.other_charges = ZERO
                    self.receipt = sale
                    self._idempotency_key = None
                    self._scanner.reset()

        logger.info("sale %s created, total=%s", sale.id, sale.total)
        if not sale.items:
            # some backends answer the create call with a bare header record
            sale = self._reload_sale(sale)
        notices = [notice("success", errmsg.SALE_COMPLETED)]
        try:
            notices += self.refresh_stock()
        except BackendError:
            self.mirror.invalidate()
        return sale, notices

    def reload_receipt(self) -> SaleRecord:
        if self.receipt is None:
            raise NotFound(errmsg.NO_RECEIPT)
        return self._reload_sale(self.receipt)

    def _reload_sale(self, sale: SaleRecord) -> SaleRecord:
        try:
            full = parse_sale(self.backend.get_sale(sale.id))
        except BackendError as e:
            logger.warning("could not re-read sale %s: %s", sale.id, e.message)
            return sale
        if full is None:
            return sale
        with self._lock:
            if self.receipt is sale:
                self.receipt = full
        return full

    # ---------- held orders ----------

    def hold_order(self) -> HeldOrder:
        with self._lock:
            self._guard()
            if self.cart.is_empty():
                raise ValidationRejected(errmsg.CART_EMPTY)
            self.cart.reacquire()
            order = HeldOrder(
                id=uuid.uuid4().hex[:12],
                lines=self.cart.drop_lines(),
                discount=self.discount,
                other_charges=self.other_charges,
                customer_id=self.customer_id,
                payment_method=self.payment_method,
            )
            self.held[order.id] = order
            self.discount = DiscountSpec()
            self.other_charges = ZERO
            self.customer_id = None
            self._touch()
            logger.info("order %s held (%d lines)", order.id, len(order.lines))
            return order

    def resume_held(self, held_id: str) -> None:
        with self._lock:
            self._guard()
            order = self.held.get(held_id)
            if order is None:
                raise NotFound(errmsg.HELD_ORDER_NOT_FOUND)
            if not self.cart.is_empty():
                raise ValidationRejected(errmsg.CART_NOT_EMPTY)
            del self.held[held_id]
            self.cart.put_lines(order.lines)
            self.discount = order.discount
            self.other_charges = order.other_charges
            self.customer_id = order.customer_id
            self.payment_method = order.payment_method
            self._touch()

    def discard_held(self, held_id: str) -> None:
        with self._lock:
            self._guard()
            order = self.held.pop(held_id, None)
            if order is None:
                raise NotFound(errmsg.HELD_ORDER_NOT_FOUND)
            for line in order.lines:
                self.mirror.give_back(line.product_id, line.quantity)

    # ---------- lifecycle ----------

    def close(self) -> None:
        with self._lock:
            self._guard()
            self.cart.clear()
            for hid in list(self.held):
                self.discard_held(hid)
            self.closed = True
