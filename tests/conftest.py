import pytest

from pos_terminal.core.errors import BackendError
from pos_terminal.core.schemas import Customer, StockItem


class FakeClock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


def stock(pid, available, price, sku=None, name=None):
    return StockItem(
        product_id=pid,
        name=name or f"Product {pid}",
        sku=sku or f"SKU-{pid}",
        available=available,
        unit_price=price,
    )


class FakeBackend:
    """In-memory stand-in for the REST backend."""

    def __init__(self, rows=None, customers=None):
        self.rows = list(rows or [])
        self.customers = list(customers or [])
        self.sales = []
        self.stock_calls = 0
        self.fail_sale = None
        self.fail_stock = None
        self.sale_response = None
        self.records = {}

    def get_stocks(self, shop_id=None):
        self.stock_calls += 1
        if self.fail_stock:
            raise self.fail_stock
        return list(self.rows)

    def get_customers(self):
        return list(self.customers)

    def create_sale(self, payload, idempotency_key=None):
        self.sales.append((payload, idempotency_key))
        if self.fail_sale:
            raise self.fail_sale
        if self.sale_response is not None:
            return self.sale_response
        # the server commits: stock goes down
        sold = {i.product_id: i.quantity for i in payload.items}
        self.rows = [
            r.model_copy(update={"available": r.available - sold.get(r.product_id, 0)}) for r in self.rows
        ]
        items = [
            {"product_id": i.product_id, "product_name": f"Product {i.product_id}",
             "quantity": i.quantity, "unit_price": str(i.unit_price)}
            for i in payload.items
        ]
        subtotal = sum(i.unit_price * i.quantity for i in payload.items)
        total = subtotal - payload.discount_amount + payload.other_charges
        record = {
            "id": f"sale-{len(self.sales)}",
            "sale_number": f"S{len(self.sales):04d}",
            "shop_name": "Main shop",
            "created_at": "2026-01-05T10:30:00Z",
            "payment_method": payload.payment_method,
            "subtotal": str(subtotal),
            "discount_amount": str(payload.discount_amount),
            "total_amount": str(max(total, 0)),
            "items": items,
        }
        self.records[record["id"]] = record
        return {"data": record}

    def get_sale(self, sale_id):
        if sale_id not in self.records:
            raise BackendError("Sale not found", status=404)
        return {"data": self.records[sale_id]}

    def health(self):
        if self.fail_stock:
            raise self.fail_stock
        return {"status": "ok"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return FakeBackend(
        rows=[stock("A", 3, 500, sku="SKU1"), stock("B", 5, 200, sku="SKU2"), stock("C", 0, 100, sku="SKU3")],
        customers=[Customer(id="c1", name="Ada Obi", phone="0800")],
    )


@pytest.fixture
def backend_error():
    return BackendError("Insufficient stock for product A", status=400)
