from decimal import Decimal

import pytest

from pos_terminal.core.errors import BackendError, CheckoutInProgress, NotFound, ValidationRejected, errmsg
from pos_terminal.core.schemas import DiscountSpec
from pos_terminal.services.pos_session import PosSession, SessionState

from conftest import stock


@pytest.fixture
def session(backend, clock):
    s = PosSession(backend, "shop-1", user_id="u1", clock=clock, stale_after=300)
    s.refresh_stock()
    return s


def _snapshot(s):
    return [(l.product_id, l.quantity, l.unit_price) for l in s.cart.lines]


def test_requires_shop(backend):
    with pytest.raises(ValidationRejected) as e:
        PosSession(backend, None)
    assert e.value.message == errmsg.NO_SHOP


def test_state_follows_cart(session):
    assert session.state is SessionState.EMPTY
    session.add_item("A")
    assert session.state is SessionState.BUILDING
    session.remove_item("A")
    assert session.state is SessionState.EMPTY


def test_add_unknown_product(session):
    with pytest.raises(NotFound):
        session.add_item("ZZZ")


def test_payload_matches_cart(session):
    session.add_item("A")
    session.update_quantity("A", 2)
    session.set_discount(DiscountSpec(kind="flat", value=Decimal("200")))
    session.set_other_charges(Decimal("50"))
    p = session.build_payload()
    assert p.shop_id == "shop-1"
    assert p.payment_method == "cash"
    assert p.discount_amount == Decimal("200")
    assert p.other_charges == Decimal("50")
    assert [(i.product_id, i.quantity, i.unit_price) for i in p.items] == [("A", 2, Decimal("500"))]
    assert session.totals().total == Decimal("850")


def test_checkout_success(session, backend):
    session.add_item("A")
    session.add_item("B")
    session.set_discount(DiscountSpec(kind="percent", value=Decimal("10")))
    sale, notices = session.submit_checkout()
    assert sale.id == "sale-1"
    assert sale.total == Decimal("630")
    assert notices[0].message == errmsg.SALE_COMPLETED
    assert session.cart.is_empty()
    assert session.discount == DiscountSpec()
    assert session.receipt is sale
    assert session.state is SessionState.EMPTY
    # stock was re-fetched after the sale
    assert session.mirror.available("A") == 2
    assert session.mirror.available("B") == 4


def test_checkout_failure_keeps_cart_and_restores_stock(session, backend, backend_error):
    session.add_item("A")
    session.update_quantity("A", 2)
    session.add_item("B")
    before = _snapshot(session)
    backend.fail_sale = backend_error
    with pytest.raises(BackendError) as e:
        session.submit_checkout()
    assert e.value.message == "Insufficient stock for product A"
    assert _snapshot(session) == before
    assert session.state is SessionState.BUILDING
    assert session.mirror.available("A") == 3
    assert session.mirror.available("B") == 5
    assert session.mirror.is_stale()


def test_failure_then_refresh_reserves_cart_again(session, backend, backend_error):
    session.add_item("A")
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    session.catalog()
    assert session.mirror.available("A") == 2
    assert session.cart.get("A").quantity == 1


def test_invalid_sale_response_rolls_back(session, backend):
    session.add_item("A")
    backend.sale_response = {"ok": True}
    with pytest.raises(BackendError) as e:
        session.submit_checkout()
    assert e.value.message == errmsg.INVALID_SALE_RESPONSE
    assert session.cart.get("A").quantity == 1


def test_empty_cart_rejected_before_network(session, backend):
    with pytest.raises(ValidationRejected):
        session.submit_checkout()
    assert backend.sales == []


def test_credit_needs_customer(session, backend):
    session.add_item("A")
    session.set_payment_method("credit")
    with pytest.raises(ValidationRejected) as e:
        session.submit_checkout()
    assert e.value.message == errmsg.CUSTOMER_REQUIRED
    session.set_customer("c1")
    sale, _ = session.submit_checkout()
    assert backend.sales[0][0].customer_id == "c1"
    assert sale.payment_method == "credit"


def test_unknown_payment_method(session):
    with pytest.raises(ValidationRejected):
        session.set_payment_method("cheque")


def test_unknown_customer(session):
    with pytest.raises(NotFound):
        session.set_customer("nobody")


def test_mutations_blocked_while_submitting(session, backend):
    session.add_item("A")

    def create_sale(payload, idempotency_key=None):
        assert session.state is SessionState.SUBMITTING
        with pytest.raises(CheckoutInProgress):
            session.add_item("B")
        with pytest.raises(CheckoutInProgress):
            session.submit_checkout()
        return {"id": "sale-x", "total": "500"}

    backend.create_sale = create_sale
    sale, _ = session.submit_checkout()
    assert sale.id == "sale-x"
    assert session.cart.get("B") is None


def test_retry_reuses_idempotency_key(session, backend, backend_error):
    session.add_item("A")
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    with pytest.raises(BackendError):
        session.submit_checkout()
    keys = [k for _, k in backend.sales]
    assert keys[0] and keys[0] == keys[1]


def test_cart_change_rotates_idempotency_key(session, backend, backend_error):
    session.add_item("A")
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    session.add_item("B")
    backend.fail_sale = None
    session.submit_checkout()
    first, second = [k for _, k in backend.sales]
    assert first != second


def test_stale_mirror_refetched(session, backend, clock):
    calls = backend.stock_calls
    session.catalog()
    assert backend.stock_calls == calls
    clock.advance(301)
    session.catalog()
    assert backend.stock_calls == calls + 1


def test_stale_data_served_when_backend_down(session, backend, clock):
    clock.advance(301)
    backend.fail_stock = BackendError("down")
    rows, _ = session.catalog()
    assert {i.product_id for i, _ in rows} == {"A", "B", "C"}


def test_refresh_reconciles_cart(session, backend):
    session.add_item("B")
    session.update_quantity("B", 4)
    backend.rows = [stock("A", 3, 500, sku="SKU1"), stock("B", 2, 200, sku="SKU2")]
    notices = session.refresh_stock()
    assert session.cart.get("B").quantity == 2
    assert session.mirror.available("B") == 0
    assert notices[0].message == errmsg.STOCK_REDUCED


def test_refresh_failure_reported(backend, clock):
    backend.fail_stock = BackendError("boom")
    s = PosSession(backend, "shop-1", clock=clock)
    with pytest.raises(BackendError) as e:
        s.refresh_stock()
    assert e.value.message == errmsg.STOCK_LOAD_FAILED


def test_hold_keeps_reservation(session):
    session.add_item("A")
    session.set_customer("c1")
    order = session.hold_order()
    assert session.cart.is_empty()
    assert session.customer_id is None
    assert session.mirror.available("A") == 2
    # a refresh keeps the held quantity out of the mirror
    session.refresh_stock()
    assert session.mirror.available("A") == 2
    assert order.totals.total == Decimal("500")


def test_resume_held(session):
    session.add_item("A")
    order = session.hold_order()
    session.resume_held(order.id)
    assert session.cart.get("A").quantity == 1
    assert session.held == {}


def test_resume_needs_empty_cart(session):
    session.add_item("A")
    order = session.hold_order()
    session.add_item("B")
    with pytest.raises(ValidationRejected):
        session.resume_held(order.id)


def test_discard_held_releases_stock(session):
    session.add_item("A")
    order = session.hold_order()
    session.discard_held(order.id)
    assert session.mirror.available("A") == 3
    with pytest.raises(NotFound):
        session.discard_held(order.id)


def test_close_releases_everything(session):
    session.add_item("A")
    session.hold_order()
    session.add_item("B")
    session.close()
    assert session.mirror.available("A") == 3
    assert session.mirror.available("B") == 5
    with pytest.raises(ValidationRejected):
        session.add_item("A")


def test_retry_after_server_stock_dropped_keeps_cart(session, backend, clock, backend_error):
    session.add_item("A")
    session.update_quantity("A", 2)
    before = _snapshot(session)
    clock.advance(301)
    backend.rows = [stock("A", 1, 500, sku="SKU1"), stock("B", 5, 200, sku="SKU2")]
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    assert _snapshot(session) == before

    # nothing left on the server: the backend decides, the cart is not emptied locally
    backend.rows = [stock("A", 0, 500, sku="SKU1"), stock("B", 5, 200, sku="SKU2")]
    with pytest.raises(BackendError):
        session.submit_checkout()
    assert _snapshot(session) == before
    assert len(backend.sales) == 2


def test_remove_after_failed_checkout_with_backend_down(session, backend, backend_error):
    session.add_item("A")
    session.update_quantity("A", 2)
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    backend.fail_stock = BackendError("down")
    session.remove_item("A")
    rows, _ = session.catalog()
    assert dict((i.product_id, n) for i, n in rows)["A"] == 3


def test_edits_after_failed_checkout_do_not_move_stock_twice(session, backend, backend_error):
    session.add_item("A")
    backend.fail_sale = backend_error
    for _ in range(2):
        with pytest.raises(BackendError):
            session.submit_checkout()
    assert session.mirror.available("A") == 3
    session.update_quantity("A", 3)
    session.update_quantity("A", 1)
    assert session.mirror.available("A") == 3
    session.clear_cart()
    assert session.mirror.available("A") == 3


def test_hold_after_failed_checkout_reserves_again(session, backend, backend_error):
    session.add_item("A")
    session.update_quantity("A", 2)
    backend.fail_sale = backend_error
    with pytest.raises(BackendError):
        session.submit_checkout()
    order = session.hold_order()
    assert session.mirror.available("A") == 1
    session.discard_held(order.id)
    assert session.mirror.available("A") == 3


def test_refresh_landing_during_checkout_is_dropped(session, backend):
    session.add_item("A")
    session.update_quantity("A", 2)
    rows = [stock("A", 0, 500, sku="SKU1")]

    def get_stocks(shop_id=None):
        # a checkout starts while the listing is on the wire
        session._submitting = True
        return rows

    backend.get_stocks = get_stocks
    assert session.refresh_stock() == []
    session._submitting = False
    assert _snapshot(session) == [("A", 2, Decimal("500"))]
    assert session.mirror.available("A") == 1


def test_receipt_reread_when_sale_answer_is_bare(session, backend):
    create = backend.create_sale

    def bare(payload, idempotency_key=None):
        record = create(payload, idempotency_key)["data"]
        return {"id": record["id"], "total": record["total_amount"]}

    backend.create_sale = bare
    session.add_item("A")
    sale, _ = session.submit_checkout()
    assert [i.product_name for i in sale.items] == ["Product A"]
    assert session.receipt is sale


def test_receipt_kept_when_reread_fails(session, backend):
    session.add_item("A")
    backend.sale_response = {"id": "sale-77", "total": "500"}
    sale, _ = session.submit_checkout()
    assert sale.id == "sale-77"
    assert session.reload_receipt() is session.receipt


def test_reload_receipt_needs_a_sale(session):
    with pytest.raises(NotFound):
        session.reload_receipt()
