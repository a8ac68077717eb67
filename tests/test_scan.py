from unittest import mock

from pos_terminal.services.pos_session import PosSession
from pos_terminal.services.scan import ScanDebouncer


def test_same_code_within_window_dropped(clock):
    d = ScanDebouncer(window=2.0, clock=clock)
    assert d.accept("SKU1") is True
    clock.advance(0.5)
    assert d.accept("SKU1") is False


def test_window_slides_while_code_is_held(clock):
    d = ScanDebouncer(window=2.0, clock=clock)
    d.accept("SKU1")
    for _ in range(4):
        clock.advance(1.5)
        assert d.accept("SKU1") is False
    clock.advance(2.0)
    assert d.accept("SKU1") is True


def test_different_code_passes(clock):
    d = ScanDebouncer(window=2.0, clock=clock)
    d.accept("SKU1")
    assert d.accept("SKU2") is True
    assert d.accept("SKU1") is True


def test_code_normalized(clock):
    d = ScanDebouncer(window=2.0, clock=clock)
    d.accept(" sku1 ")
    assert d.accept("SKU1") is False


def test_double_scan_adds_once(backend, clock):
    s = PosSession(backend, "shop-1", clock=clock)
    s.refresh_stock()
    with mock.patch.object(s, "add_item", wraps=s.add_item) as add:
        first, _ = s.scan("SKU1")
        second, _ = s.scan("SKU1")
    assert (first, second) == (True, False)
    assert add.call_count == 1
    assert s.cart.get("A").quantity == 1


def test_scan_after_window_adds_again(backend, clock):
    s = PosSession(backend, "shop-1", clock=clock)
    s.refresh_stock()
    s.scan("SKU1")
    clock.advance(3)
    s.scan("sku1")
    assert s.cart.get("A").quantity == 2


def test_scan_unknown_code(backend, clock):
    s = PosSession(backend, "shop-1", clock=clock)
    s.refresh_stock()
    accepted, notices = s.scan("NOPE")
    assert accepted
    assert notices[0].level == "error"
    assert notices[0].message == "Product not found"
    assert s.cart.is_empty()


def test_scan_out_of_stock_is_spoken(backend, clock):
    s = PosSession(backend, "shop-1", clock=clock)
    s.refresh_stock()
    _, notices = s.scan("SKU3")
    assert notices[0].message == "Out of stock"
    assert notices[0].speak is True
    assert s.cart.is_empty()
