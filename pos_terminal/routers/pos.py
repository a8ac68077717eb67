from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from pos_terminal.core.config import settings
from pos_terminal.core.errors import NotFound, errmsg
from pos_terminal.core.schemas import (
    AddItemIn,
    ChargesIn,
    CustomerIn,
    DiscountSpec,
    PaymentMethodIn,
    QuantityIn,
    ScanIn,
)
from pos_terminal.deps import get_registry
from pos_terminal.services.cart import CartLine, Notice, Totals, notice
from pos_terminal.services.pos_session import HeldOrder, PosSession
from pos_terminal.services.receipt import render_receipt_text
from pos_terminal.services.sessions import SessionRegistry

router = APIRouter(prefix="/pos", tags=["pos"])


def _line(l: CartLine) -> dict:
    return {
        "product_id": l.product_id, "name": l.name, "sku": l.sku,
        "quantity": l.quantity, "unit_price": float(l.unit_price),
        "stock_ceiling": l.stock_ceiling, "line_total": float(l.line_total),
    }


def _totals(t: Totals) -> dict:
    return {
        "subtotal": float(t.subtotal), "discount_amount": float(t.discount_amount),
        "other_charges": float(t.other_charges), "total": float(t.total),
    }


def _serialize_cart(s: PosSession, notices: Optional[List[Notice]] = None) -> dict:
    return {
        "session_id": s.id,
        "state": s.state.value,
        "lines": [_line(l) for l in s.cart.lines],
        "totals": _totals(s.totals()),
        "discount": {"kind": s.discount.kind, "value": float(s.discount.value)},
        "customer_id": s.customer_id,
        "payment_method": s.payment_method,
        "held_orders": len(s.held),
        "notices": [asdict(n) for n in notices or []],
    }


def _serialize_held(o: HeldOrder) -> dict:
    return {
        "held_id": o.id, "held_at": o.held_at, "customer_id": o.customer_id,
        "lines": [_line(l) for l in o.lines], "totals": _totals(o.totals),
    }


def _session(sid: str, sessions: SessionRegistry = Depends(get_registry)) -> PosSession:
    return sessions.get(sid)


# ---------- catalog / stock ----------
@router.get("/{sid}/catalog")
def catalog(q: Optional[str] = None, s: PosSession = Depends(_session)):
    rows, notices = s.catalog(q)
    return {
        "items": [
            {"product_id": i.product_id, "name": i.name, "sku": i.sku, "category": i.category,
             "unit_price": float(i.unit_price), "available": available}
            for i, available in rows
        ],
        "notices": [asdict(n) for n in notices],
    }


@router.post("/{sid}/stock/refresh")
def refresh_stock(s: PosSession = Depends(_session)):
    return _serialize_cart(s, s.refresh_stock())


# ---------- cart ----------
@router.get("/{sid}/cart")
def get_cart(s: PosSession = Depends(_session)):
    return _serialize_cart(s)


@router.post("/{sid}/cart/items")
def add_item(body: AddItemIn, s: PosSession = Depends(_session)):
    return _serialize_cart(s, s.add_item(body.product_id))


@router.patch("/{sid}/cart/items/{product_id}")
def update_quantity(product_id: str, body: QuantityIn, s: PosSession = Depends(_session)):
    return _serialize_cart(s, s.update_quantity(product_id, body.quantity))


@router.delete("/{sid}/cart/items/{product_id}")
def remove_item(product_id: str, s: PosSession = Depends(_session)):
    return _serialize_cart(s, s.remove_item(product_id))


@router.delete("/{sid}/cart")
def clear_cart(s: PosSession = Depends(_session)):
    return _serialize_cart(s, s.clear_cart())


@router.put("/{sid}/cart/discount")
def set_discount(body: DiscountSpec, s: PosSession = Depends(_session)):
    s.set_discount(body)
    return _serialize_cart(s)


@router.put("/{sid}/cart/charges")
def set_charges(body: ChargesIn, s: PosSession = Depends(_session)):
    s.set_other_charges(body.amount)
    return _serialize_cart(s)


@router.put("/{sid}/cart/customer")
def set_customer(body: CustomerIn, s: PosSession = Depends(_session)):
    s.set_customer(body.customer_id)
    return _serialize_cart(s)


@router.put("/{sid}/cart/payment-method")
def set_payment_method(body: PaymentMethodIn, s: PosSession = Depends(_session)):
    s.set_payment_method(body.method)
    return _serialize_cart(s)


# ---------- scan ----------
@router.post("/{sid}/scan")
def scan(body: ScanIn, s: PosSession = Depends(_session)):
    accepted, notices = s.scan(body.code)
    out = _serialize_cart(s, notices)
    out["accepted"] = accepted
    return out


# ---------- checkout ----------
@router.post("/{sid}/checkout")
def checkout(s: PosSession = Depends(_session)):
    sale, notices = s.submit_checkout()
    out = _serialize_cart(s, notices)
    out["sale"] = sale.model_dump(mode="json")
    return out


@router.get("/{sid}/receipt")
def receipt(refresh: bool = False, s: PosSession = Depends(_session)):
    """Last sale of the session; `?refresh=true` re-reads it from the backend."""
    if refresh:
        return s.reload_receipt().model_dump(mode="json")
    if s.receipt is None:
        raise NotFound(errmsg.NO_RECEIPT)
    return s.receipt.model_dump(mode="json")


@router.get("/{sid}/receipt/text", response_class=PlainTextResponse)
def receipt_text(s: PosSession = Depends(_session)):
    if s.receipt is None:
        raise NotFound(errmsg.NO_RECEIPT)
    return render_receipt_text(s.receipt, currency=settings.currency)


# ---------- customers ----------
@router.get("/{sid}/customers")
def customers(q: Optional[str] = None, s: PosSession = Depends(_session)):
    return {"items": [c.model_dump() for c in s.load_customers(q)]}


# ---------- held orders ----------
@router.post("/{sid}/held")
def hold_order(s: PosSession = Depends(_session)):
    order = s.hold_order()
    out = _serialize_cart(s, [notice("success", errmsg.ORDER_HELD)])
    out["held"] = _serialize_held(order)
    return out


@router.get("/{sid}/held")
def list_held(s: PosSession = Depends(_session)):
    return {"items": [_serialize_held(o) for o in s.held.values()]}


@router.post("/{sid}/held/{held_id}/resume")
def resume_held(held_id: str, s: PosSession = Depends(_session)):
    s.resume_held(held_id)
    return _serialize_cart(s)


@router.delete("/{sid}/held/{held_id}")
def discard_held(held_id: str, s: PosSession = Depends(_session)):
    s.discard_held(held_id)
    return {"discarded": True, "held_id": held_id}
