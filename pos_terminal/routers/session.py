from dataclasses import asdict

from fastapi import APIRouter, Depends

from pos_terminal.core.errors import BackendError
from pos_terminal.core.schemas import SessionOpenIn
from pos_terminal.deps import get_backend, get_registry
from pos_terminal.services.cart import notice
from pos_terminal.services.pos_session import PosSession
from pos_terminal.services.sessions import SessionRegistry

router = APIRouter(prefix="/session", tags=["pos-session"])


def _summary(s: PosSession) -> dict:
    return {
        "session_id": s.id,
        "status": "closed" if s.closed else "open",
        "state": s.state.value,
        "shop_id": s.shop_id,
        "user_id": s.user_id,
        "terminal_id": s.terminal_id,
        "opened_at": s.opened_at,
        "lines": len(s.cart.lines),
        "held_orders": len(s.held),
    }


# ---------- OPEN ----------
@router.post("/open")
def open_session(
    payload: SessionOpenIn,
    backend=Depends(get_backend),
    sessions: SessionRegistry = Depends(get_registry),
):
    s = sessions.open(backend, payload.shop_id, user_id=payload.user_id, terminal_id=payload.terminal_id)
    # first stock load; a failure leaves the catalog to retry on demand
    try:
        notices = s.refresh_stock()
    except BackendError as e:
        notices = [notice("error", e.message)]
    out = _summary(s)
    out["notices"] = [asdict(n) for n in notices]
    return out


# ---------- RESUME ----------
@router.get("/{sid}")
def session_summary(sid: str, sessions: SessionRegistry = Depends(get_registry)):
    return _summary(sessions.get(sid))


# ---------- CLOSE ----------
@router.post("/{sid}/close")
def close_session(sid: str, sessions: SessionRegistry = Depends(get_registry)):
    """
    Closes the terminal session:
    - the cart is cleared and its stock released
    - held orders are discarded
    """
    return _summary(sessions.close(sid))
