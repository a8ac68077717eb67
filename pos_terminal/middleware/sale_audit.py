from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from starlette.concurrency import iterate_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from pos_terminal.core.config import settings
from pos_terminal.utils.atomic_file import append_jsonl_atomic, read_jsonl

logger = logging.getLogger(__name__)


def _dedup_exists(path: str, sale_id=None) -> bool:
    if not sale_id:
        return False
    return any(
        ev.get("kind") == "sale" and ev.get("sale_id") == sale_id for ev in read_jsonl(path)
    )


class SaleAuditMiddleware(BaseHTTPMiddleware):
    """Appends one JSONL event per confirmed sale. Replays are not re-logged."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        path = request.url.path
        if request.method != "POST" or not (path.startswith("/pos/") and path.endswith("/checkout")):
            return response
        if response.status_code != 200 or response.headers.get("Idempotent-Replay"):
            return response

        # re-inject the body so the stream is not consumed
        body_chunks = [section async for section in response.body_iterator]
        body_bytes = b"".join(body_chunks)
        response.body_iterator = iterate_in_threadpool(iter([body_bytes]))

        try:
            data = json.loads(body_bytes.decode("utf-8"))
        except ValueError:
            return response
        sale = data.get("sale") if isinstance(data, dict) else None
        if not isinstance(sale, dict):
            return response

        audit_file = settings.sale_audit_file
        sale_id = sale.get("id")
        try:
            if not _dedup_exists(audit_file, sale_id=sale_id):
                append_jsonl_atomic(
                    audit_file,
                    {
                        "ts": datetime.now(timezone.utc).isoformat(),
                        "kind": "sale",
                        "session_id": data.get("session_id"),
                        "sale_id": sale_id,
                        "sale_number": sale.get("sale_number"),
                        "total": sale.get("total"),
                        "payment_method": sale.get("payment_method"),
                        "idempotency_key": request.headers.get("Idempotency-Key"),
                        "path": path,
                    },
                )
        except OSError:
            # the sale exists on the backend; a lost audit line must not fail the response
            logger.error("could not write sale audit to %s", audit_file, exc_info=True)
        return response


def install_sale_audit(app):
    app.add_middleware(SaleAuditMiddleware)
