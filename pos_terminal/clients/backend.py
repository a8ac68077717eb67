"""HTTP client for the retail REST backend.

Only the calls the terminal needs: stock listing, customers, sale creation and
lookup, plus the token refresh done before a request when the access token is
about to expire.
"""

import base64
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from pos_terminal.core.config import Settings
from pos_terminal.core.errors import BackendAuthError, BackendError, errmsg
from pos_terminal.core.schemas import CheckoutPayload, Customer, StockItem, parse_customers, parse_stock_rows

logger = logging.getLogger(__name__)


def parse_jwt(token: str) -> Optional[dict]:
    """Decode the (unverified) claims of a JWT; None if it is not one."""
    try:
        part = token.split(".")[1]
        part += "=" * (-len(part) % 4)
        return json.loads(base64.urlsafe_b64decode(part.encode("ascii")))
    except (IndexError, ValueError, UnicodeDecodeError):
        return None


def _error_message(resp: requests.Response) -> Optional[str]:
    try:
        js = resp.json()
    except ValueError:
        return None
    if isinstance(js, dict):
        for key in ("error", "detail", "message"):
            val = js.get(key)
            if isinstance(val, str) and val:
                return val
            if isinstance(val, dict) and isinstance(val.get("message"), str):
                return val["message"]
    return None


class BackendClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        refresh_margin: int = 300,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.refresh_margin = refresh_margin
        self._http = session or requests.Session()
        self._clock = clock

    @classmethod
    def from_settings(cls, s: Settings) -> "BackendClient":
        return cls(
            s.api_base_url,
            timeout=s.api_timeout_seconds,
            access_token=s.api_access_token,
            refresh_token=s.api_refresh_token,
            refresh_margin=s.token_refresh_margin_seconds,
        )

    # ---------- auth ----------

    def _maybe_refresh(self) -> None:
        if not (self.access_token and self.refresh_token):
            return
        claims = parse_jwt(self.access_token)
        if not claims or "exp" not in claims:
            return
        if float(claims["exp"]) - self._clock() >= self.refresh_margin:
            return
        try:
            logger.info("refreshing access token")
            r = self._http.post(
                f"{self.base_url}/auth/refresh",
                json={"refresh_token": self.refresh_token},
                timeout=self.timeout,
            )
            r.raise_for_status()
            token = r.json().get("access_token")
            if token:
                self.access_token = token
        except (requests.RequestException, ValueError, AttributeError):
            # the request goes out with the old token; a 401 is handled below
            logger.error("token refresh failed", exc_info=True)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        self._maybe_refresh()
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if extra:
            headers.update(extra)
        return headers

    # ---------- transport ----------

    def _request(self, method: str, path: str, *, json_body=None, params=None, headers=None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self._http.request(
                method, url, json=json_body, params=params, headers=self._headers(headers), timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.warning("%s %s timed out", method, path)
            raise BackendError("Request timed out") from e
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise BackendError(str(e) or errmsg.SALE_FAILED) from e

        if r.status_code == 401:
            self.access_token = None
            self.refresh_token = None
            raise BackendAuthError(_error_message(r) or "Unauthorized", status=401)
        if not 200 <= r.status_code < 300:
            msg = _error_message(r) or f"Backend returned {r.status_code}"
            logger.warning("%s %s -> %s: %s", method, path, r.status_code, msg)
            raise BackendError(msg, status=r.status_code)
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise BackendError(errmsg.INVALID_SALE_RESPONSE, status=r.status_code) from e

    # ---------- endpoints ----------

    def get_stocks(self, shop_id: Optional[str] = None) -> List[StockItem]:
        params = {"shop_id": shop_id} if shop_id else {}
        return parse_stock_rows(self._request("GET", "/stocks", params=params))

    def get_customers(self) -> List[Customer]:
        return parse_customers(self._request("GET", "/customers"))

    def create_sale(self, payload: CheckoutPayload, idempotency_key: Optional[str] = None) -> Any:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self._request("POST", "/sales", json_body=payload.to_json(), headers=headers)

    def get_sale(self, sale_id: str) -> Any:
        return self._request("GET", f"/sales/{sale_id}")

    def health(self) -> Any:
        return self._request("GET", "/health")
