"""
Live smoke run against a started terminal service:

    uvicorn pos_terminal.main:app --port 8010
    python scripts/smoke_pos_flow.py

Opens a session, adds the first product in stock, checks out and prints the
text receipt. Needs a reachable backend (API_BASE_URL) and SHOP_ID.
"""
import os
import sys
import uuid

import requests

BASE = os.getenv("BASE_URL", "http://127.0.0.1:8010")
SHOP = os.getenv("SHOP_ID")


def _post(path, body=None, **kw):
    r = requests.post(f"{BASE}{path}", json=body or {}, timeout=15, **kw)
    return r.status_code, r.json()


def main():
    st, js = _post("/session/open", {"shop_id": SHOP})
    if st != 200:
        print("open failed:", st, js)
        return 1
    sid = js["session_id"]
    for n in js["notices"]:
        print("notice:", n["message"])

    items = requests.get(f"{BASE}/pos/{sid}/catalog", timeout=15).json()["items"]
    product = next((i for i in items if i["available"] > 0), None)
    if product is None:
        print("no product in stock")
        return 1

    st, js = _post(f"/pos/{sid}/cart/items", {"product_id": product["product_id"]})
    print("cart total:", js["totals"]["total"])

    headers = {"Idempotency-Key": uuid.uuid4().hex}
    st, js = _post(f"/pos/{sid}/checkout", headers=headers)
    if st != 200:
        print("checkout failed:", st, js)
        return 1
    st2, js2 = _post(f"/pos/{sid}/checkout", headers=headers)
    assert st2 == 200 and js2.get("replay") is True, (st2, js2)

    print(requests.get(f"{BASE}/pos/{sid}/receipt/text", timeout=15).text)
    _post(f"/session/{sid}/close")
    return 0


if __name__ == "__main__":
    sys.exit(main())
