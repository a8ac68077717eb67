import asyncio
import json
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from pos_terminal.core.config import settings

logger = logging.getLogger(__name__)

# path suffix -> key that must be present in a successful JSON body
ALLOW = {
    "/checkout": "sale",
}


def _success_key(path: str):
    for suffix, key in ALLOW.items():
        if path.startswith("/pos/") and path.endswith(suffix):
            return key
    return None


class _Cache:
    def __init__(self, ttl=3600, max_entries=2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._store = {}
        self._lock = asyncio.Lock()

    async def get(self, key):
        async with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            if item["exp"] < time.time():
                self._store.pop(key, None)
                return None
            return item

    async def set(self, key, val):
        async with self._lock:
            if len(self._store) >= self.max_entries:
                self._store.pop(next(iter(self._store)))
            val["exp"] = time.time() + self.ttl
            self._store[key] = val

    def clear(self):
        self._store.clear()


class _KeyedLocks:
    """One lock per key, dropped once no request holds or waits on it."""

    def __init__(self):
        self._locks = {}  # key -> [lock, holders + waiters]
        self._guard = asyncio.Lock()

    async def acquire(self, key):
        async with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [asyncio.Lock(), 0]
            entry[1] += 1
        await entry[0].acquire()

    async def release(self, key):
        async with self._guard:
            entry = self._locks[key]
            entry[0].release()
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


def _drop_content_length(headers: dict) -> dict:
    return {k: v for k, v in headers.items() if k.lower() != "content-length"}


def _replay(cached) -> Response:
    body_bytes = cached["body"]
    try:
        js = json.loads(body_bytes.decode("utf-8"))
    except ValueError:
        js = None
    if isinstance(js, dict):
        js.setdefault("replay", True)
        body_bytes = json.dumps(js).encode("utf-8")
    headers = _drop_content_length(dict(cached["headers"]))
    headers["Idempotent-Replay"] = "true"
    return Response(
        content=body_bytes,
        status_code=cached["status"],
        media_type=cached["media_type"],
        headers=headers,
    )


_idem_cache = _Cache(ttl=settings.idempotency_ttl_seconds)
_keyed_locks = _KeyedLocks()


class CheckoutIdempotency(BaseHTTPMiddleware):
    """
    Replays a successful checkout for a repeated ``Idempotency-Key``.

    Only 200 responses carrying the success key are cached; a failed checkout
    may be retried with the same key.
    """

    async def dispatch(self, request, call_next):
        if request.method != "POST":
            return await call_next(request)

        path = request.url.path
        success_key = _success_key(path)
        if not success_key:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        cache_key = f"{request.method}:{path}:{idem_key}"

        cached = await _idem_cache.get(cache_key)
        if cached:
            logger.info("idempotent replay %s", cache_key)
            return _replay(cached)

        # one request per key at a time
        await _keyed_locks.acquire(cache_key)
        try:
            cached = await _idem_cache.get(cache_key)
            if cached:
                logger.info("idempotent replay %s", cache_key)
                return _replay(cached)

            response = await call_next(request)
            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk

            headers = _drop_content_length(dict(response.headers))
            new_resp = Response(
                content=body_bytes,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=headers,
            )

            should_cache = response.status_code == 200
            if should_cache:
                try:
                    js = json.loads(body_bytes.decode("utf-8"))
                    should_cache = isinstance(js, dict) and (success_key in js)
                except ValueError:
                    should_cache = False

            if should_cache:
                await _idem_cache.set(
                    cache_key,
                    {
                        "status": new_resp.status_code,
                        "headers": dict(new_resp.headers),
                        "media_type": new_resp.media_type,
                        "body": body_bytes,
                    },
                )

            return new_resp
        finally:
            await _keyed_locks.release(cache_key)


def install_idempotency(app):
    app.add_middleware(CheckoutIdempotency)
