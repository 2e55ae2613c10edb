# app/utils/idempotency.py
# Replay de respuestas 2xx por Idempotency-Key (en proceso, con TTL y tope de entradas)
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Dict, Optional, Tuple

from starlette.responses import Response

from app.core.settings import settings

# (expires_at, status_code, body, headers)
CacheValue = Tuple[float, int, bytes, Dict[str, str]]

_REPLAY_HEADERS = {"content-type", "etag", "cache-control"}


class IdempotencyCache:
    def __init__(self, max_entries: int = 2048) -> None:
        self._store: "OrderedDict[str, CacheValue]" = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries

    def get(self, key: str) -> Optional[CacheValue]:
        now = time.time()
        with self._lock:
            v = self._store.get(key)
            if not v:
                return None
            if v[0] < now:
                self._store.pop(key, None)
                return None
            self._store.move_to_end(key)
            return v

    def put(self, key: str, status_code: int, body: bytes, headers: Dict[str, str]) -> None:
        exp = time.time() + max(0.0, float(settings.IDEMPOTENCY_TTL_SECONDS or 0))
        with self._lock:
            self._store[key] = (exp, int(status_code), body, dict(headers))
            self._store.move_to_end(key)
            while len(self._store) > self.max_entries:
                self._store.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


idempotency_cache = IdempotencyCache()


def scoped_key(key: Optional[str], scope: str) -> Optional[str]:
    """La misma clave en rutas/templates distintos no debe colisionar."""
    if not settings.IDEMPOTENCY_ENABLED or not key:
        return None
    return f"{scope}|{key.strip()}"


def maybe_replay_idempotent(key: Optional[str]) -> Optional[Response]:
    if not key:
        return None
    cached = idempotency_cache.get(key)
    if not cached:
        return None
    _, code, body, headers = cached
    resp = Response(content=body, status_code=code, media_type=headers.get("content-type", "application/json"))
    for k, v in headers.items():
        resp.headers[k] = v
    resp.headers["Idempotent-Replay"] = "true"
    return resp


def remember_idempotent_success(key: Optional[str], response: Response) -> None:
    if not key or not (200 <= int(response.status_code) < 300):
        return
    body = getattr(response, "body", None) or b""
    headers = {k: v for k, v in response.headers.items() if k.lower() in _REPLAY_HEADERS}
    idempotency_cache.put(key, int(response.status_code), body, headers)
