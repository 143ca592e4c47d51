from __future__ import annotations
import hashlib
import json
import threading
import time
from typing import Any, Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from donor_insights.core.config import settings
from donor_insights.core.logging import cache_logger

KEY_PREFIX = "donor_insights:"

# ---------------------------------------------------------------------------
# Helpers de ETag / chave determinística
# ---------------------------------------------------------------------------

def make_etag_from_bytes(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()


def dumps_deterministic(obj: Any) -> bytes:
    return json.dumps(
        obj,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    ).encode("utf-8")


def make_cache_key(
    schema_version: str,
    range_name: str,
    custom_from: Optional[str],
    custom_to: Optional[str],
    view_type: str,
    filter_dimension: str,
    filters: dict,
    *,
    minimal: bool = False,
) -> str:
    """
    Chave do resultado: hash de todos os insumos que alteram a saída.
    """
    parts = [
        schema_version,
        range_name,
        custom_from or "",
        custom_to or "",
        view_type,
        filter_dimension,
        filters or {},
        bool(minimal),
    ]
    return KEY_PREFIX + make_etag_from_bytes(dumps_deterministic(parts))


# ---------------------------------------------------------------------------
# Backend em memória com TTL
# ---------------------------------------------------------------------------

class TTLCache:
    """Thread-safe in-memory cache with TTL expiry and max-entry limit."""

    def __init__(self, max_entries: int = 256, clock: Callable[[], float] = time.time):
        self._store: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        with self._lock:
            if len(self._store) >= self._max_entries:
                self._purge_locked()
            # Ainda no limite: remove a entrada que expira primeiro
            if len(self._store) >= self._max_entries:
                oldest_key = min(self._store, key=lambda k: self._store[k][0])
                del self._store[oldest_key]
            self._store[key] = (self._clock() + ttl, value)

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [k for k, (exp, _) in self._store.items() if now > exp]
        for k in expired:
            del self._store[k]
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def invalidate(self, prefix: str) -> int:
        """Remove all keys starting with prefix. Returns count removed."""
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for k in keys:
                del self._store[k]
            return len(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


# ---------------------------------------------------------------------------
# Cache de resultados agregados
# ---------------------------------------------------------------------------

class ResultCache:
    """
    Cache of computed AggregateResults.

    Filtered requests and large ranges are never read nor written. A
    backend failure is a miss: it is logged and never reaches the caller.
    """

    def __init__(
        self,
        backend: Optional[TTLCache] = None,
        *,
        ttl_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
        schema_version: Optional[str] = None,
    ):
        self.backend = backend if backend is not None else TTLCache()
        self.ttl_seconds = settings.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.enabled = settings.CACHE_ENABLED if enabled is None else enabled
        self.schema_version = schema_version or settings.CACHE_SCHEMA_VERSION

    def key_for(
        self,
        range_name: str,
        custom_from: Optional[str],
        custom_to: Optional[str],
        view_type: str,
        filter_dimension: str,
        filters: dict,
        *,
        minimal: bool = False,
    ) -> str:
        return make_cache_key(
            self.schema_version,
            range_name,
            custom_from,
            custom_to,
            view_type,
            filter_dimension,
            filters,
            minimal=minimal,
        )

    def applies_to(self, *, filters_empty: bool, large_range: bool) -> bool:
        return self.enabled and filters_empty and not large_range

    def get(self, key: str) -> Any | None:
        try:
            value = self.backend.get(key)
        except Exception as exc:
            cache_logger.warning("Cache unavailable on read, treating as miss", key=key, error=str(exc))
            return None
        if value is not None:
            cache_logger.debug("Cache hit", key=key)
        return value

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            self.backend.set(key, value, ttl=self.ttl_seconds if ttl is None else ttl)
        except Exception as exc:
            cache_logger.warning("Cache unavailable on write, result not stored", key=key, error=str(exc))

    def invalidate(self, scope: Optional[str] = None) -> int:
        """Drop every stored result (or those under ``scope``). Safe to repeat."""
        try:
            removed = self.backend.invalidate(KEY_PREFIX + (scope or ""))
        except Exception as exc:
            cache_logger.warning("Cache unavailable on invalidate", scope=scope, error=str(exc))
            return 0
        cache_logger.info("Cache invalidated", scope=scope or "all", removed=removed)
        return removed

    def flush_runtime(self) -> None:
        try:
            self.backend.purge_expired()
        except Exception as exc:
            cache_logger.warning("Cache purge failed", error=str(exc))


result_cache = ResultCache()


# ---------------------------------------------------------------------------
# Aplicação de headers (Cache-Control, ETag)
# ---------------------------------------------------------------------------

def _cache_control_value(max_age: Optional[int], swr: Optional[int]) -> str:

    max_age = settings.CACHE_MAX_AGE if max_age is None else max_age
    swr = settings.CACHE_SWR if swr is None else swr
    return f"max-age={int(max_age)}, stale-while-revalidate={int(swr)}"


def apply_cache_headers(
    response: Response,
    etag: str,
    *,
    max_age: Optional[int] = None,
    swr: Optional[int] = None,
) -> None:
    """
    Aplica ETag e Cache-Control na resposta.
    """
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = _cache_control_value(max_age, swr)


# ---------------------------------------------------------------------------
# Resposta JSON com ETag (+ 304 se bater If-None-Match)
# ---------------------------------------------------------------------------

def etag_json(
    request: Request,
    payload: Any,
    *,
    etag_source: Any = None,
    status_code: int = 200,
    max_age: Optional[int] = None,
    swr: Optional[int] = None,
) -> Response:
    """``etag_source`` lets volatile fields (timestamps) stay out of the ETag."""
    source = payload if etag_source is None else etag_source
    etag = make_etag_from_bytes(dumps_deterministic(source))

    # Revalidação condicional
    inm = request.headers.get("If-None-Match")
    if inm and inm == etag:
        resp = Response(status_code=304)
        apply_cache_headers(resp, etag, max_age=max_age, swr=swr)
        return resp

    # Resposta normal
    resp = JSONResponse(status_code=status_code, content=payload)
    apply_cache_headers(resp, etag, max_age=max_age, swr=swr)
    return resp
