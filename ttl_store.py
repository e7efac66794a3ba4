"""Short-lived key-value store with per-entry expiry.

Backs the login rate limiter. Provides get/put/remove; entries expire on
their own so nothing needs manual garbage collection. When REDIS_URL is
configured and reachable, uses Redis; otherwise falls back to a
process-local in-memory store.

Usage:
    from ttl_store import init_ttl_store, get_ttl_store
    init_ttl_store(app)        # called once in create_app()
    store = get_ttl_store()
    store.put("key", value, ttl=300)
    value = store.get("key")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

# ── Protocol ───────────────────────────────────────────────

class TTLStore(Protocol):
    def get(self, key: str) -> Any | None: ...
    def put(self, key: str, value: Any, ttl: int) -> None: ...
    def remove(self, key: str) -> None: ...


def _encode(value: Any) -> str:
    return json.dumps(value) if not isinstance(value, str) else value


def _decode(raw: str | bytes) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode()
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


# ── In-Memory Implementation ──────────────────────────────

class InMemoryTTLStore:
    """Dict of key -> (raw value, expires_at), guarded by a lock."""

    MAX_ENTRIES = 10_000

    def __init__(self, clock=time.time) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            raw, expires_at = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
        return _decode(raw)

    def put(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            if len(self._store) >= self.MAX_ENTRIES and key not in self._store:
                self._evict_expired_or_oldest()
            self._store[key] = (_encode(value), self._clock() + ttl)

    def remove(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def _evict_expired_or_oldest(self) -> None:
        now = self._clock()
        expired = [k for k, (_, exp) in self._store.items() if now >= exp]
        for k in expired:
            del self._store[k]
        if not expired and self._store:
            oldest = min(self._store, key=lambda k: self._store[k][1])
            del self._store[oldest]


# ── Redis Implementation ──────────────────────────────────

class RedisTTLStore:
    """Wraps redis.Redis with graceful error handling."""

    def __init__(self, redis_client, prefix: str = "classroom:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(self._prefix + key)
        except Exception as e:
            logger.warning("Redis GET error (key=%s): %s", key, e)
            return None
        if raw is None:
            return None
        return _decode(raw)

    def put(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._redis.setex(self._prefix + key, max(1, int(ttl)), _encode(value))
        except Exception as e:
            logger.warning("Redis SETEX error (key=%s): %s", key, e)

    def remove(self, key: str) -> None:
        try:
            self._redis.delete(self._prefix + key)
        except Exception as e:
            logger.warning("Redis DELETE error (key=%s): %s", key, e)


# ── Module-level singleton ────────────────────────────────

_store: TTLStore | None = None


def connect_redis(app):
    """Return a live redis client for REDIS_URL, or None."""
    redis_url = app.config.get("REDIS_URL", "")
    if not redis_url:
        return None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=False)
        client.ping()
        return client
    except Exception as e:
        app.logger.warning("Redis connection failed (%s) — using in-process backends.", e)
    return None


def init_ttl_store(app, redis_client=None) -> None:
    """Initialize the TTL store. Call once from create_app()."""
    global _store

    if redis_client is not None:
        _store = RedisTTLStore(redis_client)
        app.logger.info("TTL store: Redis")
        return

    _store = InMemoryTTLStore()
    app.logger.info("TTL store: in-memory")


def get_ttl_store() -> TTLStore:
    """Return the active TTL store. Lazily initializes if needed."""
    global _store
    if _store is None:
        _store = InMemoryTTLStore()
    return _store
