"""Response cache with per-entry TTL.

Redis is used when REDIS_URL is set (shared between workers, survives
restarts). Any Redis error falls through to an in-process map, so an outage
degrades to per-process caching instead of failing the request. The two
backends are never reconciled.
"""
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from .logging_utils import logger


log = logger.child("cache")

MINUTE_MS = 60 * 1000


class CacheTTL:
    COMMIT = 10 * MINUTE_MS
    DIFF = 30 * MINUTE_MS
    SUMMARY = 60 * MINUTE_MS
    PATH_COMMITS = 15 * MINUTE_MS
    AI_CHANGELOG = 60 * MINUTE_MS
    AI_MACHCONFIG = 60 * MINUTE_MS


DEFAULT_TTL_MS = 5 * MINUTE_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    data: Any
    timestamp: int
    ttl: int

    def expired(self, now_ms: int) -> bool:
        return now_ms - self.timestamp > self.ttl


class MemoryBackend:
    """Unbounded in-process map. Expired entries are dropped on read."""

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.data

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        self._entries[key] = CacheEntry(data=value, timestamp=self._clock(), ttl=ttl_ms)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisBackend:
    """Values are stored as JSON with Redis' native expiry (SETEX)."""

    def __init__(self, client: Any):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        client = redis.Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2)
        return cls(client)

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        ttl_seconds = max(1, math.ceil(ttl_ms / 1000))
        self.client.setex(key, ttl_seconds, json.dumps(value))

    def clear(self) -> None:
        self.client.flushdb()


class TTLCache:
    """get/set/clear over an optional durable backend and the memory fallback.

    Values must be JSON-serializable (callers store ``model_dump()`` output).
    """

    def __init__(self, backend: Optional[Any] = None, *, memory: Optional[MemoryBackend] = None):
        self.backend = backend
        self.memory = memory if memory is not None else MemoryBackend()

    @classmethod
    def from_url(cls, redis_url: str = "") -> "TTLCache":
        if not redis_url:
            return cls()
        log.info("cache_backend_redis")
        return cls(RedisBackend.from_url(redis_url))

    def get(self, key: str) -> Optional[Any]:
        if self.backend is not None:
            try:
                return self.backend.get(key)
            except Exception as e:
                log.error("backend_get_failed", key=key, error=str(e))
        return self.memory.get(key)

    def set(self, key: str, value: Any, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        if self.backend is not None:
            try:
                self.backend.set(key, value, ttl_ms)
                return
            except Exception as e:
                log.error("backend_set_failed", key=key, error=str(e))
        self.memory.set(key, value, ttl_ms)

    def clear(self) -> None:
        if self.backend is not None:
            try:
                self.backend.clear()
            except Exception as e:
                log.error("backend_clear_failed", error=str(e))
        self.memory.clear()
