"""Progress cache backends.

Recalculation writes each fresh progress snapshot here and the progress
endpoint reads it before recomputing. The cache is an optimisation only: the
calculator never depends on it, and a backend error is logged and treated as
a miss.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Dict, Optional, Protocol

import redis

from app.config import CACHE_SETTINGS
from app.utils import get_logger

logger = get_logger(__name__)


def progress_key(campaign_id: int) -> str:
    return f"progress:{campaign_id}"


class ProgressCache(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...
    def set(self, key: str, value: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None: ...
    def invalidate(self, key: str) -> None: ...
    def snapshot(self) -> dict: ...


class InMemoryProgressCache:
    """Thread-safe TTL cache keyed by string, using the monotonic clock."""

    def __init__(self, default_ttl_seconds: Optional[int] = None, *, clock=time.monotonic) -> None:
        self._default_ttl = int(default_ttl_seconds if default_ttl_seconds is not None else CACHE_SETTINGS["progress_ttl_seconds"])
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[float, Dict[str, Any]]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return dict(value)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else int(ttl_seconds)
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + ttl, dict(value))

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def snapshot(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "backend": "memory",
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }


class RedisProgressCache:
    """Redis-backed cache shared between API processes. Values are JSON, TTL via SETEX."""

    def __init__(self, client: Optional[redis.Redis] = None, *, url: Optional[str] = None, key_prefix: Optional[str] = None, default_ttl_seconds: Optional[int] = None) -> None:
        self._url = str(url or CACHE_SETTINGS["redis_url"])
        self._prefix = str(key_prefix if key_prefix is not None else CACHE_SETTINGS["redis_key_prefix"])
        self._default_ttl = int(default_ttl_seconds if default_ttl_seconds is not None else CACHE_SETTINGS["progress_ttl_seconds"])
        self._client = client if client is not None else redis.from_url(
            self._url,
            socket_timeout=float(CACHE_SETTINGS["redis_socket_timeout"]),
            socket_connect_timeout=float(CACHE_SETTINGS["redis_socket_timeout"]),
        )
        self._errors = 0

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def health_check(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis cache health check failed", error=str(e))
            return False

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            self._errors += 1
            logger.warning("Redis cache read failed, treating as miss", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            self.invalidate(key)
            return None

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else int(ttl_seconds)
        if ttl <= 0:
            return
        try:
            self._client.setex(self._key(key), ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            self._errors += 1
            logger.warning("Redis cache write failed", key=key, error=str(e))

    def invalidate(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            self._errors += 1
            logger.warning("Redis cache invalidation failed", key=key, error=str(e))

    def snapshot(self) -> dict:
        return {"backend": "redis", "url": self._url, "errors": self._errors}


def create_progress_cache() -> ProgressCache:
    """Pick the cache backend from CACHE_SETTINGS; unreachable Redis falls back to memory."""
    if CACHE_SETTINGS.get("use_redis"):
        try:
            cache = RedisProgressCache()
            if cache.health_check():
                logger.info("Using Redis progress cache", url=CACHE_SETTINGS["redis_url"])
                return cache
            logger.warning("Redis progress cache unreachable, using in-memory cache")
        except redis.RedisError as e:
            logger.warning("Redis progress cache initialisation failed, using in-memory cache", error=str(e))
    logger.info("Using in-memory progress cache")
    return InMemoryProgressCache()


__all__ = [
    "ProgressCache",
    "InMemoryProgressCache",
    "RedisProgressCache",
    "create_progress_cache",
    "progress_key",
]
