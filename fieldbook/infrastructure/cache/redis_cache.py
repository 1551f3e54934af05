# fieldbook/infrastructure/cache/redis_cache.py
"""
Cache backends.

RedisCache is used whenever a Redis URL is configured; InMemoryCache mimics
the same interface for development and tests.
"""

from datetime import datetime, timedelta
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol

from redis import Redis

from ...core.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def incr(self, key: str) -> int:
        ...

    def expire(self, key: str, ttl: int) -> bool:
        ...


class InMemoryCache:
    """
    Simple in-memory cache implementation.

    Mirrors the subset of the Redis interface the engine uses. Values are
    JSON round-tripped so callers see the same shapes Redis would return.
    """

    def __init__(self, now_fn: Callable[[], datetime] = utc_now):
        self._cache: Dict[str, str] = {}
        self._expiry: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._now = now_fn
        logger.info("InMemoryCache initialized (development mode)")

    def _purge_if_expired(self, key: str) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and self._now() > expires_at:
            del self._cache[key]
            del self._expiry[key]

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._purge_if_expired(key)
            if key not in self._cache:
                return None
            return json.loads(self._cache[key])

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        """
        Set value in cache with TTL.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (default 5 minutes); 0 disables expiry
        """
        with self._lock:
            self._cache[key] = json.dumps(value)
            if ttl > 0:
                self._expiry[key] = self._now() + timedelta(seconds=ttl)
            else:
                self._expiry.pop(key, None)
        logger.debug(f"Cached {key} with TTL {ttl}s")

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)
            self._expiry.pop(key, None)
        logger.debug(f"Deleted cache key: {key}")

    def incr(self, key: str) -> int:
        """Increment a counter; an existing TTL is kept, as in Redis."""
        with self._lock:
            self._purge_if_expired(key)
            value = int(json.loads(self._cache.get(key, "0"))) + 1
            self._cache[key] = json.dumps(value)
            return value

    def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            self._purge_if_expired(key)
            if key not in self._cache:
                return False
            self._expiry[key] = self._now() + timedelta(seconds=ttl)
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._expiry.clear()
        logger.info("Cache cleared")


class RedisCache:
    """Redis-backed cache storing JSON values."""

    def __init__(self, redis_client: Redis):
        self._redis = redis_client

    def get(self, key: str) -> Optional[Any]:
        raw = self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        payload = json.dumps(value)
        if ttl > 0:
            self._redis.setex(key, ttl, payload)
        else:
            self._redis.set(key, payload)

    def delete(self, key: str) -> None:
        self._redis.delete(key)

    def incr(self, key: str) -> int:
        return int(self._redis.incr(key))

    def expire(self, key: str, ttl: int) -> bool:
        return bool(self._redis.expire(key, ttl))
