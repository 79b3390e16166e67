"""
Keyed stores with per-entry TTL and increment-or-reset counters.

Two interchangeable backends: a process-local one for single-process
deployments and tests, and Redis for anything that runs more than one worker.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import redis.asyncio as redis
from cachetools import TLRUCache

from quiz_delivery.core.config import settings

logger = logging.getLogger(__name__)


class CacheBackend:
    """Interface shared by the cache backends. Values must be JSON-serializable."""

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def incr(self, key: str, window: int) -> int:
        """Increment a counter, starting a fresh `window`-second window when absent."""
        raise NotImplementedError

    async def ping(self) -> bool:
        return True


@dataclass
class _Entry:
    value: Any
    ttl: float


def _expires_at(_key, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCache(CacheBackend):
    def __init__(self, maxsize: int = 10_000, default_ttl: int = 300, timer: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._store: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=timer)

    async def get(self, key: str, default: Any = None) -> Any:
        entry = self._store.get(key)
        if entry is None:
            return default
        return json.loads(entry.value)

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        # stored serialized so callers can never mutate a cached value in place
        self._store[key] = _Entry(json.dumps(value), expire or self.default_ttl)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key: str, window: int) -> int:
        entry = self._store.get(key)
        if entry is None:
            entry = _Entry(0, window)
            self._store[key] = entry
        # mutate in place: re-assigning would push the expiry forward
        entry.value += 1
        return entry.value

    def __len__(self) -> int:
        return len(self._store)


class RedisCache(CacheBackend):
    def __init__(self, url: str, default_ttl: int = 300, max_connections: int = 50, socket_timeout: float = 2.0):
        self.url = url
        self.default_ttl = default_ttl
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Initialize Redis connection pool."""
        self.redis = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self.max_connections,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )

    async def disconnect(self):
        if self.redis:
            await self.redis.aclose()

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            value = await self.redis.get(key)
            if value is None:
                return default
            return json.loads(value)
        except (redis.RedisError, json.JSONDecodeError) as e:
            logger.error(f"Cache get error: {e}")
            return default

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        try:
            return bool(await self.redis.set(key, json.dumps(value), ex=expire or self.default_ttl))
        except redis.RedisError as e:
            logger.error(f"Cache set error: {e}")
            return False

    async def delete(self, *keys: str) -> int:
        try:
            return await self.redis.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Cache delete error: {e}")
            return 0

    async def incr(self, key: str, window: int) -> int:
        try:
            pipe = self.redis.pipeline()
            pipe.incr(key, 1)
            pipe.expire(key, window, nx=True)
            results = await pipe.execute()
            return int(results[0])
        except redis.RedisError as e:
            # counting fails open
            logger.error(f"Cache incr error: {e}")
            return 0

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except redis.RedisError:
            return False


def build_cache() -> CacheBackend:
    if settings.CACHE_BACKEND == "redis":
        return RedisCache(
            settings.REDIS_URL, settings.QUESTION_CACHE_TTL, settings.REDIS_POOL_SIZE, settings.REDIS_SOCKET_TIMEOUT
        )
    return MemoryCache(settings.CACHE_MAX_ENTRIES, settings.QUESTION_CACHE_TTL)


def build_rate_limit_store(shared: CacheBackend) -> CacheBackend:
    """Counters live apart from cached selections so evicting one never resets the other.

    Redis keys expire on their own, so the shared client is reused there.
    """
    if isinstance(shared, RedisCache):
        return shared
    return MemoryCache(settings.RATE_LIMIT_MAX_KEYS, settings.RATE_LIMIT_WINDOW_SECONDS)


# Global cache instances
cache = build_cache()
rate_limit_store = build_rate_limit_store(cache)

def get_cache() -> CacheBackend:
    return cache

def get_rate_limit_store() -> CacheBackend:
    return rate_limit_store
