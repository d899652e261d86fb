"""
Key/value cache stores behind the gateway token and preview caches.

``MemoryCacheStore`` is process-local (expiry checked lazily on read);
``RedisCacheStore`` shares entries across processes through ``RedisClient``.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from infrastructure.external.cache.redis_client import RedisClient


Clock = Callable[[], float]


class CacheStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...


class MemoryCacheStore:
    """In-process dict store. Single process only; useful for dev and tests."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    async def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)


class RedisCacheStore:
    """Store backed by the shared Redis client (namespaced)."""

    def __init__(self, redis: RedisClient) -> None:
        self._redis = redis

    async def get(self, key: str) -> Any:
        return await self._redis.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        # ttl=0 disables expiry in RedisClient; None would fall back to its default
        await self._redis.set(key, value, ttl=ttl if ttl and ttl > 0 else 0)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        keys = await self._redis.keys(f"{prefix}*")
        if not keys:
            return 0
        return await self._redis.delete(*keys)


__all__ = ["CacheStore", "MemoryCacheStore", "RedisCacheStore", "Clock"]
