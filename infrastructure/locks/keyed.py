"""Keyed locks: in-process (asyncio) and distributed (Redis).

``InProcessKeyedLock`` is single-process only; run several workers with
``RedisKeyedLock`` instead.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from application.ports.locks import KeyedLockPort
from core.logging_config import get_logger
from infrastructure.external.cache.redis_client import RedisClient


logger = get_logger(__name__)


class _Slot:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class InProcessKeyedLock(KeyedLockPort):
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def __len__(self) -> int:
        return len(self._slots)


class RedisKeyedLock(KeyedLockPort):
    """Distributed lock per key built on ``RedisClient.lock``.

    ``timeout`` bounds how long a crashed holder keeps the lock;
    ``blocking_timeout`` bounds how long a caller waits (TimeoutError after).
    """

    def __init__(
        self,
        redis: RedisClient,
        *,
        prefix: str = "clickpesa:webhook",
        timeout: float = 30.0,
        blocking_timeout: float = 10.0,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        async with self._redis.lock(
            f"{self._prefix}:{key}",
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        ):
            yield
