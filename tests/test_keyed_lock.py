import asyncio
from contextlib import asynccontextmanager

import pytest

from infrastructure.locks import InProcessKeyedLock, RedisKeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = InProcessKeyedLock()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with locks.acquire("ORD-1"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = InProcessKeyedLock()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.acquire("ORD-1"):
            entered.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await entered.wait()

    async with locks.acquire("ORD-2"):
        assert len(locks) == 2

    release.set()
    await task
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_slot_released_when_body_raises():
    locks = InProcessKeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.acquire("ORD-1"):
            raise RuntimeError("boom")
    assert len(locks) == 0


class StubRedisClient:
    def __init__(self):
        self.calls = []

    @asynccontextmanager
    async def lock(self, key, timeout=10, blocking_timeout=5):
        self.calls.append((key, timeout, blocking_timeout))
        yield


@pytest.mark.asyncio
async def test_redis_lock_namespaces_key_and_passes_timeouts():
    redis = StubRedisClient()
    locks = RedisKeyedLock(redis, timeout=30.0, blocking_timeout=2.0)

    async with locks.acquire("ORD-1"):
        pass

    assert redis.calls == [("clickpesa:webhook:ORD-1", 30.0, 2.0)]
