import asyncio

import pytest

from infrastructure.external.cache.stores import MemoryCacheStore, RedisCacheStore
from infrastructure.external.clickpesa.token_cache import (
    PREVIEW_KEY_PREFIX,
    TOKEN_KEY_PREFIX,
    PreviewCache,
    TokenCache,
)


class TickingClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_token_roundtrip_and_key_per_environment():
    cache = TokenCache(MemoryCacheStore())
    await cache.put_token("sandbox", "Bearer abc")

    assert TokenCache.key_for("sandbox") == f"{TOKEN_KEY_PREFIX}sandbox"
    assert await cache.get_token("sandbox") == "Bearer abc"
    assert await cache.get_token("live") is None


@pytest.mark.asyncio
async def test_token_expires_lazily_on_read():
    clock = TickingClock()
    store = MemoryCacheStore(clock=clock)
    cache = TokenCache(store, ttl=3600, clock=clock)
    await cache.put_token("sandbox", "Bearer abc")

    clock.now += 3599
    assert await cache.get_token("sandbox") == "Bearer abc"
    clock.now += 1
    assert await cache.get_token("sandbox") is None
    assert await store.get(TokenCache.key_for("sandbox")) is None


@pytest.mark.asyncio
async def test_invalidate_removes_token():
    cache = TokenCache(MemoryCacheStore())
    await cache.put_token("live", "Bearer abc")
    await cache.invalidate("live")
    assert await cache.get_token("live") is None


@pytest.mark.asyncio
async def test_disabled_cache_never_stores():
    cache = TokenCache(MemoryCacheStore(), enabled=False)
    await cache.put_token("sandbox", "Bearer abc")
    assert await cache.get_token("sandbox") is None


@pytest.mark.asyncio
async def test_get_or_fetch_is_single_flight():
    cache = TokenCache(MemoryCacheStore())
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return "Bearer fresh"

    tokens = await asyncio.gather(*(cache.get_or_fetch("sandbox", fetch) for _ in range(5)))

    assert tokens == ["Bearer fresh"] * 5
    assert calls == 1


@pytest.mark.asyncio
async def test_get_or_fetch_does_not_cache_failed_fetch():
    cache = TokenCache(MemoryCacheStore())

    async def fetch():
        return None

    assert await cache.get_or_fetch("sandbox", fetch) is None
    assert await cache.get_token("sandbox") is None


@pytest.mark.asyncio
async def test_preview_cache_keys_by_operation_and_payload():
    store = MemoryCacheStore()
    cache = PreviewCache(store)
    payload = {"amount": "1000", "orderReference": "ORD-1"}

    await cache.put("preview_ussd_push", payload, {"activeMethods": []})

    assert await cache.get("preview_ussd_push", dict(reversed(list(payload.items())))) == {"activeMethods": []}
    assert await cache.get("preview_card_payment", payload) is None
    assert await cache.get("preview_ussd_push", {**payload, "amount": "2000"}) is None

    key = PreviewCache.key_for("preview_ussd_push", payload)
    assert key.startswith(f"{PREVIEW_KEY_PREFIX}preview_ussd_push:ORD-1:")


@pytest.mark.asyncio
async def test_preview_flush_leaves_tokens():
    store = MemoryCacheStore()
    tokens = TokenCache(store)
    previews = PreviewCache(store)
    await tokens.put_token("sandbox", "Bearer abc")
    await previews.put("preview_bank_payout", {"orderReference": "A"}, {"fee": 1})
    await previews.put("preview_bank_payout", {"orderReference": "B"}, {"fee": 2})

    assert await previews.flush() == 2
    assert await tokens.get_token("sandbox") == "Bearer abc"


class StubRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key, default=None):
        return self.data.get(key, default)

    async def set(self, key, value, ttl=None, nx=False):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def keys(self, pattern="*"):
        prefix = pattern.rstrip("*")
        return [k for k in self.data if k.startswith(prefix)]


@pytest.mark.asyncio
async def test_redis_store_delegates_to_client():
    redis = StubRedis()
    store = RedisCacheStore(redis)

    await store.set("clickpesa:preview:a", {"x": 1}, 300)
    await store.set("clickpesa:preview:b", {"x": 2})
    await store.set("clickpesa:auth:token:sandbox", {"token": "t"}, 3600)

    assert redis.ttls["clickpesa:preview:a"] == 300
    assert redis.ttls["clickpesa:preview:b"] == 0
    assert await store.get("clickpesa:preview:a") == {"x": 1}
    assert await store.delete_prefix("clickpesa:preview:") == 2
    assert await store.get("clickpesa:auth:token:sandbox") == {"token": "t"}
