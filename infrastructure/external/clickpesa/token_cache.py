"""
Bearer token and preview response caches for the ClickPesa clients.

Both clients share one token entry per environment, so a token fetched by
the collections client is reused by the payouts client.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import time
from typing import Any, Dict, Mapping, Optional

from application.ports.token_cache import TokenCachePort, TokenFetcher
from core.logging_config import get_logger
from infrastructure.external.cache.stores import CacheStore, Clock


logger = get_logger(__name__)

TOKEN_KEY_PREFIX = "clickpesa:auth:token:"
PREVIEW_KEY_PREFIX = "clickpesa:preview:"

DEFAULT_TOKEN_TTL = 3600
DEFAULT_PREVIEW_TTL = 300


class TokenCache(TokenCachePort):
    """Read-through token cache with lazy expiry and single-flight refresh.

    Entries carry their own ``expires_at`` (wall clock) so expiry is enforced
    on read regardless of the store's own eviction.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        enabled: bool = True,
        ttl: int = DEFAULT_TOKEN_TTL,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._enabled = enabled
        self._ttl = ttl
        self._clock = clock or time.time
        self._fetch_locks: Dict[str, asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def key_for(environment: str) -> str:
        return f"{TOKEN_KEY_PREFIX}{environment}"

    async def get_token(self, environment: str) -> Optional[str]:
        if not self._enabled:
            return None
        key = self.key_for(environment)
        entry = await self._store.get(key)
        if not isinstance(entry, Mapping) or not entry.get("token"):
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and float(expires_at) <= self._clock():
            await self._store.delete(key)
            logger.debug("token_expired", environment=environment)
            return None
        return entry["token"]

    async def put_token(self, environment: str, token: str, ttl: Optional[int] = None) -> None:
        if not self._enabled or not token:
            return
        ttl = ttl or self._ttl
        await self._store.set(
            self.key_for(environment),
            {"token": token, "expires_at": self._clock() + ttl},
            ttl,
        )
        logger.debug("token_cached", environment=environment, ttl=ttl)

    async def invalidate(self, environment: str) -> None:
        await self._store.delete(self.key_for(environment))
        logger.info("token_invalidated", environment=environment)

    async def get_or_fetch(self, environment: str, fetcher: TokenFetcher) -> Optional[str]:
        """Return the cached token or fetch one, at most one fetch per environment at a time."""
        token = await self.get_token(environment)
        if token:
            return token
        lock = self._fetch_locks.setdefault(environment, asyncio.Lock())
        async with lock:
            # another caller may have refreshed while we waited
            token = await self.get_token(environment)
            if token:
                return token
            token = await fetcher()
            if token:
                await self.put_token(environment, token)
            return token


class PreviewCache:
    """Short-lived cache of successful preview responses keyed by payload digest."""

    def __init__(
        self,
        store: CacheStore,
        *,
        enabled: bool = True,
        ttl: int = DEFAULT_PREVIEW_TTL,
    ) -> None:
        self._store = store
        self._enabled = enabled
        self._ttl = ttl

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def key_for(operation: str, payload: Mapping[str, Any]) -> str:
        reference = payload.get("orderReference") or payload.get("order_reference") or "unknown"
        digest = hashlib.md5(
            json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        return f"{PREVIEW_KEY_PREFIX}{operation}:{reference}:{digest}"

    async def get(self, operation: str, payload: Mapping[str, Any]) -> Any:
        if not self._enabled:
            return None
        return await self._store.get(self.key_for(operation, payload))

    async def put(self, operation: str, payload: Mapping[str, Any], body: Any) -> None:
        if not self._enabled:
            return
        await self._store.set(self.key_for(operation, payload), body, self._ttl)

    async def flush(self) -> int:
        deleted = await self._store.delete_prefix(PREVIEW_KEY_PREFIX)
        logger.info("preview_cache_flushed", deleted=deleted)
        return deleted
