"""
Token cache port shared by the gateway clients.

Application depends on this Protocol; infrastructure implements the
memory- and Redis-backed variants.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable


TokenFetcher = Callable[[], Awaitable[Optional[str]]]


@runtime_checkable
class TokenCachePort(Protocol):
    """Bearer token cache keyed by environment (sandbox/live).

    ``get_token`` misses on expiry (checked lazily on read) and always misses
    when caching is disabled; ``put_token`` is then a no-op.
    """

    async def get_token(self, environment: str) -> Optional[str]: ...

    async def put_token(self, environment: str, token: str, ttl: Optional[int] = None) -> None: ...

    async def invalidate(self, environment: str) -> None: ...

    async def get_or_fetch(self, environment: str, fetcher: TokenFetcher) -> Optional[str]: ...


__all__ = ["TokenCachePort", "TokenFetcher"]
