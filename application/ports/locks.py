"""
Keyed lock port used to serialize webhook reconciliation per order reference.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol


class KeyedLockPort(Protocol):
    """Mutual exclusion scoped to a key.

    Implementations may be in-process (asyncio) or distributed (Redis).
    Holders of different keys never block each other.
    """

    def acquire(self, key: str) -> AsyncContextManager[None]: ...


__all__ = ["KeyedLockPort"]
