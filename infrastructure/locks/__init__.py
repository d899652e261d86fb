"""Keyed lock implementations for per-order-reference serialization."""
from .keyed import InProcessKeyedLock, RedisKeyedLock

__all__ = ["InProcessKeyedLock", "RedisKeyedLock"]
