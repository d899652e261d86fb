"""
Event publisher port for post-reconciliation notifications.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol


EventHandler = Callable[[Any], Awaitable[None]]


class EventPublisherPort(Protocol):
    """Fan out domain events to subscribers.

    The in-memory implementation is single-process; other transports can
    be plugged in without touching the application services.
    """

    async def publish(self, event: Any) -> None: ...

    async def subscribe(self, handler: EventHandler) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["EventPublisherPort", "EventHandler"]
