"""In-memory implementation of EventPublisherPort.

Single-process only. Useful for local dev and tests.
"""
from __future__ import annotations

from typing import Any, List, Optional
import asyncio

from application.ports.events import EventHandler, EventPublisherPort


class InMemoryEventDispatcher(EventPublisherPort):
    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []
        self._lock = asyncio.Lock()

    async def publish(self, event: Any) -> None:  # type: ignore[override]
        # Deliver sequentially; a failing handler propagates to the caller
        async with self._lock:
            handlers = list(self._handlers)
        for h in handlers:
            await h(event)

    async def subscribe(self, handler: EventHandler) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.append(handler)

    async def aclose(self) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.clear()


_dispatcher: Optional[InMemoryEventDispatcher] = None


def get_event_dispatcher() -> InMemoryEventDispatcher:
    """Process-wide dispatcher shared by the API and background subscribers."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = InMemoryEventDispatcher()
    return _dispatcher
