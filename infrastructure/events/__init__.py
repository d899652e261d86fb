"""Event dispatcher used to announce reconciled webhook deliveries."""
from .inmemory import InMemoryEventDispatcher, get_event_dispatcher

__all__ = ["InMemoryEventDispatcher", "get_event_dispatcher"]
