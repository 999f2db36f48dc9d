"""Event bus: domain events and publish/subscribe transport."""

from datalens.eventbus.bus import EventBus, EventHandler, Subscription, matches_pattern
from datalens.eventbus.inmemory import DeadLetter, InMemoryEventBus
from datalens.eventbus.models import Event, EventType

__all__ = [
    "DeadLetter",
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "InMemoryEventBus",
    "Subscription",
    "matches_pattern",
]
