"""EventBus abstract interface."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from datalens.eventbus.models import Event

# Raising from a handler asks the bus to redeliver the event.
EventHandler = Callable[[Event], Awaitable[None]]


def matches_pattern(event_type: str, pattern: str) -> bool:
    """Check an event type against a subscription pattern.

    - ``"*"`` matches every event
    - ``"consent.*"`` matches every type starting with ``"consent."``
    - anything else is an exact match
    """
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return event_type.startswith(pattern[:-1])
    return event_type == pattern


class Subscription(ABC):
    """Handle for an active subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering events to this subscription's handler."""
        pass


class EventBus(ABC):
    """Publish/subscribe transport for domain events.

    Delivery is at-least-once and a handler may be invoked concurrently for
    different (or the same) events.
    """

    @abstractmethod
    async def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscription."""
        pass

    @abstractmethod
    async def subscribe(self, pattern: str, handler: EventHandler) -> Subscription:
        """Register a handler for events matching ``pattern``."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Drop all subscriptions and wait for in-flight deliveries."""
        pass
