"""In-process implementation of EventBus."""

import asyncio
from dataclasses import dataclass, field
from uuid import uuid4

from datalens.config.models.eventbus import EventBusConfig
from datalens.eventbus.bus import EventBus, EventHandler, Subscription, matches_pattern
from datalens.eventbus.models import Event
from datalens.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeadLetter:
    """An event whose delivery was abandoned after all redeliveries."""

    event: Event
    pattern: str
    error: str
    attempts: int


@dataclass(eq=False)
class _InMemorySubscription(Subscription):
    bus: "InMemoryEventBus"
    pattern: str
    handler: EventHandler
    id: str = field(default_factory=lambda: str(uuid4()))

    async def unsubscribe(self) -> None:
        await self.bus._remove(self)


class InMemoryEventBus(EventBus):
    """Event bus delivering to subscribers inside the current process.

    Each matching subscription gets its own delivery task, so one handler is
    invoked concurrently for concurrently published events. A handler that
    raises is retried with exponential backoff up to ``max_redeliveries``
    times; abandoned deliveries land in ``dead_letters``.
    """

    def __init__(self, config: EventBusConfig | None = None) -> None:
        self._config = config or EventBusConfig()
        self._subscriptions: list[_InMemorySubscription] = []
        self._lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[None]] = set()
        self.dead_letters: list[DeadLetter] = []

    async def subscribe(self, pattern: str, handler: EventHandler) -> Subscription:
        subscription = _InMemorySubscription(bus=self, pattern=pattern, handler=handler)
        async with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(
            "event_subscription_registered",
            pattern=pattern,
            subscription_id=subscription.id,
        )
        return subscription

    async def _remove(self, subscription: _InMemorySubscription) -> None:
        async with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                logger.debug(
                    "event_subscription_removed",
                    pattern=subscription.pattern,
                    subscription_id=subscription.id,
                )

    async def publish(self, event: Event) -> None:
        """Deliver ``event`` to every matching subscription and wait for the outcome."""
        async with self._lock:
            targets = [
                s for s in self._subscriptions if matches_pattern(event.type, s.pattern)
            ]

        if not targets:
            logger.debug("no_subscribers_for_event", event_type=event.type)
            return

        tasks = [asyncio.create_task(self._deliver(s, event)) for s in targets]
        self._inflight.update(tasks)
        for task in tasks:
            task.add_done_callback(self._inflight.discard)
        await asyncio.gather(*tasks)

    async def _deliver(self, subscription: _InMemorySubscription, event: Event) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                await subscription.handler(event)
                return
            except Exception as e:
                if attempts > self._config.max_redeliveries:
                    logger.error(
                        "event_delivery_abandoned",
                        event_id=event.id,
                        event_type=event.type,
                        attempts=attempts,
                        error=str(e),
                    )
                    self.dead_letters.append(
                        DeadLetter(
                            event=event,
                            pattern=subscription.pattern,
                            error=str(e),
                            attempts=attempts,
                        )
                    )
                    return

                delay = self._config.redelivery_delay * (2 ** (attempts - 1))
                logger.warning(
                    "event_redelivery_scheduled",
                    event_id=event.id,
                    event_type=event.type,
                    attempt=attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def close(self) -> None:
        async with self._lock:
            self._subscriptions.clear()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("event_bus_closed")
