"""Tests for the in-process event bus."""

import asyncio

import pytest

from datalens.config.models.eventbus import EventBusConfig
from datalens.eventbus import Event, EventType, InMemoryEventBus, matches_pattern


def make_event(type: str = EventType.CONSENT_WITHDRAWN) -> Event:
    return Event(tenant_id="t1", type=type, data={"id": "x"})


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus(EventBusConfig(max_redeliveries=2, redelivery_delay=0))


class TestMatchesPattern:
    """Tests for matches_pattern."""

    @pytest.mark.parametrize(
        ("event_type", "pattern", "expected"),
        [
            ("consent.withdrawn", "*", True),
            ("consent.withdrawn", "consent.*", True),
            ("consent.withdrawn", "consent.withdrawn", True),
            ("consent.withdrawn", "dsr.*", False),
            ("consentx.withdrawn", "consent.*", False),
            ("consent.withdrawn", "consent.granted", False),
        ],
    )
    def test_patterns(self, event_type: str, pattern: str, expected: bool) -> None:
        assert matches_pattern(event_type, pattern) is expected


class TestEvent:
    """Tests for the Event model."""

    def test_defaults(self) -> None:
        event = Event(tenant_id="t1", type="dsr.created")
        assert event.id
        assert event.data is None
        assert event.timestamp.tzinfo is not None

    def test_ids_are_unique(self) -> None:
        assert Event(tenant_id="t1", type="a.b").id != Event(tenant_id="t1", type="a.b").id


class TestPublish:
    """Tests for publish and subscribe."""

    @pytest.mark.asyncio
    async def test_delivers_to_matching_subscribers(self, bus: InMemoryEventBus) -> None:
        received: dict[str, list[str]] = {"all": [], "consent": [], "dsr": []}

        async def collector(name: str, event: Event) -> None:
            received[name].append(event.type)

        await bus.subscribe("*", lambda e: collector("all", e))
        await bus.subscribe("consent.*", lambda e: collector("consent", e))
        await bus.subscribe("dsr.created", lambda e: collector("dsr", e))

        await bus.publish(make_event(EventType.CONSENT_GRANTED))
        await bus.publish(make_event(EventType.DSR_CREATED))

        assert received == {
            "all": ["consent.granted", "dsr.created"],
            "consent": ["consent.granted"],
            "dsr": ["dsr.created"],
        }

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, bus: InMemoryEventBus) -> None:
        await bus.publish(make_event())

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, bus: InMemoryEventBus) -> None:
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        subscription = await bus.subscribe("*", handler)
        await subscription.unsubscribe()
        await bus.publish(make_event())

        assert received == []

    @pytest.mark.asyncio
    async def test_handlers_run_concurrently(self, bus: InMemoryEventBus) -> None:
        """Should not serialize deliveries of different events."""
        started = asyncio.Event()
        seen: list[str] = []

        async def handler(event: Event) -> None:
            seen.append(event.id)
            if len(seen) == 2:
                started.set()
            await asyncio.wait_for(started.wait(), timeout=1)

        await bus.subscribe("*", handler)
        await asyncio.gather(bus.publish(make_event()), bus.publish(make_event()))

        assert len(seen) == 2


class TestRedelivery:
    """Tests for redelivery of failed handlers."""

    @pytest.mark.asyncio
    async def test_failing_handler_is_retried(self, bus: InMemoryEventBus) -> None:
        calls = 0

        async def handler(event: Event) -> None:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RuntimeError("try again")

        await bus.subscribe("*", handler)
        await bus.publish(make_event())

        assert calls == 3
        assert bus.dead_letters == []

    @pytest.mark.asyncio
    async def test_exhausted_delivery_is_dead_lettered(self, bus: InMemoryEventBus) -> None:
        async def handler(event: Event) -> None:
            raise RuntimeError("broken")

        await bus.subscribe("consent.*", handler)
        event = make_event()
        await bus.publish(event)

        assert len(bus.dead_letters) == 1
        letter = bus.dead_letters[0]
        assert letter.event == event
        assert letter.pattern == "consent.*"
        assert letter.attempts == 3
        assert letter.error == "broken"

    @pytest.mark.asyncio
    async def test_close_removes_subscriptions(self, bus: InMemoryEventBus) -> None:
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        await bus.subscribe("*", handler)
        await bus.close()
        await bus.publish(make_event())

        assert received == []
