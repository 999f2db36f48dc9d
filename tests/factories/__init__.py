"""Test factories for creating test data."""

from tests.factories.audit import EventFactory, RecordFactory

__all__ = [
    "EventFactory",
    "RecordFactory",
]
