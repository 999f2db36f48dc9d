"""Tests for audit ledger models."""

from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from datalens.audit.models import AuditDraft, AuditRecord, EventPayload
from datalens.audit.models.payload import parse_identifier


class TestParseIdentifier:
    """Tests for parse_identifier."""

    def test_uuid_passthrough(self) -> None:
        value = uuid4()
        assert parse_identifier(value) is value

    def test_string_uuid(self) -> None:
        assert parse_identifier("00000000-0000-0000-0000-000000000001") == UUID(int=1)

    @pytest.mark.parametrize("value", ["", "abc", 12, None, {"id": 1}])
    def test_unparsable(self, value: object) -> None:
        assert parse_identifier(value) is None


class TestEventPayload:
    """Tests for EventPayload.from_data."""

    def test_mapping_payload(self) -> None:
        payload = EventPayload.from_data({"id": str(UUID(int=3)), "name": "crm"})
        assert payload.structured is True
        assert payload.resource_id == UUID(int=3)
        assert payload.actor_id is None
        assert payload.raw == '{"id":"00000000-0000-0000-0000-000000000003","name":"crm"}'

    def test_non_mapping_payload(self) -> None:
        payload = EventPayload.from_data("oops")
        assert payload == EventPayload()
        assert payload.raw == "{}"


class TestAuditDraft:
    """Tests for AuditDraft."""

    def _draft(self, created_at: datetime) -> AuditDraft:
        return AuditDraft(
            id="e1",
            tenant_id="t1",
            event_type="ds.created",
            resource_type="ds",
            action="created",
            created_at=created_at,
        )

    def test_naive_time_is_utc(self) -> None:
        draft = self._draft(datetime(2024, 1, 1, 10, 0))
        assert draft.created_at.tzinfo is UTC

    def test_offset_time_is_normalized(self) -> None:
        draft = self._draft(datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2))))
        assert draft.created_at == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
        assert draft.created_at.utcoffset() == timedelta(0)

    def test_is_frozen(self) -> None:
        draft = self._draft(datetime(2024, 1, 1, tzinfo=UTC))
        with pytest.raises(ValidationError):
            draft.tenant_id = "t2"  # type: ignore[misc]


class TestAuditRecord:
    """Tests for AuditRecord."""

    def test_sequence_starts_at_one(self) -> None:
        with pytest.raises(ValidationError):
            AuditRecord(
                id="e1",
                tenant_id="t1",
                event_type="ds.created",
                resource_type="ds",
                action="created",
                created_at=datetime(2024, 1, 1, tzinfo=UTC),
                chain_id="global",
                sequence=0,
                previous_hash="",
                hash="h",
            )
