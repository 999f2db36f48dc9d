"""Tests for InMemoryLedgerStore."""

import pytest

from datalens.audit.errors import ChainForkError
from datalens.audit.models import AuditRecord
from datalens.audit.stores import InMemoryLedgerStore
from datalens.db.errors import ConflictError
from tests.factories.audit import RecordFactory


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def records() -> list[AuditRecord]:
    return RecordFactory.chain(3)


class TestAppend:
    """Tests for append."""

    @pytest.mark.asyncio
    async def test_append_and_get(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        """Should store a record retrievable by id."""
        assert await store.append(records[0]) is True
        assert await store.get_by_id(records[0].id) == records[0]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_append_is_idempotent_by_id(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        """Should treat a repeated id as a successful no-op."""
        await store.append(records[0])
        assert await store.append(records[0]) is False
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_rejects_second_successor_of_same_hash(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        """Should refuse to fork the chain."""
        await store.append(records[0])
        fork = records[1].model_copy(update={"id": "other", "sequence": 3})

        await store.append(records[1])
        with pytest.raises(ChainForkError):
            await store.append(fork)

    @pytest.mark.asyncio
    async def test_rejects_duplicate_sequence(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        await store.append(records[0])
        clash = records[1].model_copy(update={"id": "other", "sequence": 1})

        with pytest.raises(ConflictError):
            await store.append(clash)

    @pytest.mark.asyncio
    async def test_chains_are_independent(self, store: InMemoryLedgerStore) -> None:
        first = RecordFactory.chain(1, chain_id="t1", tenant_id="t1")[0]
        second = RecordFactory.chain(1, chain_id="t2", tenant_id="t2")[0]

        assert await store.append(first)
        assert await store.append(second)


class TestReads:
    """Tests for tail and listing."""

    @pytest.mark.asyncio
    async def test_tail_of_empty_chain(self, store: InMemoryLedgerStore) -> None:
        assert await store.tail("global") is None

    @pytest.mark.asyncio
    async def test_tail_is_highest_sequence(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        for record in records:
            await store.append(record)

        tail = await store.tail("global")

        assert tail is not None
        assert tail.sequence == 3
        assert tail.hash == records[-1].hash

    @pytest.mark.asyncio
    async def test_list_chain_pages_in_sequence_order(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        for record in reversed(records):
            # out-of-order appends are allowed as long as nothing is claimed twice
            await store.append(record)

        first_page = await store.list_chain("global", limit=2)
        second_page = await store.list_chain("global", after_sequence=2, limit=2)

        assert [r.sequence for r in first_page] == [1, 2]
        assert [r.sequence for r in second_page] == [3]

    @pytest.mark.asyncio
    async def test_list_chain_ids(self, store: InMemoryLedgerStore) -> None:
        await store.append(RecordFactory.chain(1, chain_id="b", tenant_id="b")[0])
        await store.append(RecordFactory.chain(1, chain_id="a", tenant_id="a")[0])

        assert await store.list_chain_ids() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_get_missing(self, store: InMemoryLedgerStore) -> None:
        assert await store.get_by_id("missing") is None


class TestGaps:
    """Tests for gaps."""

    @pytest.mark.asyncio
    async def test_contiguous_chain_has_no_gaps(
        self, store: InMemoryLedgerStore, records: list[AuditRecord]
    ) -> None:
        for record in records:
            await store.append(record)

        assert await store.gaps("global") == []
        assert await store.gaps("unknown") == []

    @pytest.mark.asyncio
    async def test_reports_missing_runs(self, store: InMemoryLedgerStore) -> None:
        chain = RecordFactory.chain(6)
        for index in (1, 4, 5):
            await store.append(chain[index])

        gaps = await store.gaps("global")

        assert [(g.sequence, g.missing) for g in gaps] == [(1, 1), (3, 2)]
        assert gaps[0].previous_hash == ""
        assert gaps[0].next_previous_hash == chain[0].hash
        assert gaps[1].previous_hash == chain[1].hash
        assert gaps[1].next_previous_hash == chain[3].hash
