"""Integration tests for PostgresLedgerStore against a real database."""

import asyncio

import asyncpg
import pytest
import pytest_asyncio

from datalens.audit.errors import ChainForkError
from datalens.audit.stores import PostgresLedgerStore
from datalens.audit.subscriber import AuditSubscriber
from datalens.audit.verifier import verify_ledger
from datalens.config.models.audit import AuditConfig
from datalens.eventbus import InMemoryEventBus
from tests.factories.audit import EventFactory, RecordFactory

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def ledger_store(postgres_pool) -> PostgresLedgerStore:
    return PostgresLedgerStore(postgres_pool)


class TestPostgresLedgerStore:
    """CRUD-less ledger semantics on PostgreSQL."""

    @pytest.mark.asyncio
    async def test_append_and_read_back(
        self, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        records = RecordFactory.chain(3, chain_id=chain_id, tenant_id=chain_id)
        for record in records:
            assert await ledger_store.append(record) is True

        assert await ledger_store.get_by_id(records[1].id) == records[1]
        assert await ledger_store.list_chain(chain_id) == records
        tail = await ledger_store.tail(chain_id)
        assert tail is not None
        assert (tail.sequence, tail.hash) == (3, records[-1].hash)
        assert chain_id in await ledger_store.list_chain_ids()

    @pytest.mark.asyncio
    async def test_append_is_idempotent(
        self, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        record = RecordFactory.chain(1, chain_id=chain_id, tenant_id=chain_id)[0]

        assert await ledger_store.append(record) is True
        assert await ledger_store.append(record) is False

    @pytest.mark.asyncio
    async def test_fork_is_rejected(
        self, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        first, second = RecordFactory.chain(2, chain_id=chain_id, tenant_id=chain_id)
        await ledger_store.append(first)
        fork = second.model_copy(update={"id": f"{second.id}-fork", "sequence": 1})

        with pytest.raises(ChainForkError):
            await ledger_store.append(fork)

    @pytest.mark.asyncio
    async def test_rows_cannot_be_modified(
        self, postgres_pool, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        record = RecordFactory.chain(1, chain_id=chain_id, tenant_id=chain_id)[0]
        await ledger_store.append(record)

        async with postgres_pool.acquire() as conn:
            with pytest.raises(asyncpg.RaiseError):
                await conn.execute(
                    "UPDATE audit_ledger SET tenant_id = 'x' WHERE id = $1", record.id
                )
            with pytest.raises(asyncpg.RaiseError):
                await conn.execute("DELETE FROM audit_ledger WHERE id = $1", record.id)

    @pytest.mark.asyncio
    async def test_gaps(self, ledger_store: PostgresLedgerStore, chain_id: str) -> None:
        records = RecordFactory.chain(6, chain_id=chain_id, tenant_id=chain_id)
        for index in (1, 4, 5):
            await ledger_store.append(records[index])

        gaps = await ledger_store.gaps(chain_id)

        assert [(g.sequence, g.missing) for g in gaps] == [(1, 1), (3, 2)]
        assert (gaps[0].previous_hash, gaps[0].next_previous_hash) == ("", records[0].hash)
        assert gaps[1].previous_hash == records[1].hash
        assert gaps[1].next_previous_hash == records[3].hash


class TestSubscriberOnPostgres:
    """End-to-end recording into PostgreSQL."""

    @pytest.mark.asyncio
    async def test_concurrent_events_and_restart(
        self, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        bus = InMemoryEventBus()
        config = AuditConfig(chain_scope="tenant")

        first = AuditSubscriber(bus, ledger_store, config=config)
        await first.start()
        events = [EventFactory.create(tenant_id=chain_id) for _ in range(20)]
        await asyncio.gather(*(bus.publish(e) for e in events))
        await bus.publish(events[0])
        await first.stop()

        second = AuditSubscriber(bus, ledger_store, config=config)
        await second.start()
        await bus.publish(EventFactory.create(tenant_id=chain_id))
        await second.stop()

        records = await ledger_store.list_chain(chain_id)
        assert len(records) == 21
        result = await verify_ledger(ledger_store, chain_id)
        assert result.valid, result.reason

    @pytest.mark.asyncio
    async def test_payloads_postgres_would_reject_are_stored(
        self, ledger_store: PostgresLedgerStore, chain_id: str
    ) -> None:
        """NaN and NUL characters must not make an event unauditable."""
        subscriber = AuditSubscriber(
            InMemoryEventBus(), ledger_store, config=AuditConfig(chain_scope="tenant")
        )
        await subscriber.start()

        nan = await subscriber.record(
            EventFactory.create(tenant_id=chain_id, data={"score": float("nan")})
        )
        nul = await subscriber.record(
            EventFactory.create(tenant_id=chain_id, data={"note": "a\x00b"})
        )
        await subscriber.stop()

        assert nan is not None and nan.metadata == "{}"
        assert nul is not None and nul.metadata == '{"note":"ab"}'
        assert (await verify_ledger(ledger_store, chain_id)).valid
