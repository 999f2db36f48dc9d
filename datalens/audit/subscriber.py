"""Audit subscriber: writes every domain event to the audit ledger.

Pipeline per delivery: idempotency check, derive, link, durable append.
Persistence errors propagate to the bus so it redelivers; derivation
problems never do.
"""

import asyncio
import time

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from datalens.audit.chain import ChainEngine
from datalens.audit.deriver import derive_draft
from datalens.audit.errors import AuditWriteError, ChainForkError
from datalens.audit.models import AuditRecord
from datalens.audit.store import LedgerStore
from datalens.config.models.audit import AuditConfig
from datalens.db.errors import ConnectionError, StoreError
from datalens.eventbus.bus import EventBus, Subscription
from datalens.eventbus.models import Event
from datalens.observability.logging import get_logger
from datalens.observability.metrics import (
    AUDIT_APPEND_FAILURES,
    AUDIT_APPEND_LATENCY,
    AUDIT_DUPLICATE_DELIVERIES,
    AUDIT_FORK_CONFLICTS,
    AUDIT_RECORDS_APPENDED,
)

logger = get_logger(__name__)


class AuditSubscriber:
    """Consumes domain events and appends them to the hash-linked ledger.

    The engine is started (cursors recovered from the store) before the
    subscription is registered, so the first event always links onto the
    stored tail.

    A record that fails with a transient error after a later record was
    already linked is handed to a background writer that keeps retrying it
    until it lands or the subscriber stops. Redeliveries of that event wait
    for the background write instead of linking a second record.
    """

    def __init__(
        self,
        bus: EventBus,
        store: LedgerStore,
        engine: ChainEngine | None = None,
        config: AuditConfig | None = None,
    ) -> None:
        self._bus = bus
        self._store = store
        self._config = config or AuditConfig()
        self._engine = engine or ChainEngine(store, scope=self._config.chain_scope)
        self._subscription: Subscription | None = None
        # event id -> task writing it; concurrent deliveries of one id share it
        self._inflight: dict[str, asyncio.Task[AuditRecord | None]] = {}
        # event id -> background write of a record behind the chain head
        self._backfills: dict[str, asyncio.Task[AuditRecord | None]] = {}

    @property
    def engine(self) -> ChainEngine:
        return self._engine

    async def start(self) -> None:
        """Recover the chain, then subscribe to the bus."""
        if self._subscription is not None:
            return
        await self._engine.start()
        self._subscription = await self._bus.subscribe(
            self._config.subscription_pattern, self.handle_event
        )
        logger.info(
            "audit_subscriber_started",
            pattern=self._config.subscription_pattern,
            chain_scope=self._engine.scope,
        )

    async def stop(self) -> None:
        """Unsubscribe, let in-flight and background writes finish, stop the engine.

        A background write cancelled here leaves a gap in the stored chain;
        the engine fills it when the event is redelivered after a restart.
        """
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

        await self._drain(self._inflight, "audit_writes_cancelled_on_shutdown")
        await self._drain(self._backfills, "audit_chain_gap_left")

        await self._engine.stop()
        logger.info("audit_subscriber_stopped")

    async def _drain(
        self, tasks: dict[str, asyncio.Task[AuditRecord | None]], event: str
    ) -> None:
        running = list(tasks.values())
        if not running:
            return
        _, unfinished = await asyncio.wait(running, timeout=self._config.shutdown_timeout)
        for task in unfinished:
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)
            logger.warning(event, count=len(unfinished))

    async def handle_event(self, event: Event) -> None:
        """Bus handler. Raises AuditWriteError when the record isn't durable."""
        await self.record(event)

    async def record(self, event: Event) -> AuditRecord | None:
        """Write ``event`` to the ledger.

        Returns:
            The stored record, or None if the event was already audited
        """
        backfill = self._backfills.get(event.id)
        if backfill is not None:
            logger.debug("audit_delivery_joined_backfill", event_id=event.id)
            return await asyncio.shield(backfill)

        task = self._inflight.get(event.id)
        if task is None:
            task = asyncio.create_task(self._record(event), name=f"audit-{event.id}")
            self._inflight[event.id] = task
            task.add_done_callback(lambda _: self._inflight.pop(event.id, None))
        else:
            AUDIT_DUPLICATE_DELIVERIES.inc()
            logger.debug("audit_duplicate_delivery_joined", event_id=event.id)
        return await asyncio.shield(task)

    async def _record(self, event: Event) -> AuditRecord | None:
        try:
            existing = await self._store.get_by_id(event.id)
        except StoreError as e:
            raise AuditWriteError(
                f"Could not check ledger for event {event.id}: {e}", event_id=event.id, cause=e
            ) from e
        if existing is not None:
            AUDIT_DUPLICATE_DELIVERIES.inc()
            logger.debug("audit_duplicate_delivery", event_id=event.id)
            return None

        draft = derive_draft(event)
        last_error: StoreError | None = None

        for attempt in range(self._config.max_fork_retries + 1):
            try:
                record = await self._engine.link(draft)
            except StoreError as e:
                # Lazy cursor recovery for a chain first seen now
                AUDIT_APPEND_FAILURES.labels(error_type=type(e).__name__).inc()
                raise AuditWriteError(
                    f"Could not link audit record {event.id}: {e}", event_id=event.id, cause=e
                ) from e

            started = time.perf_counter()
            try:
                appended = await self._append(record)
            except ChainForkError as e:
                AUDIT_FORK_CONFLICTS.inc()
                logger.warning(
                    "audit_chain_fork_rejected",
                    event_id=event.id,
                    chain_id=record.chain_id,
                    sequence=record.sequence,
                    attempt=attempt + 1,
                )
                await self._engine.resync(record)
                last_error = e
                continue
            except StoreError as e:
                await self._fail(record, e)
                raise AuditWriteError(
                    f"Could not persist audit record {record.id}: {e}",
                    event_id=event.id,
                    cause=e,
                ) from e
            except asyncio.CancelledError:
                self._engine.abandon_nowait(record)
                raise

            AUDIT_APPEND_LATENCY.observe(time.perf_counter() - started)
            await self._engine.confirm(record)
            if not appended:
                # Another delivery of this id won the race to the store
                AUDIT_DUPLICATE_DELIVERIES.inc()
                return None

            AUDIT_RECORDS_APPENDED.labels(
                chain_scope=self._engine.scope, resource_type=record.resource_type
            ).inc()
            logger.debug(
                "audit_record_written",
                event_id=event.id,
                event_type=record.event_type,
                chain_id=record.chain_id,
                sequence=record.sequence,
            )
            return record

        AUDIT_APPEND_FAILURES.labels(error_type="ChainForkError").inc()
        raise AuditWriteError(
            f"Audit record {event.id} kept colliding with another writer",
            event_id=event.id,
            cause=last_error,
        )

    async def _append(self, record: AuditRecord, *, forever: bool = False) -> bool:
        policy = self._config.append_retry
        appended = False
        async for attempt in AsyncRetrying(
            stop=stop_never if forever else stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.multiplier, min=policy.min_wait, max=policy.max_wait
            ),
            retry=retry_if_exception_type(ConnectionError),
            reraise=True,
        ):
            with attempt:
                appended = await self._store.append(record)
        return appended

    async def _fail(self, record: AuditRecord, error: StoreError) -> None:
        AUDIT_APPEND_FAILURES.labels(error_type=type(error).__name__).inc()
        rolled_back = await self._engine.abandon(record)
        backfill = not rolled_back and isinstance(error, ConnectionError)
        logger.error(
            "audit_record_write_failed",
            event_id=record.id,
            event_type=record.event_type,
            chain_id=record.chain_id,
            sequence=record.sequence,
            rolled_back=rolled_back,
            backfill=backfill,
            error=str(error),
        )
        if backfill:
            self._start_backfill(record)

    def _start_backfill(self, record: AuditRecord) -> None:
        if record.id in self._backfills:
            return
        task = asyncio.create_task(self._backfill(record), name=f"audit-backfill-{record.id}")
        self._backfills[record.id] = task
        task.add_done_callback(lambda done: self._forget_backfill(record.id, done))

    def _forget_backfill(self, record_id: str, task: asyncio.Task[AuditRecord | None]) -> None:
        self._backfills.pop(record_id, None)
        if not task.cancelled():
            # Retrieve the outcome; joined redeliveries get it re-raised
            task.exception()

    async def _backfill(self, record: AuditRecord) -> AuditRecord | None:
        """Keep writing a record behind the chain head until it lands."""
        try:
            appended = await self._append(record, forever=True)
        except StoreError as e:
            AUDIT_APPEND_FAILURES.labels(error_type=type(e).__name__).inc()
            logger.error(
                "audit_backfill_failed",
                event_id=record.id,
                chain_id=record.chain_id,
                sequence=record.sequence,
                error=str(e),
            )
            raise AuditWriteError(
                f"Could not backfill audit record {record.id}: {e}",
                event_id=record.id,
                cause=e,
            ) from e

        await self._engine.confirm(record)
        if not appended:
            return None

        AUDIT_RECORDS_APPENDED.labels(
            chain_scope=self._engine.scope, resource_type=record.resource_type
        ).inc()
        logger.info(
            "audit_record_backfilled",
            event_id=record.id,
            chain_id=record.chain_id,
            sequence=record.sequence,
        )
        return record
