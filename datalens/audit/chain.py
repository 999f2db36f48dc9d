"""Chain engine: assigns hash linkage to audit drafts.

One asyncio task owns every chain cursor and consumes requests from an
internal queue, so exactly one writer ever reads or moves a cursor. Callers
submit a request and await its future; the durable write happens in the
caller, outside the owning task, once ``(sequence, previous_hash, hash)`` is
fixed.

Ordering: records are chained in the order the owning task dequeues them.
That is *a* total order over concurrently delivered events, not their
wall-clock or causal order. Consumers of the ledger must not read causality
into sequence numbers.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from datalens.audit.errors import ChainNotStartedError
from datalens.audit.hashing import GENESIS_HASH, compute_hash
from datalens.audit.models import AuditDraft, AuditRecord, ChainGap
from datalens.audit.store import LedgerStore
from datalens.config.models.audit import ChainScope
from datalens.observability.logging import get_logger
from datalens.observability.metrics import AUDIT_CHAIN_GAPS, AUDIT_CHAIN_SEQUENCE

logger = get_logger(__name__)

GLOBAL_CHAIN_ID = "global"


@dataclass(frozen=True)
class ChainCursor:
    """Linkage of the most recently linked record of one chain."""

    chain_id: str
    sequence: int = 0
    hash: str = GENESIS_HASH

    @classmethod
    async def recover_from(cls, store: LedgerStore, chain_id: str) -> "ChainCursor":
        """Seed a cursor from the store's tail; genesis when the chain is empty."""
        tail = await store.tail(chain_id)
        if tail is None:
            return cls(chain_id=chain_id)
        return cls(chain_id=chain_id, sequence=tail.sequence, hash=tail.hash)


@dataclass
class _Request:
    future: asyncio.Future[Any] = field(init=False)

    def __post_init__(self) -> None:
        self.future = asyncio.get_running_loop().create_future()


@dataclass
class _Link(_Request):
    draft: AuditDraft
    chain_id: str


@dataclass
class _Confirm(_Request):
    record: AuditRecord


@dataclass
class _Abandon(_Request):
    record: AuditRecord


@dataclass
class _Resync(_Request):
    record: AuditRecord


class ChainEngine:
    """Single-owner actor holding the chain cursors.

    Usage:
        engine = ChainEngine(store, scope="global")
        await engine.start()          # recovers cursors from the store
        record = await engine.link(draft)
        ...
        await engine.confirm(record)  # after the record is durable
        await engine.stop()

    Records linked but not yet confirmed stay pending; linking a pending id
    again returns the same record. A record that failed to persist after a
    later record was linked leaves a gap. Gaps are also read from the store
    on recovery, so they survive a restart. A draft whose hash closes a
    single-record gap is linked into it instead of onto the head, which lets
    the redelivered event repair the chain.
    """

    def __init__(self, store: LedgerStore, *, scope: ChainScope = "global") -> None:
        self._store = store
        self._scope = scope
        self._queue: asyncio.Queue[_Request | None] = asyncio.Queue()
        self._cursors: dict[str, ChainCursor] = {}
        self._pending: dict[str, AuditRecord] = {}
        # chain_id -> first missing sequence -> gap
        self._gaps: dict[str, dict[int, ChainGap]] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def scope(self) -> ChainScope:
        return self._scope

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def chain_id_for(self, tenant_id: str) -> str:
        """Chain a tenant's records belong to under the configured scope."""
        return tenant_id if self._scope == "tenant" else GLOBAL_CHAIN_ID

    def head(self, chain_id: str) -> ChainCursor | None:
        """Current cursor of a chain, None if the engine has not seen it."""
        return self._cursors.get(chain_id)

    def pending_count(self) -> int:
        return len(self._pending)

    def gaps(self, chain_id: str) -> list[ChainGap]:
        """Known unfilled gaps of a chain, in sequence order."""
        known = self._gaps.get(chain_id, {})
        return [known[sequence] for sequence in sorted(known)]

    async def start(self) -> None:
        """Recover cursors from the store and start the owning task.

        Must complete before the first ``link``; subscribing to events before
        this would start a new chain disconnected from the stored one.
        """
        if self.is_running:
            return

        chain_ids = await self._store.list_chain_ids()
        if self._scope == "global":
            chain_ids = [GLOBAL_CHAIN_ID]
        for chain_id in chain_ids:
            cursor = await self._recover(chain_id)
            logger.info(
                "audit_chain_recovered",
                chain_id=chain_id,
                sequence=cursor.sequence,
                tail_hash=cursor.hash,
                gaps=len(self._gaps[chain_id]),
            )

        self._task = asyncio.create_task(self._run(), name="audit-chain-engine")

    async def stop(self) -> None:
        """Process already queued requests, then stop the owning task."""
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(None)
        await self._task
        self._task = None
        if self._pending:
            logger.warning("audit_chain_stopped_with_pending", pending=len(self._pending))

    async def link(self, draft: AuditDraft) -> AuditRecord:
        """Assign ``draft`` its place in the chain."""
        return await self._submit(_Link(draft=draft, chain_id=self.chain_id_for(draft.tenant_id)))

    async def confirm(self, record: AuditRecord) -> None:
        """Mark a record as durably stored, closing the gap it filled if any."""
        await self._submit(_Confirm(record=record))

    async def abandon(self, record: AuditRecord) -> bool:
        """Give up on a linked record whose write failed.

        If nothing was linked after it, the cursor moves back and the record
        is forgotten. Otherwise its slot becomes a gap that the redelivered
        event, or a later write of the same record, fills.

        Returns:
            True if the cursor was rolled back
        """
        result: bool = await self._submit(_Abandon(record=record))
        return result

    def abandon_nowait(self, record: AuditRecord) -> None:
        """Queue an ``abandon`` without waiting, for cancellation paths."""
        if self.is_running:
            self._queue.put_nowait(_Abandon(record=record))

    async def resync(self, record: AuditRecord) -> ChainCursor:
        """Drop a record rejected as a fork and re-seed its chain from the store."""
        cursor: ChainCursor = await self._submit(_Resync(record=record))
        return cursor

    async def _submit(self, request: _Request) -> Any:
        if not self.is_running:
            raise ChainNotStartedError("Chain engine is not running; call start() first")
        await self._queue.put(request)
        return await request.future

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            if request is None:
                return
            if request.future.cancelled():
                continue
            try:
                result = await self._handle(request)
            except Exception as e:
                if not request.future.done():
                    request.future.set_exception(e)
                continue
            if not request.future.done():
                request.future.set_result(result)

    async def _handle(self, request: _Request) -> Any:
        if isinstance(request, _Link):
            return await self._link(request)
        if isinstance(request, _Confirm):
            self._confirm(request.record)
            return None
        if isinstance(request, _Abandon):
            return self._abandon(request.record)
        if isinstance(request, _Resync):
            return await self._resync(request.record)
        raise TypeError(f"Unknown chain request: {request!r}")

    async def _recover(self, chain_id: str) -> ChainCursor:
        cursor = await ChainCursor.recover_from(self._store, chain_id)
        gaps = await self._store.gaps(chain_id)
        self._cursors[chain_id] = cursor
        self._gaps[chain_id] = {gap.sequence: gap for gap in gaps}
        for gap in gaps:
            logger.warning(
                "audit_chain_gap_detected",
                chain_id=chain_id,
                sequence=gap.sequence,
                missing=gap.missing,
            )
        AUDIT_CHAIN_GAPS.labels(chain_id=chain_id).set(len(gaps))
        return cursor

    async def _cursor(self, chain_id: str) -> ChainCursor:
        cursor = self._cursors.get(chain_id)
        if cursor is None:
            # First record of a chain not seen at start(); one store read
            cursor = await self._recover(chain_id)
        return cursor

    async def _link(self, request: _Link) -> AuditRecord | None:
        draft = request.draft
        pending = self._pending.get(draft.id)
        if pending is not None:
            return pending

        cursor = await self._cursor(request.chain_id)
        if request.future.cancelled():
            # Nobody will write the record; don't advance the cursor
            return None

        record = self._fill_gap(draft, request.chain_id)
        if record is not None:
            self._pending[record.id] = record
            return record

        sequence = cursor.sequence + 1
        digest = compute_hash(draft, cursor.hash)
        record = AuditRecord(
            **draft.model_dump(),
            chain_id=request.chain_id,
            sequence=sequence,
            previous_hash=cursor.hash,
            hash=digest,
        )
        self._cursors[request.chain_id] = ChainCursor(
            chain_id=request.chain_id, sequence=sequence, hash=digest
        )
        self._pending[record.id] = record
        AUDIT_CHAIN_SEQUENCE.labels(chain_id=request.chain_id).set(sequence)
        return record

    def _fill_gap(self, draft: AuditDraft, chain_id: str) -> AuditRecord | None:
        gaps = self._gaps.get(chain_id)
        if not gaps:
            return None

        for sequence, gap in gaps.items():
            # Only a single missing record is pinned down by its neighbours
            if gap.missing != 1:
                continue
            digest = compute_hash(draft, gap.previous_hash)
            if digest != gap.next_previous_hash:
                continue

            del gaps[sequence]
            AUDIT_CHAIN_GAPS.labels(chain_id=chain_id).set(len(gaps))
            logger.info(
                "audit_chain_gap_claimed",
                record_id=draft.id,
                chain_id=chain_id,
                sequence=sequence,
            )
            return AuditRecord(
                **draft.model_dump(),
                chain_id=chain_id,
                sequence=sequence,
                previous_hash=gap.previous_hash,
                hash=digest,
            )
        return None

    def _confirm(self, record: AuditRecord) -> None:
        self._pending.pop(record.id, None)
        gaps = self._gaps.get(record.chain_id, {})
        gap = gaps.get(record.sequence)
        if gap is not None and gap.next_previous_hash == record.hash:
            del gaps[record.sequence]
            AUDIT_CHAIN_GAPS.labels(chain_id=record.chain_id).set(len(gaps))
            logger.info(
                "audit_chain_gap_filled",
                record_id=record.id,
                chain_id=record.chain_id,
                sequence=record.sequence,
            )

    def _abandon(self, record: AuditRecord) -> bool:
        if self._pending.get(record.id) != record:
            return False
        del self._pending[record.id]

        cursor = self._cursors.get(record.chain_id)
        if cursor is None or cursor.hash != record.hash:
            gaps = self._gaps.setdefault(record.chain_id, {})
            gaps[record.sequence] = ChainGap(
                chain_id=record.chain_id,
                sequence=record.sequence,
                missing=1,
                previous_hash=record.previous_hash,
                next_previous_hash=record.hash,
            )
            AUDIT_CHAIN_GAPS.labels(chain_id=record.chain_id).set(len(gaps))
            logger.warning(
                "audit_chain_gap_opened",
                record_id=record.id,
                chain_id=record.chain_id,
                sequence=record.sequence,
            )
            return False

        self._cursors[record.chain_id] = ChainCursor(
            chain_id=record.chain_id,
            sequence=record.sequence - 1,
            hash=record.previous_hash,
        )
        AUDIT_CHAIN_SEQUENCE.labels(chain_id=record.chain_id).set(record.sequence - 1)
        logger.info(
            "audit_chain_rolled_back",
            record_id=record.id,
            chain_id=record.chain_id,
            sequence=record.sequence - 1,
        )
        return True

    async def _resync(self, record: AuditRecord) -> ChainCursor:
        self._pending.pop(record.id, None)
        cursor = await self._recover(record.chain_id)
        logger.warning(
            "audit_chain_resynced",
            chain_id=record.chain_id,
            sequence=cursor.sequence,
            tail_hash=cursor.hash,
        )
        return cursor
