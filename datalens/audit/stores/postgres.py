"""PostgreSQL implementation of LedgerStore.

Uses asyncpg through the shared PostgresPool. The ``audit_ledger`` table is
created by migration 001; its unique indexes on ``(chain_id, previous_hash)``
and ``(chain_id, sequence)`` make appends a compare-and-append: a writer
holding a stale cursor is rejected instead of forking the chain.
"""

import json
from typing import Any
from uuid import UUID

import asyncpg

from datalens.audit.errors import ChainForkError
from datalens.audit.hashing import GENESIS_HASH
from datalens.audit.models import ActorKind, AuditRecord, ChainGap, ChainTail
from datalens.audit.store import LedgerStore
from datalens.db.errors import ConnectionError, StoreError, ValidationError
from datalens.db.pool import PostgresPool
from datalens.observability.logging import get_logger

logger = get_logger(__name__)

_COLUMNS = """
    id, chain_id, sequence, tenant_id, event_type,
    actor_id, actor_kind, resource_type, resource_id, action,
    metadata, previous_hash, hash, created_at
"""

# The statement may succeed on another attempt
_TRANSIENT_ERRORS = (
    OSError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
    asyncpg.InsufficientResourcesError,
    asyncpg.OperatorInterventionError,
    asyncpg.TransactionRollbackError,
)

# The same statement will be rejected again
_REJECTED_ERRORS = (
    asyncpg.DataError,
    asyncpg.IntegrityConstraintViolationError,
    asyncpg.PLPGSQLError,
)


def _wrap(error: Exception, message: str) -> StoreError:
    """Map an asyncpg failure onto the store error hierarchy."""
    if isinstance(error, _TRANSIENT_ERRORS):
        return ConnectionError(f"{message}: {error}", cause=error)
    if isinstance(error, _REJECTED_ERRORS):
        return ValidationError(f"{message}: {error}", cause=error)
    return StoreError(f"{message}: {error}", cause=error)


class PostgresLedgerStore(LedgerStore):
    """PostgreSQL LedgerStore backed by the ``audit_ledger`` table."""

    def __init__(self, pool: PostgresPool) -> None:
        self._pool = pool

    async def append(self, record: AuditRecord) -> bool:
        try:
            async with self._pool.acquire() as conn:
                status = await conn.execute(
                    f"""
                    INSERT INTO audit_ledger ({_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                            $11::jsonb, $12, $13, $14)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    record.id,
                    record.chain_id,
                    record.sequence,
                    record.tenant_id,
                    record.event_type,
                    record.actor_id,
                    record.actor_kind.value,
                    record.resource_type,
                    record.resource_id,
                    record.action,
                    record.metadata,
                    record.previous_hash,
                    record.hash,
                    record.created_at,
                )
        except asyncpg.UniqueViolationError as e:
            logger.warning(
                "postgres_ledger_fork_rejected",
                record_id=record.id,
                chain_id=record.chain_id,
                sequence=record.sequence,
                constraint=e.constraint_name,
            )
            raise ChainForkError(
                f"Chain {record.chain_id} rejected record {record.id} at sequence "
                f"{record.sequence}",
                cause=e,
            ) from e
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_append_error", record_id=record.id, error=str(e))
            raise _wrap(e, "Failed to append audit record") from e

        # asyncpg returns the command tag, "INSERT 0 1" or "INSERT 0 0"
        inserted = status.rsplit(" ", 1)[-1] == "1"
        if inserted:
            logger.debug(
                "audit_record_persisted",
                record_id=record.id,
                chain_id=record.chain_id,
                sequence=record.sequence,
            )
        return inserted

    async def tail(self, chain_id: str) -> ChainTail | None:
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT sequence, hash
                    FROM audit_ledger
                    WHERE chain_id = $1
                    ORDER BY sequence DESC
                    LIMIT 1
                    """,
                    chain_id,
                )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_tail_error", chain_id=chain_id, error=str(e))
            raise _wrap(e, "Failed to read ledger tail") from e

        if row is None:
            return None
        return ChainTail(chain_id=chain_id, sequence=row["sequence"], hash=row["hash"])

    async def get_by_id(self, record_id: str) -> AuditRecord | None:
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM audit_ledger WHERE id = $1",  # noqa: S608
                    record_id,
                )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_get_error", record_id=record_id, error=str(e))
            raise _wrap(e, "Failed to get audit record") from e

        return self._row_to_record(row) if row else None

    async def list_chain(
        self,
        chain_id: str,
        *,
        after_sequence: int = 0,
        limit: int = 1000,
    ) -> list[AuditRecord]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS}
                    FROM audit_ledger
                    WHERE chain_id = $1 AND sequence > $2
                    ORDER BY sequence ASC
                    LIMIT $3
                    """,  # noqa: S608
                    chain_id,
                    after_sequence,
                    limit,
                )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_list_error", chain_id=chain_id, error=str(e))
            raise _wrap(e, "Failed to list audit records") from e

        return [self._row_to_record(row) for row in rows]

    async def list_chain_ids(self) -> list[str]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT DISTINCT chain_id FROM audit_ledger ORDER BY chain_id"
                )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_chain_ids_error", error=str(e))
            raise _wrap(e, "Failed to list chains") from e

        return [row["chain_id"] for row in rows]

    async def gaps(self, chain_id: str) -> list[ChainGap]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT sequence, previous_hash, before_sequence, before_hash
                    FROM (
                        SELECT sequence, previous_hash,
                               LAG(sequence) OVER (ORDER BY sequence) AS before_sequence,
                               LAG(hash) OVER (ORDER BY sequence) AS before_hash
                        FROM audit_ledger
                        WHERE chain_id = $1
                    ) linked
                    WHERE sequence - COALESCE(before_sequence, 0) > 1
                    ORDER BY sequence
                    """,
                    chain_id,
                )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_ledger_gaps_error", chain_id=chain_id, error=str(e))
            raise _wrap(e, "Failed to find chain gaps") from e

        gaps = []
        for row in rows:
            first = (row["before_sequence"] or 0) + 1
            gaps.append(
                ChainGap(
                    chain_id=chain_id,
                    sequence=first,
                    missing=row["sequence"] - first,
                    previous_hash=row["before_hash"] or GENESIS_HASH,
                    next_previous_hash=row["previous_hash"],
                )
            )
        return gaps

    def _row_to_record(self, row: Any) -> AuditRecord:
        try:
            return AuditRecord(
                id=row["id"],
                chain_id=row["chain_id"],
                sequence=row["sequence"],
                tenant_id=row["tenant_id"],
                event_type=row["event_type"],
                actor_id=_as_uuid(row["actor_id"]),
                actor_kind=ActorKind(row["actor_kind"]),
                resource_type=row["resource_type"],
                resource_id=_as_uuid(row["resource_id"]),
                action=row["action"],
                metadata=_canonical_json(row["metadata"]),
                previous_hash=row["previous_hash"],
                hash=row["hash"],
                created_at=row["created_at"],
            )
        except ValueError as e:
            raise ValidationError(f"Malformed audit_ledger row {row['id']}: {e}", cause=e) from e


def _as_uuid(value: Any) -> UUID | None:
    return UUID(str(value)) if value is not None else None


def _canonical_json(value: str | None) -> str:
    # JSONB re-renders text on read; restore the compact sorted form written
    if not value:
        return "{}"
    return json.dumps(json.loads(value), sort_keys=True, separators=(",", ":"))
