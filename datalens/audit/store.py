"""LedgerStore abstract interface."""

from abc import ABC, abstractmethod

from datalens.audit.models import AuditRecord, ChainGap, ChainTail


class LedgerStore(ABC):
    """Durable, append-only sink for audit records.

    There is deliberately no update or delete operation. Implementations must
    reject a record whose ``previous_hash`` or ``sequence`` is already claimed
    by another record of the same chain by raising ``ChainForkError``, and
    wrap backend failures in ``datalens.db.errors.ConnectionError``.
    """

    @abstractmethod
    async def append(self, record: AuditRecord) -> bool:
        """Store a record.

        Idempotent by record id: if a record with the same id exists the
        call is a successful no-op.

        Returns:
            True if the record was stored, False if it already existed
        """
        pass

    @abstractmethod
    async def tail(self, chain_id: str) -> ChainTail | None:
        """Linkage of the highest-sequence record of a chain, None if empty."""
        pass

    @abstractmethod
    async def get_by_id(self, record_id: str) -> AuditRecord | None:
        """Get a record by id."""
        pass

    @abstractmethod
    async def list_chain(
        self,
        chain_id: str,
        *,
        after_sequence: int = 0,
        limit: int = 1000,
    ) -> list[AuditRecord]:
        """List records of a chain in sequence order, starting after ``after_sequence``."""
        pass

    @abstractmethod
    async def list_chain_ids(self) -> list[str]:
        """List the ids of every chain with at least one record."""
        pass

    @abstractmethod
    async def gaps(self, chain_id: str) -> list[ChainGap]:
        """List runs of missing sequences below the chain's tail, in order.

        A gap exists when a record failed to persist after a later record of
        the same chain was already written.
        """
        pass
