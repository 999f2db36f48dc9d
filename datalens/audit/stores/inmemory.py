"""In-memory implementation of LedgerStore."""

import asyncio

from datalens.audit.errors import ChainForkError
from datalens.audit.hashing import GENESIS_HASH
from datalens.audit.models import AuditRecord, ChainGap, ChainTail
from datalens.audit.store import LedgerStore


class InMemoryLedgerStore(LedgerStore):
    """In-memory LedgerStore for testing and development.

    Keeps every record for the life of the process; not durable.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._records: dict[str, AuditRecord] = {}
        # chain_id -> sequence -> record
        self._chains: dict[str, dict[int, AuditRecord]] = {}
        # chain_id -> previous_hash values already claimed
        self._claimed: dict[str, set[str]] = {}

    async def append(self, record: AuditRecord) -> bool:
        async with self._lock:
            if record.id in self._records:
                return False

            chain = self._chains.setdefault(record.chain_id, {})
            claimed = self._claimed.setdefault(record.chain_id, set())
            if record.sequence in chain or record.previous_hash in claimed:
                raise ChainForkError(
                    f"Chain {record.chain_id} already has a record at sequence "
                    f"{record.sequence} or after hash {record.previous_hash!r}"
                )

            self._records[record.id] = record
            chain[record.sequence] = record
            claimed.add(record.previous_hash)
            return True

    async def tail(self, chain_id: str) -> ChainTail | None:
        chain = self._chains.get(chain_id)
        if not chain:
            return None
        last = chain[max(chain)]
        return ChainTail(chain_id=chain_id, sequence=last.sequence, hash=last.hash)

    async def get_by_id(self, record_id: str) -> AuditRecord | None:
        return self._records.get(record_id)

    async def list_chain(
        self,
        chain_id: str,
        *,
        after_sequence: int = 0,
        limit: int = 1000,
    ) -> list[AuditRecord]:
        chain = self._chains.get(chain_id, {})
        sequences = sorted(s for s in chain if s > after_sequence)
        return [chain[s] for s in sequences[:limit]]

    async def list_chain_ids(self) -> list[str]:
        return sorted(self._chains)

    async def gaps(self, chain_id: str) -> list[ChainGap]:
        chain = self._chains.get(chain_id, {})
        gaps: list[ChainGap] = []
        before_sequence, before_hash = 0, GENESIS_HASH
        for sequence in sorted(chain):
            record = chain[sequence]
            if sequence - before_sequence > 1:
                gaps.append(
                    ChainGap(
                        chain_id=chain_id,
                        sequence=before_sequence + 1,
                        missing=sequence - before_sequence - 1,
                        previous_hash=before_hash,
                        next_previous_hash=record.previous_hash,
                    )
                )
            before_sequence, before_hash = sequence, record.hash
        return gaps

    def __len__(self) -> int:
        return len(self._records)
