"""Ledger verification.

Replays records in persisted (sequence) order and recomputes every hash from
the record's own fields and its predecessor's hash. Verification only
detects tampering; it never repairs a chain.
"""

from collections.abc import Iterable

from pydantic import BaseModel, Field

from datalens.audit.errors import IntegrityViolationError
from datalens.audit.hashing import GENESIS_HASH, compute_hash
from datalens.audit.models import AuditRecord
from datalens.audit.store import LedgerStore
from datalens.observability.logging import get_logger
from datalens.observability.metrics import AUDIT_INTEGRITY_VIOLATIONS

logger = get_logger(__name__)


class VerificationResult(BaseModel):
    """Outcome of replaying a sequence of records."""

    valid: bool
    broken_at: int | None = Field(
        default=None, description="Index of the first record that does not replay"
    )
    reason: str | None = None
    records_checked: int = 0
    chain_id: str | None = None

    def raise_for_invalid(self) -> None:
        """Raise IntegrityViolationError if the chain is broken."""
        if not self.valid:
            raise IntegrityViolationError(
                f"Audit chain {self.chain_id or '?'} broken at index "
                f"{self.broken_at}: {self.reason}",
                chain_id=self.chain_id or "",
                broken_at=self.broken_at if self.broken_at is not None else -1,
            )


class ChainVerifier:
    """Incremental verifier; feed records one at a time in persisted order."""

    def __init__(self, genesis_hash: str = GENESIS_HASH) -> None:
        self._expected_previous = genesis_hash
        self._last_sequence: int | None = None
        self.checked = 0
        self.broken_at: int | None = None
        self.reason: str | None = None

    @property
    def valid(self) -> bool:
        return self.broken_at is None

    def feed(self, record: AuditRecord) -> bool:
        """Check the next record; returns False once the chain is broken."""
        if not self.valid:
            return False

        index = self.checked
        reason = self._check(record)
        if reason is not None:
            self.broken_at = index
            self.reason = reason
            return False

        self._expected_previous = record.hash
        self._last_sequence = record.sequence
        self.checked += 1
        return True

    def _check(self, record: AuditRecord) -> str | None:
        if self._last_sequence is not None and record.sequence != self._last_sequence + 1:
            return (
                f"sequence {record.sequence} does not follow {self._last_sequence}"
            )
        if record.previous_hash != self._expected_previous:
            return f"record {record.id} previous_hash does not match the preceding hash"
        if compute_hash(record, self._expected_previous) != record.hash:
            return f"record {record.id} hash does not match its contents"
        return None

    def result(self, chain_id: str | None = None) -> VerificationResult:
        return VerificationResult(
            valid=self.valid,
            broken_at=self.broken_at,
            reason=self.reason,
            records_checked=self.checked,
            chain_id=chain_id,
        )


def verify(
    records: Iterable[AuditRecord],
    genesis_hash: str = GENESIS_HASH,
) -> VerificationResult:
    """Verify a batch of records in persisted order.

    Pure: needs neither a store nor a running chain engine.

    Args:
        records: Records in persisted order
        genesis_hash: previous_hash expected of the first record

    Returns:
        VerificationResult with ``broken_at`` set to the index of the first
        mismatch, or ``valid=True``
    """
    verifier = ChainVerifier(genesis_hash)
    for record in records:
        if not verifier.feed(record):
            break
    return verifier.result()


async def verify_ledger(
    store: LedgerStore,
    chain_id: str,
    *,
    page_size: int = 1000,
) -> VerificationResult:
    """Verify a whole chain straight from a store, page by page.

    A chain must start at sequence 1 from the genesis hash; a missing head is
    reported as a break at index 0.
    """
    verifier = ChainVerifier(GENESIS_HASH)
    after_sequence = 0

    while True:
        page = await store.list_chain(chain_id, after_sequence=after_sequence, limit=page_size)
        if not page:
            break
        if after_sequence == 0 and page[0].sequence != 1:
            verifier.broken_at = 0
            verifier.reason = f"chain starts at sequence {page[0].sequence}, not 1"
            break
        if not all(verifier.feed(record) for record in page):
            break
        after_sequence = page[-1].sequence

    result = verifier.result(chain_id)
    if result.valid:
        logger.info(
            "audit_chain_verified",
            chain_id=chain_id,
            records_checked=result.records_checked,
        )
    else:
        AUDIT_INTEGRITY_VIOLATIONS.labels(chain_id=chain_id).inc()
        logger.error(
            "audit_chain_integrity_violation",
            chain_id=chain_id,
            broken_at=result.broken_at,
            reason=result.reason,
            records_checked=result.records_checked,
        )
    return result
