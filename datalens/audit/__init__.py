"""Tamper-evident audit ledger.

Every domain event on the bus becomes one immutable record in a SHA-256
hash chain: Event -> derive_draft -> ChainEngine.link -> LedgerStore.append.
``verify`` / ``verify_ledger`` replay a chain to prove it was not altered.
"""

from datalens.audit.chain import GLOBAL_CHAIN_ID, ChainCursor, ChainEngine
from datalens.audit.deriver import derive_draft, split_event_type
from datalens.audit.errors import (
    AuditError,
    AuditWriteError,
    ChainForkError,
    ChainNotStartedError,
    IntegrityViolationError,
)
from datalens.audit.hashing import (
    GENESIS_HASH,
    HASH_FORMAT_VERSION,
    canonical_hash_input,
    compute_hash,
)
from datalens.audit.models import (
    ActorKind,
    AuditDraft,
    AuditRecord,
    ChainGap,
    ChainTail,
    EventPayload,
)
from datalens.audit.store import LedgerStore
from datalens.audit.subscriber import AuditSubscriber
from datalens.audit.verifier import ChainVerifier, VerificationResult, verify, verify_ledger

__all__ = [
    "ActorKind",
    "AuditDraft",
    "AuditError",
    "AuditRecord",
    "AuditSubscriber",
    "AuditWriteError",
    "ChainCursor",
    "ChainEngine",
    "ChainForkError",
    "ChainNotStartedError",
    "ChainGap",
    "ChainTail",
    "ChainVerifier",
    "EventPayload",
    "GENESIS_HASH",
    "GLOBAL_CHAIN_ID",
    "HASH_FORMAT_VERSION",
    "IntegrityViolationError",
    "LedgerStore",
    "VerificationResult",
    "canonical_hash_input",
    "compute_hash",
    "derive_draft",
    "split_event_type",
    "verify",
    "verify_ledger",
]
