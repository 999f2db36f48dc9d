"""Audit ledger errors."""

from datalens.db.errors import ConflictError


class AuditError(Exception):
    """Base exception for audit ledger errors."""


class ChainNotStartedError(AuditError):
    """A record was submitted before the chain engine recovered its cursors."""


class AuditWriteError(AuditError):
    """An audit record could not be made durable.

    Raised from the event handler so the bus redelivers the event.
    """

    def __init__(self, message: str, event_id: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id
        self.cause = cause


class IntegrityViolationError(AuditError):
    """Verification found a record whose linkage or hash does not replay."""

    def __init__(self, message: str, chain_id: str, broken_at: int) -> None:
        super().__init__(message)
        self.chain_id = chain_id
        self.broken_at = broken_at


class ChainForkError(ConflictError):
    """Another record of the chain already claims this previous_hash or sequence."""
