"""Store error hierarchy.

Store implementations wrap backend-specific failures in these types so that
callers can tell retryable problems from conflicts.
"""


class StoreError(Exception):
    """Base exception for all store errors."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConnectionError(StoreError):
    """Backend unreachable, timed out or failed mid-operation. Retryable."""


class NotFoundError(StoreError):
    """A specific entity lookup failed."""


class ConflictError(StoreError):
    """A uniqueness constraint rejected the write."""


class ValidationError(StoreError):
    """Data read from or written to the backend is malformed."""
