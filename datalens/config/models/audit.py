"""Audit ledger configuration models."""

from typing import Literal

from pydantic import BaseModel, Field

ChainScope = Literal["global", "tenant"]


class AppendRetryConfig(BaseModel):
    """Retry policy for durable ledger writes."""

    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts per append before the event is handed back to the bus",
    )
    min_wait: float = Field(
        default=0.05,
        ge=0.0,
        description="Initial backoff between attempts (seconds)",
    )
    max_wait: float = Field(
        default=2.0,
        ge=0.0,
        description="Upper bound for backoff between attempts (seconds)",
    )
    multiplier: float = Field(
        default=0.1,
        gt=0.0,
        description="Exponential backoff multiplier",
    )


class AuditConfig(BaseModel):
    """Audit ledger behaviour."""

    chain_scope: ChainScope = Field(
        default="global",
        description="One chain for every tenant ('global') or one chain per tenant ('tenant')",
    )
    subscription_pattern: str = Field(
        default="*",
        description="Event type pattern the audit subscriber listens to",
    )
    append_retry: AppendRetryConfig = Field(
        default_factory=AppendRetryConfig,
        description="Retry policy for ledger appends",
    )
    max_fork_retries: int = Field(
        default=3,
        ge=0,
        description="Relink attempts after another writer claimed our previous_hash",
    )
    shutdown_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="How long stop() waits for in-flight appends (seconds)",
    )
    verify_page_size: int = Field(
        default=1000,
        gt=0,
        description="Records fetched per page while verifying a chain",
    )
