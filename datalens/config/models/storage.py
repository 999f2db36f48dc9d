"""Storage backend configuration models."""

from typing import Literal

from pydantic import BaseModel, Field

LedgerBackend = Literal["inmemory", "postgres"]


class LedgerStoreConfig(BaseModel):
    """Configuration for the audit ledger backend."""

    backend: LedgerBackend = Field(
        default="inmemory",
        description="Backend type",
    )
    connection_url: str | None = Field(
        default=None,
        description="Connection URL (falls back to DATALENS_DATABASE_URL / DATABASE_URL)",
    )
    min_pool_size: int = Field(
        default=2,
        gt=0,
        description="Minimum connections to keep open",
    )
    max_pool_size: int = Field(
        default=10,
        gt=0,
        description="Maximum connections in pool",
    )
    max_inactive_connection_lifetime: float = Field(
        default=300.0,
        gt=0,
        description="Close connections idle longer than this (seconds)",
    )
    command_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Default timeout for queries (seconds)",
    )


class StorageConfig(BaseModel):
    """Configuration for all storage backends."""

    ledger: LedgerStoreConfig = Field(
        default_factory=LedgerStoreConfig,
        description="Audit ledger store",
    )
