"""Audit ledger record models."""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActorKind(str, Enum):
    """Who performed the audited action."""

    USER = "USER"
    SYSTEM = "SYSTEM"


class AuditDraft(BaseModel):
    """Canonical audit fact derived from one event, before chain linkage."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Event id, also the idempotency key")
    tenant_id: str = Field(..., description="Owning tenant")
    event_type: str = Field(..., description="Original event type")
    actor_id: UUID | None = Field(
        default=None, description="Acting user; None for system actions"
    )
    actor_kind: ActorKind = Field(default=ActorKind.SYSTEM, description="Actor classification")
    resource_type: str = Field(..., description="Entity part of the event type")
    resource_id: UUID | None = Field(default=None, description="Affected entity")
    action: str = Field(..., description="Action part of the event type")
    metadata: str = Field(default="{}", description="Serialized event payload (JSON)")
    created_at: datetime = Field(..., description="Event time")

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class AuditRecord(AuditDraft):
    """Hash-linked, immutable ledger entry.

    ``sequence`` is the record's position in its chain (1-based) and defines
    persisted order; ``previous_hash`` is the ``hash`` of the record at
    ``sequence - 1`` or the genesis sentinel for the first record.
    """

    chain_id: str = Field(..., description="Chain this record belongs to")
    sequence: int = Field(..., ge=1, description="Position in the chain")
    previous_hash: str = Field(..., description="Hash of the preceding record")
    hash: str = Field(..., description="SHA-256 over the canonical hash input")


class ChainTail(BaseModel):
    """Most recently stored linkage of a chain."""

    model_config = ConfigDict(frozen=True)

    chain_id: str
    sequence: int = Field(ge=1)
    hash: str


class ChainGap(BaseModel):
    """Run of missing sequence numbers between two stored records of a chain.

    ``previous_hash`` is the hash the first missing record must link to and
    ``next_previous_hash`` is what the record after the run links to. A
    single missing record is fully determined by the two: it is the draft
    whose hash over ``previous_hash`` equals ``next_previous_hash``.
    """

    model_config = ConfigDict(frozen=True)

    chain_id: str
    sequence: int = Field(ge=1, description="First missing sequence")
    missing: int = Field(ge=1, description="Number of missing records")
    previous_hash: str
    next_previous_hash: str
