"""Domain event model carried by the event bus."""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


class Event(BaseModel):
    """A fact published on the bus describing something that happened.

    ``data`` is deliberately untyped: publishers attach whatever payload they
    have, and consumers must cope with anything from a mapping to a bare
    string.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique event id")
    tenant_id: str = Field(..., description="Owning tenant")
    type: str = Field(..., description="Event type, '<entity>.<action>'")
    data: Any = Field(default=None, description="Event payload")
    timestamp: datetime = Field(default_factory=utc_now, description="Event time")
    source: str | None = Field(default=None, description="Emitting bounded context")


class EventType:
    """Event types published by the platform's bounded contexts."""

    # PII discovery
    PII_DISCOVERED = "pii.discovered"
    PII_VERIFIED = "pii.verified"
    PII_CLASSIFIED = "pii.classified"

    # Data subject requests
    DSR_CREATED = "dsr.created"
    DSR_EXECUTING = "dsr.executing"
    DSR_COMPLETED = "dsr.completed"
    DSR_REJECTED = "dsr.rejected"
    DSR_DATA_DELETED = "dsr.data_deleted"

    # Consent
    CONSENT_GRANTED = "consent.granted"
    CONSENT_WITHDRAWN = "consent.withdrawn"
    CONSENT_EXPIRED = "consent.expired"

    # Breach incidents
    BREACH_DETECTED = "breach.detected"
    BREACH_NOTIFIED = "breach.notified"
    BREACH_RESOLVED = "breach.resolved"

    # Governance policies
    POLICY_CREATED = "policy.created"
    POLICY_VIOLATION = "policy.violation"
    GOVERNANCE_POLICY_CREATED = "governance.policy_created"

    # Data sources
    DATASOURCE_CREATED = "datasource.created"
    DATASOURCE_DELETED = "datasource.deleted"

    # Tenancy and users
    TENANT_CREATED = "tenant.created"
    USER_LOGGED_IN = "user.logged_in"
