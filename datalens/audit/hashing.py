"""Canonical hash input for audit records.

Format version 1, a compatibility surface: changing anything here
invalidates every hash already stored in a ledger.

    sha256("|".join([
        id, tenant_id, event_type, resource_type, resource_id,
        previous_hash, timestamp,
    ]).encode("utf-8")).hexdigest()

- ``resource_id``: canonical lowercase UUID, the nil UUID when absent
- ``timestamp``: UTC, ``YYYY-MM-DDTHH:MM:SSZ`` with ``.ffffff`` only when
  the instant has a sub-second part; naive values are taken as UTC
- ``previous_hash``: ``""`` (GENESIS_HASH) for the first record of a chain
- ``actor_id``, ``action`` and ``metadata`` are not part of the input
"""

import hashlib
from datetime import UTC, datetime
from uuid import UUID

from datalens.audit.models import AuditDraft

HASH_FORMAT_VERSION = 1
HASH_FIELD_SEPARATOR = "|"
GENESIS_HASH = ""
NIL_IDENTIFIER = UUID(int=0)


def format_timestamp(value: datetime) -> str:
    """Render an instant the way the canonical hash input expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def canonical_hash_input(
    *,
    record_id: str,
    tenant_id: str,
    event_type: str,
    resource_type: str,
    resource_id: UUID | None,
    previous_hash: str,
    timestamp: datetime,
) -> str:
    return HASH_FIELD_SEPARATOR.join(
        [
            record_id,
            tenant_id,
            event_type,
            resource_type,
            str(resource_id or NIL_IDENTIFIER),
            previous_hash,
            format_timestamp(timestamp),
        ]
    )


def compute_hash(draft: AuditDraft, previous_hash: str) -> str:
    """Hash of ``draft`` when linked after a record hashing to ``previous_hash``."""
    payload = canonical_hash_input(
        record_id=draft.id,
        tenant_id=draft.tenant_id,
        event_type=draft.event_type,
        resource_type=draft.resource_type,
        resource_id=draft.resource_id,
        previous_hash=previous_hash,
        timestamp=draft.created_at,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
