"""Audit ledger models."""

from datalens.audit.models.payload import EventPayload, parse_identifier
from datalens.audit.models.record import (
    ActorKind,
    AuditDraft,
    AuditRecord,
    ChainGap,
    ChainTail,
)

__all__ = [
    "ActorKind",
    "AuditDraft",
    "AuditRecord",
    "ChainGap",
    "ChainTail",
    "EventPayload",
    "parse_identifier",
]
