"""Derive canonical audit facts from raw bus events.

Derivation never fails: a malformed payload yields a degraded but valid
draft, so every delivered event still gets an audit record.
"""

from datalens.audit.models import ActorKind, AuditDraft, EventPayload
from datalens.eventbus.models import Event

TYPE_SEPARATOR = "."
UNKNOWN_RESOURCE_TYPE = "unknown"


def split_event_type(event_type: str) -> tuple[str, str]:
    """Split ``"<entity>.<action>"`` on the first separator.

    >>> split_event_type("consent.withdrawn")
    ('consent', 'withdrawn')
    >>> split_event_type("governance.lineage.flow_tracked")
    ('governance', 'lineage.flow_tracked')
    >>> split_event_type("heartbeat")
    ('unknown', 'heartbeat')
    """
    resource_type, separator, action = event_type.partition(TYPE_SEPARATOR)
    if not separator:
        return UNKNOWN_RESOURCE_TYPE, event_type
    return resource_type, action


def derive_draft(event: Event) -> AuditDraft:
    """Turn ``event`` into an unlinked audit draft."""
    resource_type, action = split_event_type(event.type)
    payload = EventPayload.from_data(event.data)

    return AuditDraft(
        id=event.id,
        tenant_id=event.tenant_id,
        event_type=event.type,
        actor_id=payload.actor_id,
        actor_kind=ActorKind.SYSTEM if payload.actor_id is None else ActorKind.USER,
        resource_type=resource_type,
        resource_id=payload.resource_id,
        action=action,
        metadata=payload.raw,
        created_at=event.timestamp,
    )
