"""Typed view over an event's untyped ``data`` payload."""

import json
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

EMPTY_METADATA = "{}"
NUL = "\x00"


def _strip_nul(value: Any) -> Any:
    # PostgreSQL text and jsonb cannot hold U+0000
    if isinstance(value, str):
        return value.replace(NUL, "")
    if isinstance(value, Mapping):
        return {_strip_nul(k): _strip_nul(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_strip_nul(item) for item in value]
    return value


def _to_text(value: Any) -> str:
    return str(value).replace(NUL, "")


def parse_identifier(value: Any) -> UUID | None:
    """Parse an opaque identifier; anything unparsable becomes None."""
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


class EventPayload(BaseModel):
    """Identifiers extracted from an event payload plus its raw serialization.

    Default-construction rules:

    - ``resource_id``: the payload's ``id`` field, None when missing/unparsable
    - ``actor_id``: the payload's ``actor_id`` field, None when missing/unparsable
    - ``raw``: canonical JSON of a mapping payload, ``"{}"`` otherwise
    """

    model_config = ConfigDict(frozen=True)

    structured: bool = Field(default=False, description="Payload was a key/value mapping")
    resource_id: UUID | None = None
    actor_id: UUID | None = None
    raw: str = EMPTY_METADATA

    @classmethod
    def from_data(cls, data: Any) -> "EventPayload":
        if not isinstance(data, Mapping):
            return cls()

        try:
            raw = json.dumps(
                _strip_nul(data),
                sort_keys=True,
                default=_to_text,
                allow_nan=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError, RecursionError):
            # Unsortable mixed keys, NaN or infinity, circular references
            raw = EMPTY_METADATA

        return cls(
            structured=True,
            resource_id=parse_identifier(data.get("id")),
            actor_id=parse_identifier(data.get("actor_id")),
            raw=raw,
        )
