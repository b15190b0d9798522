"""JSON codec for the fan-out channel and the outbox payload column."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

ENVELOPE_VERSION = 1


def _default(o: object) -> Any:
    if isinstance(o, UUID):
        return str(o)
    if isinstance(o, datetime):
        return o.isoformat()
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    raise TypeError(f"{type(o).__name__} is not JSON serializable")


def to_jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    """Plain JSON types only (for JSONB columns)."""
    return json.loads(json.dumps(payload, default=_default))


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    return json.dumps(
        {"v": ENVELOPE_VERSION, "event": event_type, "data": payload},
        default=_default,
        separators=(",", ":"),
    )


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Raise ValueError for anything that is not a known envelope."""
    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("fan-out message is not JSON") from exc
    if not isinstance(envelope, dict) or envelope.get("v", ENVELOPE_VERSION) != ENVELOPE_VERSION:
        raise ValueError(f"unsupported fan-out envelope: {str(raw)[:100]}")
    event_type, data = envelope.get("event"), envelope.get("data")
    if not isinstance(event_type, str) or not isinstance(data, dict):
        raise ValueError("fan-out envelope without event/data")
    return event_type, data
