from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.domain.normalization import NormalizedObjectType, normalize_object_type


@dataclass(frozen=True)
class InboundEvent:
    """One webhook delivery, mapped from the provider payload.

    ``event_id`` is always the event's own id, never the business object id;
    the object is addressed by ``object_uuid`` / ``object_id``.
    """
    event_id: str | None
    object_type: NormalizedObjectType
    raw_object_type: str | None
    event_type: str
    raw_payload: dict[str, Any]
    object_uuid: str | None = None
    object_id: str | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def event_from_payload(payload: dict[str, Any], *, received_at: datetime | None = None) -> InboundEvent:
    raw_object_type = _str_or_none(payload.get("object_type"))
    return InboundEvent(
        event_id=_str_or_none(payload.get("id") or payload.get("event_id")),
        object_type=normalize_object_type(raw_object_type),
        raw_object_type=raw_object_type.lower() if raw_object_type else None,
        event_type=_str_or_none(payload.get("event_type") or payload.get("type")) or "unknown",
        raw_payload=payload,
        object_uuid=_str_or_none(payload.get("uuid")),
        object_id=_str_or_none(payload.get("object_id")),
        received_at=received_at or datetime.now(timezone.utc),
    )
