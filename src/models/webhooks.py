from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


WebhookOutcomeStatus = Literal[
    "received",
    "attributed",
    "already_paid",
    "duplicate",
    "ignored",
    "unresolved",
    "unmatched",
    "failed",
    "subscription_upserted",
    "subscription_skipped",
    "rejected",
]


class WebhookAck(BaseModel):
    status: Literal["ok"] = "ok"
    outcome: WebhookOutcomeStatus
    event_id: str | None = None


class WebhookDeadLetterListItem(BaseModel):
    id: str
    event_id: str | None = None
    event_type: str | None = None
    object_type: str | None = None
    status: WebhookOutcomeStatus
    last_error: str | None = None
    replay_count: int | None = None
    last_replay_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None


class WebhookReplayResponse(BaseModel):
    id: str
    event_id: str | None = None
    previous_status: str | None = None
    outcome: WebhookOutcomeStatus
    detail: str | None = None
    matched_record_id: str | None = None
    replay_count: int
    resolved: dict[str, Any] = Field(default_factory=dict)


class MetricsSnapshotResponse(BaseModel):
    counters: dict[str, int]
