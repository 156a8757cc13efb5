from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from src.config import settings
from src.db import get_supabase
from src.domain.events import event_from_payload
from src.domain.normalization import parse_ts
from src.domain.pipeline import DEAD_LETTER_STATUSES, REPLAYABLE_STATUSES, process_event, record_outcome
from src.models.webhooks import (
    MetricsSnapshotResponse,
    WebhookDeadLetterListItem,
    WebhookReplayResponse,
)
from src.observability import incr_metric, log_event, metrics_snapshot


router = APIRouter(prefix="/api/internal/webhooks", tags=["internal-webhooks"])


async def require_internal_secret(
    x_internal_replay_secret: str | None = Header(default=None),
) -> None:
    configured_secret = settings.internal_replay_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_REPLAY_SECRET is not configured",
        )
    if not x_internal_replay_secret or not hmac.compare_digest(x_internal_replay_secret, configured_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal replay secret",
        )


@router.get("/dead-letters", response_model=list[WebhookDeadLetterListItem])
async def list_dead_letters(
    limit: int = 50,
    db: Any = Depends(get_supabase),
    _auth: None = Depends(require_internal_secret),
):
    bounded_limit = max(1, min(limit, 200))
    result = (
        db.table("webhook_events")
        .select("id, event_id, event_type, object_type, status, last_error, replay_count, last_replay_at, processed_at, created_at")
        .in_("status", sorted(DEAD_LETTER_STATUSES))
        .order("created_at", desc=True)
        .limit(bounded_limit)
        .execute()
    )
    rows = result.data or []
    log_event("webhook_dead_letters_listed", returned=len(rows), limit=bounded_limit)
    return rows


@router.post("/{event_row_id}/replay", response_model=WebhookReplayResponse)
async def replay_webhook_event(
    event_row_id: str,
    request: Request,
    db: Any = Depends(get_supabase),
    _auth: None = Depends(require_internal_secret),
):
    req_id = getattr(request.state, "request_id", None)
    found = (
        db.table("webhook_events")
        .select("id, event_id, status, payload, replay_count, created_at")
        .eq("id", event_row_id)
        .limit(1)
        .execute()
    )
    if not found.data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook event not found")
    row = found.data[0]
    if row.get("status") not in REPLAYABLE_STATUSES:
        # Only dead letters and rows without a recorded outcome are replayable.
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Webhook event is not replayable in status {row.get('status')!r}",
        )

    payload = row.get("payload") if isinstance(row.get("payload"), dict) else {}
    # Keep the attribution window anchored to the original delivery time.
    event = event_from_payload(payload, received_at=parse_ts(row.get("created_at")))
    outcome = await run_in_threadpool(process_event, db, event, request_id=req_id)

    replay_count = int(row.get("replay_count") or 0) + 1
    record_outcome(
        db,
        row["id"],
        outcome,
        request_id=req_id,
        extra={
            "replay_count": replay_count,
            "last_replay_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    incr_metric("webhook.replayed", status=outcome.status)
    log_event(
        "webhook_replayed",
        level=logging.WARNING if outcome.dead_letter else logging.INFO,
        request_id=req_id,
        webhook_event_row_id=row["id"],
        event_id=event.event_id,
        previous_status=row.get("status"),
        status=outcome.status,
        replay_count=replay_count,
    )
    return WebhookReplayResponse(
        id=row["id"],
        event_id=event.event_id,
        previous_status=row.get("status"),
        outcome=outcome.status,
        detail=outcome.detail,
        matched_record_id=outcome.record_id,
        replay_count=replay_count,
        resolved=outcome.identifiers,
    )


@router.get("/metrics", response_model=MetricsSnapshotResponse)
async def get_metrics(_auth: None = Depends(require_internal_secret)):
    return MetricsSnapshotResponse(counters=metrics_snapshot())
