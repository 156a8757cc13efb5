from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from src.db import get_supabase
from src.domain.events import event_from_payload
from src.domain.pipeline import PROVIDER, handle_delivery, record_rejected_body
from src.models.webhooks import WebhookAck
from src.observability import incr_metric, log_event


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


@router.api_route("/recurly", methods=["GET", "HEAD", "OPTIONS"], response_class=PlainTextResponse)
async def recurly_webhook_alive():
    return PlainTextResponse("ok")


@router.post("/recurly", response_model=WebhookAck)
async def ingest_recurly_webhook(request: Request, db: Any = Depends(get_supabase)):
    req_id = _request_id(request)
    raw_body = await request.body()
    incr_metric("webhook.events.received", provider=PROVIDER)

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        incr_metric("webhook.events.rejected", provider=PROVIDER, reason="invalid_json")
        log_event("webhook_rejected", request_id=req_id, provider=PROVIDER, reason="invalid_json")
        await run_in_threadpool(record_rejected_body, db, raw_body, reason="invalid_json", request_id=req_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        payload = {}

    event = event_from_payload(payload)
    log_event(
        "webhook_received",
        request_id=req_id,
        provider=PROVIDER,
        event_id=event.event_id,
        event_type=event.event_type,
        object_type=event.raw_object_type,
        object_uuid=event.object_uuid,
    )

    outcome = await run_in_threadpool(handle_delivery, db, event, request_id=req_id)

    return WebhookAck(outcome=outcome.status, event_id=event.event_id)
