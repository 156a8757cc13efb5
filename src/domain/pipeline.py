from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from src.config import csv_setting, settings
from src.db import PersistenceError
from src.domain.dedupe import find_attributed_payment, is_duplicate
from src.domain.events import InboundEvent
from src.domain.matching import match_pending_signup
from src.domain.normalization import extract_account_email, extract_provenance, resource_collection
from src.domain.resolver import ResolutionFailed, ResourceIdentifiers, build_strategies, resolve
from src.domain.subscriptions import upsert_subscription
from src.domain.transitions import Provenance, mark_paid
from src.observability import incr_metric, log_event


PROVIDER = "recurly"
DEAD_LETTER_STATUSES = {"unresolved", "unmatched", "failed"}
# "received" rows never got a terminal outcome recorded.
REPLAYABLE_STATUSES = DEAD_LETTER_STATUSES | {"received"}


@dataclass
class PipelineOutcome:
    status: str
    event_id: str | None
    detail: str | None = None
    record_id: str | None = None
    identifiers: dict[str, Any] = field(default_factory=dict)

    @property
    def dead_letter(self) -> bool:
        return self.status in DEAD_LETTER_STATUSES


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_raw_event(db: Any, event: InboundEvent, *, request_id: str | None = None) -> str | None:
    """Insert the audit row for a delivery. Failure is logged and processing continues."""
    try:
        result = db.table("webhook_events").insert(
            {
                "provider": PROVIDER,
                "event_id": event.event_id,
                "event_type": event.event_type,
                "object_type": event.raw_object_type,
                "payload": event.raw_payload,
                "status": "received",
                "replay_count": 0,
                "last_error": None,
            }
        ).execute()
    except Exception as exc:
        incr_metric("webhook.audit.failed", provider=PROVIDER)
        log_event(
            "webhook_audit_write_failed",
            level=logging.ERROR,
            request_id=request_id,
            event_id=event.event_id,
            event_type=event.event_type,
            error=str(exc),
        )
        return None
    rows = result.data or []
    return rows[0].get("id") if rows else None


def record_outcome(
    db: Any,
    row_id: str | None,
    outcome: PipelineOutcome,
    *,
    request_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    if not row_id:
        return
    update = {
        "status": outcome.status,
        "last_error": outcome.detail if outcome.dead_letter else None,
        "processed_at": _now_iso(),
    }
    update.update(extra or {})
    try:
        db.table("webhook_events").update(update).eq("id", row_id).execute()
    except Exception as exc:
        log_event(
            "webhook_outcome_persist_failed",
            level=logging.ERROR,
            request_id=request_id,
            webhook_event_row_id=row_id,
            event_id=outcome.event_id,
            status=outcome.status,
            error=str(exc),
        )


def _identifiers(event: InboundEvent) -> ResourceIdentifiers | None:
    collection = resource_collection(event.raw_object_type)
    if not collection or not (event.object_id or event.object_uuid):
        return None
    return ResourceIdentifiers(collection=collection, object_id=event.object_id, object_uuid=event.object_uuid)


def _resolve(identifiers: ResourceIdentifiers, *, request_id: str | None) -> dict[str, Any]:
    resolved = resolve(
        identifiers,
        api_key=settings.recurly_api_key,
        strategies=build_strategies(csv_setting(settings.recurly_auth_schemes)),
        base_url=settings.recurly_api_base,
        accept=settings.recurly_api_accept,
        timeout_seconds=settings.recurly_timeout_seconds,
        request_id=request_id,
    )
    return resolved.resource


def _attribute_payment(db: Any, event: InboundEvent, *, request_id: str | None) -> PipelineOutcome:
    if event.event_type.lower() not in csv_setting(settings.payment_event_types):
        return PipelineOutcome("ignored", event.event_id, detail=f"event_type:{event.event_type}")

    identifiers = _identifiers(event)
    if identifiers is None:
        return PipelineOutcome("unresolved", event.event_id, detail="missing_identifiers")

    try:
        resource = _resolve(identifiers, request_id=request_id)
    except ResolutionFailed as exc:
        return PipelineOutcome(
            "unresolved",
            event.event_id,
            detail=str(exc),
            identifiers={"attempts": [attempt.__dict__ for attempt in exc.attempts]},
        )

    email = extract_account_email(resource)
    provenance = Provenance(
        event_id=event.event_id,
        **extract_provenance(resource, raw_object_type=event.raw_object_type),
    )
    identifiers_out = {
        "email": email,
        "invoice_id": provenance.invoice_id,
        "transaction_id": provenance.transaction_id,
        "subscription_id": provenance.subscription_id,
    }
    try:
        attributed = find_attributed_payment(
            db, invoice_id=provenance.invoice_id, transaction_id=provenance.transaction_id
        )
    except PersistenceError as exc:
        return PipelineOutcome("failed", event.event_id, detail=str(exc), identifiers=identifiers_out)
    if attributed is not None:
        return PipelineOutcome(
            "duplicate",
            event.event_id,
            detail="payment_already_attributed",
            record_id=attributed["id"],
            identifiers=identifiers_out,
        )

    if not email:
        return PipelineOutcome("unmatched", event.event_id, detail="no_account_email", identifiers=identifiers_out)

    window = timedelta(hours=settings.attribution_window_hours)
    try:
        record = match_pending_signup(db, email, event.received_at, window=window)
    except PersistenceError as exc:
        return PipelineOutcome("failed", event.event_id, detail=str(exc), identifiers=identifiers_out)
    if record is None:
        return PipelineOutcome("unmatched", event.event_id, detail="no_pending_signup", identifiers=identifiers_out)

    try:
        updated = mark_paid(db, record["id"], provenance)
    except PersistenceError as exc:
        return PipelineOutcome(
            "failed", event.event_id, detail=str(exc), record_id=record["id"], identifiers=identifiers_out
        )
    return PipelineOutcome(
        "attributed" if updated else "already_paid",
        event.event_id,
        record_id=record["id"],
        identifiers=identifiers_out,
    )


def _sync_subscription(db: Any, event: InboundEvent, *, request_id: str | None) -> PipelineOutcome:
    identifiers = _identifiers(event)
    if identifiers is None:
        return PipelineOutcome("subscription_skipped", event.event_id, detail="missing_identifiers")
    try:
        subscription = _resolve(identifiers, request_id=request_id)
    except ResolutionFailed as exc:
        return PipelineOutcome("unresolved", event.event_id, detail=str(exc))
    try:
        row = upsert_subscription(db, subscription, fallback_uuid=event.object_uuid, request_id=request_id)
    except PersistenceError as exc:
        return PipelineOutcome("failed", event.event_id, detail=str(exc))
    if row is None:
        return PipelineOutcome("subscription_skipped", event.event_id, detail="missing_identity_fields")
    return PipelineOutcome(
        "subscription_upserted",
        event.event_id,
        identifiers={"subscription_id": row["provider_subscription_id"], "plan_code": row["plan_code"]},
    )


def _dispatch(db: Any, event: InboundEvent, *, request_id: str | None) -> PipelineOutcome:
    try:
        duplicate = is_duplicate(db, event.event_id)
    except PersistenceError as exc:
        # Availability over strict dedupe.
        log_event(
            "webhook_dedupe_check_failed",
            level=logging.WARNING,
            request_id=request_id,
            event_id=event.event_id,
            error=str(exc),
        )
        duplicate = False
    if duplicate:
        return PipelineOutcome("duplicate", event.event_id)

    if event.object_type == "payment":
        return _attribute_payment(db, event, request_id=request_id)
    if event.object_type == "subscription":
        return _sync_subscription(db, event, request_id=request_id)
    return PipelineOutcome("ignored", event.event_id, detail=f"object_type:{event.raw_object_type}")


def process_event(db: Any, event: InboundEvent, *, request_id: str | None = None) -> PipelineOutcome:
    """Run one event through dedupe, resolution, matching and the paid transition.

    Never raises; unexpected errors become a ``failed`` outcome.
    """
    try:
        outcome = _dispatch(db, event, request_id=request_id)
    except Exception as exc:
        log_event(
            "webhook_pipeline_error",
            level=logging.ERROR,
            request_id=request_id,
            event_id=event.event_id,
            event_type=event.event_type,
            error=f"{type(exc).__name__}: {exc}",
        )
        outcome = PipelineOutcome("failed", event.event_id, detail=f"{type(exc).__name__}: {exc}")

    incr_metric("webhook.outcome", provider=PROVIDER, status=outcome.status)
    log_event(
        "webhook_outcome",
        level=logging.WARNING if outcome.dead_letter else logging.INFO,
        request_id=request_id,
        event_id=event.event_id,
        event_type=event.event_type,
        object_type=event.object_type,
        object_uuid=event.object_uuid,
        status=outcome.status,
        detail=outcome.detail,
        matched_record_id=outcome.record_id,
        resolved=outcome.identifiers,
    )
    return outcome


def record_rejected_body(db: Any, raw_body: bytes, *, reason: str, request_id: str | None = None) -> None:
    """Best-effort audit row for a delivery that could not be parsed."""
    try:
        db.table("webhook_events").insert(
            {
                "provider": PROVIDER,
                "event_id": None,
                "event_type": None,
                "object_type": None,
                "payload": {"_raw_body": raw_body.decode("utf-8", errors="replace")[:10000]},
                "status": "rejected",
                "replay_count": 0,
                "last_error": reason,
            }
        ).execute()
    except Exception as exc:
        log_event(
            "webhook_audit_write_failed",
            level=logging.ERROR,
            request_id=request_id,
            reason=reason,
            error=str(exc),
        )


def handle_delivery(db: Any, event: InboundEvent, *, request_id: str | None = None) -> PipelineOutcome:
    """Audit, process and record one live delivery. Blocking; run off the event loop."""
    row_id = record_raw_event(db, event, request_id=request_id)
    outcome = process_event(db, event, request_id=request_id)
    record_outcome(db, row_id, outcome, request_id=request_id)
    return outcome
