from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from src.db import PersistenceError
from src.domain.normalization import dig, extract_account_email
from src.observability import log_event


PROVIDER = "recurly"


def extract_subscription_fields(subscription: dict[str, Any], *, fallback_uuid: str | None) -> dict[str, Any]:
    return {
        "provider_subscription_id": subscription.get("uuid") or subscription.get("id") or fallback_uuid,
        "plan_code": dig(subscription, "plan", "code"),
        "status": subscription.get("state") or subscription.get("status"),
        "current_period_end": (
            subscription.get("current_period_ends_at") or subscription.get("current_term_ends_at")
        ),
        "email": extract_account_email(subscription),
        "account_code": dig(subscription, "account", "code"),
    }


def lookup_shop_id(db: Any, plan_code: str, *, request_id: str | None = None) -> str | None:
    try:
        result = db.table("shops").select("id").eq("plan_code", plan_code).limit(1).execute()
    except Exception as exc:
        log_event(
            "shop_lookup_failed",
            level=logging.WARNING,
            request_id=request_id,
            plan_code=plan_code,
            error=str(exc),
        )
        return None
    rows = result.data or []
    return rows[0].get("id") if rows else None


def upsert_subscription(
    db: Any,
    subscription: dict[str, Any],
    *,
    fallback_uuid: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any] | None:
    """Upsert keyed on provider_subscription_id; returns the row written or None when skipped.

    Rows are only written with a subscription id, an email and a plan code.
    """
    fields = extract_subscription_fields(subscription, fallback_uuid=fallback_uuid)
    subscription_id = fields["provider_subscription_id"]
    email = fields["email"]
    plan_code = fields["plan_code"]

    if not (subscription_id and email and plan_code):
        log_event(
            "subscription_upsert_skipped",
            request_id=request_id,
            has_provider_subscription_id=bool(subscription_id),
            has_email=bool(email),
            has_plan_code=bool(plan_code),
        )
        return None

    row = {
        "provider": PROVIDER,
        "provider_subscription_id": str(subscription_id),
        "account_code": fields["account_code"],
        "email": email,
        "plan_code": plan_code,
        "shop_id": lookup_shop_id(db, plan_code, request_id=request_id),
        "status": fields["status"] or "active",
        "current_period_end": fields["current_period_end"],
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        db.table("subscriptions").upsert(row, on_conflict="provider_subscription_id").execute()
    except Exception as exc:
        raise PersistenceError(f"Subscription upsert failed: {exc}") from exc

    log_event(
        "subscription_upserted",
        request_id=request_id,
        provider_subscription_id=row["provider_subscription_id"],
        plan_code=plan_code,
        shop_id=row["shop_id"],
        status=row["status"],
    )
    return row
