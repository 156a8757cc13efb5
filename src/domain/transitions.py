from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from src.db import PersistenceError


@dataclass(frozen=True)
class Provenance:
    event_id: str | None = None
    invoice_id: str | None = None
    transaction_id: str | None = None
    subscription_id: str | None = None
    amount: Any = None
    currency: str | None = None


def mark_paid(
    db: Any,
    record_id: str,
    provenance: Provenance,
    *,
    completed_at: datetime | None = None,
) -> bool:
    """Move a signup attempt from PENDING to PAID.

    The update is conditional on the row still being PENDING, so a PAID row is
    never rewritten. Returns False when no PENDING row was updated. Null
    provenance fields are written as-is.
    """
    payload = {
        "status": "PAID",
        "completed_at": (completed_at or datetime.now(timezone.utc)).isoformat(),
        "provider_event_id": provenance.event_id,
        "provider_invoice_id": provenance.invoice_id,
        "provider_transaction_id": provenance.transaction_id,
        "provider_subscription_id": provenance.subscription_id,
        "amount": provenance.amount,
        "currency": provenance.currency,
    }
    try:
        result = (
            db.table("signup_attempts")
            .update(payload)
            .eq("id", record_id)
            .eq("status", "PENDING")
            .execute()
        )
    except Exception as exc:
        raise PersistenceError(f"Signup attempt update failed: {exc}") from exc
    return bool(result.data)
