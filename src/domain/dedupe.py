from __future__ import annotations

from typing import Any

from src.db import PersistenceError


def is_duplicate(db: Any, event_id: str | None) -> bool:
    """True when a signup attempt already carries this provider event id.

    Events without an id are never treated as duplicates. The check is advisory;
    two concurrent deliveries can both pass it.
    """
    if not event_id:
        return False
    try:
        result = (
            db.table("signup_attempts")
            .select("id")
            .eq("provider_event_id", event_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        raise PersistenceError(f"Dedupe lookup failed: {exc}") from exc
    return bool(result.data)


def find_attributed_payment(
    db: Any,
    *,
    invoice_id: str | None,
    transaction_id: str | None,
) -> dict[str, Any] | None:
    """Signup attempt already carrying this invoice or transaction, if any.

    One purchase arrives as several events (``payment/succeeded`` and
    ``charge_invoice/paid``) with distinct event ids; the provider identifiers
    are what they share.
    """
    for column, value in (
        ("provider_transaction_id", transaction_id),
        ("provider_invoice_id", invoice_id),
    ):
        if not value:
            continue
        try:
            result = (
                db.table("signup_attempts")
                .select("id, status")
                .eq(column, value)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError(f"Payment dedupe lookup failed: {exc}") from exc
        if result.data:
            return result.data[0]
    return None
