from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from src.db import PersistenceError
from src.domain.normalization import normalize_email


DEFAULT_WINDOW = timedelta(hours=6)


def match_pending_signup(
    db: Any,
    email: str | None,
    as_of: datetime,
    *,
    window: timedelta = DEFAULT_WINDOW,
) -> dict[str, Any] | None:
    """Most recent PENDING signup attempt for ``email`` created at or after ``as_of - window``."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    cutoff = (as_of - window).isoformat()
    try:
        result = (
            db.table("signup_attempts")
            .select("id, shop_id, employee_code, email, status, created_at")
            .eq("email", normalized)
            .eq("status", "PENDING")
            .gte("created_at", cutoff)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        raise PersistenceError(f"Attribution lookup failed: {exc}") from exc
    rows = result.data or []
    return rows[0] if rows else None
