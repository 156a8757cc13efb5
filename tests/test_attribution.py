from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.db import PersistenceError
from src.domain.dedupe import find_attributed_payment, is_duplicate
from src.domain.matching import match_pending_signup
from src.domain.transitions import Provenance, mark_paid


AS_OF = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _attempt(attempt_id: str, *, email: str = "user@example.com", created_at: datetime, status: str = "PENDING"):
    return {
        "id": attempt_id,
        "shop_id": "shop-1",
        "employee_code": "EMP-1",
        "email": email,
        "status": status,
        "created_at": created_at.isoformat(),
        "provider_event_id": None,
    }


def test_missing_event_id_is_never_duplicate(fake_db):
    fake_db.tables["signup_attempts"].append({"id": "a-1", "provider_event_id": None, "status": "PAID"})
    assert is_duplicate(fake_db, None) is False
    assert is_duplicate(fake_db, "") is False
    assert fake_db.calls == []


def test_known_event_id_is_duplicate(fake_db):
    fake_db.tables["signup_attempts"].append({"id": "a-1", "provider_event_id": "evt-1", "status": "PAID"})
    assert is_duplicate(fake_db, "evt-1") is True
    assert is_duplicate(fake_db, "evt-2") is False


def test_dedupe_store_failure_is_wrapped(fake_db):
    fake_db.fail("signup_attempts", "select")
    with pytest.raises(PersistenceError):
        is_duplicate(fake_db, "evt-1")


def test_attributed_payment_found_by_transaction_or_invoice(fake_db):
    fake_db.tables["signup_attempts"].append(
        {"id": "a-1", "status": "PAID", "provider_transaction_id": "t-1", "provider_invoice_id": "inv-1"}
    )

    assert find_attributed_payment(fake_db, invoice_id=None, transaction_id="t-1")["id"] == "a-1"
    assert find_attributed_payment(fake_db, invoice_id="inv-1", transaction_id="t-other")["id"] == "a-1"
    assert find_attributed_payment(fake_db, invoice_id="inv-2", transaction_id="t-2") is None


def test_attributed_payment_lookup_skips_missing_identifiers(fake_db):
    assert find_attributed_payment(fake_db, invoice_id=None, transaction_id=None) is None
    assert fake_db.calls == []


def test_attributed_payment_store_failure_is_wrapped(fake_db):
    fake_db.fail("signup_attempts", "select")
    with pytest.raises(PersistenceError):
        find_attributed_payment(fake_db, invoice_id="inv-1", transaction_id=None)

def test_email_is_normalized_before_matching(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("a-1", created_at=AS_OF - timedelta(minutes=5)))

    match = match_pending_signup(fake_db, " User@Example.com ", AS_OF)

    assert match is not None
    assert match["id"] == "a-1"


def test_window_boundary_is_inclusive(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("edge", created_at=AS_OF - timedelta(hours=6)))
    assert match_pending_signup(fake_db, "user@example.com", AS_OF)["id"] == "edge"


def test_record_older_than_window_is_not_matched(fake_db):
    fake_db.tables["signup_attempts"].append(
        _attempt("stale", created_at=AS_OF - timedelta(hours=6, seconds=1))
    )
    assert match_pending_signup(fake_db, "user@example.com", AS_OF) is None


def test_most_recent_pending_record_wins(fake_db):
    t1 = AS_OF - timedelta(hours=2)
    t2 = AS_OF - timedelta(minutes=30)
    fake_db.tables["signup_attempts"].extend([_attempt("older", created_at=t1), _attempt("newer", created_at=t2)])

    assert match_pending_signup(fake_db, "user@example.com", AS_OF)["id"] == "newer"


def test_paid_records_are_never_matched(fake_db):
    fake_db.tables["signup_attempts"].extend(
        [
            _attempt("paid", created_at=AS_OF - timedelta(minutes=1), status="PAID"),
            _attempt("pending", created_at=AS_OF - timedelta(hours=1)),
        ]
    )
    assert match_pending_signup(fake_db, "user@example.com", AS_OF)["id"] == "pending"


def test_other_emails_and_blank_email_do_not_match(fake_db):
    fake_db.tables["signup_attempts"].append(
        _attempt("a-1", email="someone@example.com", created_at=AS_OF - timedelta(minutes=5))
    )
    assert match_pending_signup(fake_db, "user@example.com", AS_OF) is None
    assert match_pending_signup(fake_db, "   ", AS_OF) is None


def test_window_is_configurable(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("a-1", created_at=AS_OF - timedelta(hours=8)))
    assert match_pending_signup(fake_db, "user@example.com", AS_OF, window=timedelta(hours=12))["id"] == "a-1"


def test_mark_paid_writes_status_and_provenance(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("a-1", created_at=AS_OF))
    provenance = Provenance(
        event_id="evt-1",
        invoice_id="inv-1",
        transaction_id="t-1",
        subscription_id="s-1",
        amount=49.0,
        currency="USD",
    )

    assert mark_paid(fake_db, "a-1", provenance, completed_at=AS_OF) is True

    row = fake_db.tables["signup_attempts"][0]
    assert row["status"] == "PAID"
    assert row["completed_at"] == AS_OF.isoformat()
    assert row["provider_event_id"] == "evt-1"
    assert row["provider_invoice_id"] == "inv-1"
    assert row["provider_transaction_id"] == "t-1"
    assert row["provider_subscription_id"] == "s-1"
    assert row["amount"] == 49.0
    assert row["currency"] == "USD"


def test_mark_paid_accepts_partial_provenance(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("a-1", created_at=AS_OF))

    assert mark_paid(fake_db, "a-1", Provenance(event_id="evt-1")) is True

    row = fake_db.tables["signup_attempts"][0]
    assert row["status"] == "PAID"
    assert row["provider_invoice_id"] is None


def test_mark_paid_never_rewrites_a_paid_record(fake_db):
    fake_db.tables["signup_attempts"].append(_attempt("a-1", created_at=AS_OF))
    assert mark_paid(fake_db, "a-1", Provenance(event_id="evt-1")) is True

    assert mark_paid(fake_db, "a-1", Provenance(event_id="evt-2")) is False
    assert fake_db.tables["signup_attempts"][0]["provider_event_id"] == "evt-1"


def test_mark_paid_store_failure_is_wrapped(fake_db):
    fake_db.fail("signup_attempts", "update")
    with pytest.raises(PersistenceError):
        mark_paid(fake_db, "a-1", Provenance())
