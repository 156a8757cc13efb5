from __future__ import annotations

import pytest

from src.db import PersistenceError
from src.domain.subscriptions import upsert_subscription


def _subscription(**overrides):
    subscription = {
        "id": "s-1",
        "uuid": "abc123",
        "state": "active",
        "plan": {"code": "gold-monthly"},
        "account": {"code": "acct-1", "email": " Owner@Example.com "},
        "current_period_ends_at": "2026-04-01T00:00:00Z",
    }
    subscription.update(overrides)
    return subscription


def test_upsert_maps_shop_by_plan_code(fake_db):
    fake_db.tables["shops"].append({"id": "shop-9", "plan_code": "gold-monthly"})

    row = upsert_subscription(fake_db, _subscription())

    assert row is not None
    stored = fake_db.tables["subscriptions"][0]
    assert stored["provider"] == "recurly"
    assert stored["provider_subscription_id"] == "abc123"
    assert stored["shop_id"] == "shop-9"
    assert stored["email"] == "owner@example.com"
    assert stored["account_code"] == "acct-1"
    assert stored["status"] == "active"
    assert stored["current_period_end"] == "2026-04-01T00:00:00Z"


def test_upsert_is_keyed_on_provider_subscription_id(fake_db):
    upsert_subscription(fake_db, _subscription())
    upsert_subscription(fake_db, _subscription(state="canceled"))

    assert len(fake_db.tables["subscriptions"]) == 1
    assert fake_db.tables["subscriptions"][0]["status"] == "canceled"


def test_status_defaults_to_active_and_term_end_fallback(fake_db):
    subscription = _subscription(state=None, current_period_ends_at=None, current_term_ends_at="2027-01-01T00:00:00Z")

    row = upsert_subscription(fake_db, subscription)

    assert row["status"] == "active"
    assert row["current_period_end"] == "2027-01-01T00:00:00Z"
    assert row["shop_id"] is None


def test_bill_to_email_is_used_when_account_email_missing(fake_db):
    subscription = _subscription(account={"code": "acct-1", "bill_to": {"email": "billing@example.com"}})

    row = upsert_subscription(fake_db, subscription)

    assert row["email"] == "billing@example.com"


@pytest.mark.parametrize(
    "overrides",
    [
        {"plan": {}},
        {"account": {"code": "acct-1"}},
        {"uuid": None, "id": None},
    ],
)
def test_partial_identity_rows_are_never_written(fake_db, overrides):
    row = upsert_subscription(fake_db, _subscription(**overrides), fallback_uuid=None)

    assert row is None
    assert fake_db.tables["subscriptions"] == []
    assert ("subscriptions", "upsert") not in [(table, op) for table, op, _ in fake_db.calls]


def test_fallback_uuid_supplies_subscription_id(fake_db):
    row = upsert_subscription(fake_db, _subscription(uuid=None, id=None), fallback_uuid="from-webhook")
    assert row["provider_subscription_id"] == "from-webhook"


def test_shop_lookup_failure_still_upserts(fake_db):
    fake_db.fail("shops", "select")
    row = upsert_subscription(fake_db, _subscription())
    assert row["shop_id"] is None
    assert len(fake_db.tables["subscriptions"]) == 1


def test_upsert_failure_is_wrapped(fake_db):
    fake_db.fail("subscriptions", "upsert")
    with pytest.raises(PersistenceError):
        upsert_subscription(fake_db, _subscription())
