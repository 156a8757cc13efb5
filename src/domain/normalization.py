from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal


NormalizedObjectType = Literal["payment", "subscription", "other"]

_OBJECT_TYPE_MAPPING: dict[str, NormalizedObjectType] = {
    "payment": "payment",
    "transaction": "payment",
    "charge_invoice": "payment",
    "invoice": "payment",
    "subscription": "subscription",
}

_COLLECTION_MAPPING = {
    "payment": "transactions",
    "transaction": "transactions",
    "charge_invoice": "invoices",
    "invoice": "invoices",
    "subscription": "subscriptions",
}

# Nesting paths observed for the account email across transaction, invoice and
# subscription payloads, in lookup order.
_EMAIL_PATHS: tuple[tuple[str, ...], ...] = (
    ("account", "email"),
    ("account", "bill_to", "email"),
    ("invoice", "account", "email"),
    ("customer", "email"),
)


def normalize_email(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def normalize_object_type(value: str | None) -> NormalizedObjectType:
    if not value:
        return "other"
    return _OBJECT_TYPE_MAPPING.get(str(value).strip().lower(), "other")


def resource_collection(raw_object_type: str | None) -> str | None:
    if not raw_object_type:
        return None
    return _COLLECTION_MAPPING.get(str(raw_object_type).strip().lower())


def dig(data: Any, *path: str) -> Any:
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def extract_account_email(resource: dict[str, Any]) -> str | None:
    for path in _EMAIL_PATHS:
        email = normalize_email(dig(resource, *path))
        if email:
            return email
    return None


def has_account_reference(resource: dict[str, Any]) -> bool:
    account = resource.get("account")
    if not isinstance(account, dict):
        return False
    return any(account.get(key) for key in ("id", "code", "email"))


def _first(values: Any) -> Any:
    if isinstance(values, list) and values:
        return values[0]
    return None


def extract_provenance(resource: dict[str, Any], *, raw_object_type: str | None) -> dict[str, Any]:
    """Pull provider identifiers and money fields out of a transaction or invoice."""
    kind = resource_collection(raw_object_type)
    invoice = resource.get("invoice") if isinstance(resource.get("invoice"), dict) else {}

    if kind == "invoices":
        invoice_id = resource.get("id")
        transaction_id = dig(_first(resource.get("transactions")), "id")
        subscription_id = _first(resource.get("subscription_ids"))
        amount = resource.get("paid") if resource.get("paid") is not None else resource.get("total")
    else:
        invoice_id = invoice.get("id")
        transaction_id = resource.get("id")
        subscription_id = _first(resource.get("subscription_ids")) or _first(invoice.get("subscription_ids"))
        amount = resource.get("amount")

    if subscription_id is None:
        subscription_id = dig(resource, "subscription", "id")

    return {
        "invoice_id": str(invoice_id) if invoice_id is not None else None,
        "transaction_id": str(transaction_id) if transaction_id is not None else None,
        "subscription_id": str(subscription_id) if subscription_id is not None else None,
        "amount": amount,
        "currency": resource.get("currency") or invoice.get("currency"),
    }


def parse_ts(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
