import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")


class FakeResponse:
    def __init__(self, data):
        self.data = data


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_dt(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_key = None
        self.order_desc = False
        self.limit_count = None

    def select(self, _fields: str):
        self.operation = "select"
        return self

    def insert(self, payload: dict):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.payload = payload
        return self

    def upsert(self, payload: dict, on_conflict: str = "id"):
        self.operation = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def in_(self, key: str, values):
        self.filters.append(("in", key, list(values)))
        return self

    def gte(self, key: str, value):
        self.filters.append(("gte", key, value))
        return self

    def order(self, key: str, desc: bool = False):
        self.order_key = key
        self.order_desc = desc
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def _matches(self, row: dict) -> bool:
        for kind, key, value in self.filters:
            if kind == "eq" and row.get(key) != value:
                return False
            if kind == "in" and row.get(key) not in value:
                return False
            if kind == "gte" and (row.get(key) is None or _as_dt(row[key]) < _as_dt(value)):
                return False
        return True

    def execute(self):
        self.db.calls.append((self.table_name, self.operation, list(self.filters)))
        failure = self.db.failures.get((self.table_name, self.operation))
        if failure:
            raise failure
        table = self.db.tables.setdefault(self.table_name, [])

        if self.operation == "insert":
            row = dict(self.payload or {})
            row.setdefault("id", f"{self.table_name}-{len(table)+1}")
            row.setdefault("created_at", _ts())
            table.append(row)
            return FakeResponse([dict(row)])

        if self.operation == "upsert":
            row = dict(self.payload or {})
            for existing in table:
                if existing.get(self.on_conflict) == row.get(self.on_conflict):
                    existing.update(row)
                    return FakeResponse([dict(existing)])
            row.setdefault("id", f"{self.table_name}-{len(table)+1}")
            table.append(row)
            return FakeResponse([dict(row)])

        if self.operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self.payload or {})
                    updated.append(dict(row))
            return FakeResponse(updated)

        rows = [dict(row) for row in table if self._matches(row)]
        if self.order_key:
            rows.sort(key=lambda row: _as_dt(row.get(self.order_key)), reverse=self.order_desc)
        if self.limit_count is not None:
            rows = rows[: self.limit_count]
        return FakeResponse(rows)


class FakeSupabase:
    def __init__(self, tables: dict | None = None):
        self.tables = tables or {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str, list]] = []

    def table(self, table_name: str):
        return FakeQuery(table_name, self)

    def fail(self, table_name: str, operation: str, exc: Exception | None = None) -> None:
        self.failures[(table_name, operation)] = exc or Exception(f"{table_name} {operation} failed")


class FakeRecurlyResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


@pytest.fixture
def fake_db():
    return FakeSupabase(
        {
            "webhook_events": [],
            "signup_attempts": [],
            "subscriptions": [],
            "shops": [],
        }
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    from src.observability import reset_metrics

    reset_metrics()
    yield
    reset_metrics()


class FakeRecurly:
    """Scripted stand-in for the Recurly HTTP layer, keyed on (auth scheme, path)."""

    def __init__(self, base_url: str = "https://v3.recurly.com"):
        self.base_url = base_url
        self.routes: dict[tuple[str | None, str], FakeRecurlyResponse] = {}
        self.calls: list[dict] = []

    def route(self, path: str, status_code: int, payload=None, *, auth: str | None = None, text: str | None = None):
        self.routes[(auth, path)] = FakeRecurlyResponse(status_code, payload, text)

    def __call__(self, **kwargs):
        path = kwargs["url"][len(self.base_url):]
        headers = kwargs.get("headers") or {}
        auth_scheme = "bearer" if headers.get("Authorization", "").startswith("Bearer ") else "basic"
        self.calls.append(
            {
                "path": path,
                "auth": auth_scheme,
                "params": kwargs.get("params"),
                "accept": headers.get("Accept"),
                "basic_auth": kwargs.get("auth"),
            }
        )
        response = self.routes.get((auth_scheme, path)) or self.routes.get((None, path))
        return response or FakeRecurlyResponse(404, {"error": {"type": "not_found"}})

    @property
    def attempts(self) -> list[tuple[str, str]]:
        return [(call["path"], call["auth"]) for call in self.calls]


@pytest.fixture
def fake_recurly(monkeypatch):
    from src.providers.recurly import client as recurly_client

    fake = FakeRecurly()
    monkeypatch.setattr(recurly_client, "_request_with_retry", fake)
    return fake
