from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from src.domain.normalization import has_account_reference
from src.observability import incr_metric, log_event
from src.providers.recurly import client as recurly_client
from src.providers.recurly.client import RecurlyProviderError


@dataclass(frozen=True)
class ResourceIdentifiers:
    collection: str
    object_id: str | None = None
    object_uuid: str | None = None


@dataclass(frozen=True)
class LookupMethod:
    """Builds the ``(path, params)`` for one way of addressing a resource.

    ``build`` returns None when the identifiers it needs are absent.
    ``from_search`` marks list endpoints whose first ``data`` item is the resource.
    """
    name: str
    build: Callable[[ResourceIdentifiers], tuple[str, dict[str, Any] | None] | None]
    from_search: bool = False


@dataclass(frozen=True)
class ResolutionStrategy:
    auth_scheme: str
    lookup: LookupMethod

    @property
    def label(self) -> str:
        return f"{self.lookup.name}:{self.auth_scheme}"


@dataclass
class ResolutionAttempt:
    strategy: str
    path: str | None
    outcome: str
    status_code: int | None = None


@dataclass
class ResolvedResource:
    resource: dict[str, Any]
    strategy: ResolutionStrategy
    path: str
    attempts: list[ResolutionAttempt] = field(default_factory=list)


class ResolutionFailed(Exception):
    """Every strategy was exhausted without producing a usable resource."""

    def __init__(self, message: str, attempts: list[ResolutionAttempt] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


def _by_id(ids: ResourceIdentifiers) -> tuple[str, dict[str, Any] | None] | None:
    if not ids.object_id:
        return None
    return f"/{ids.collection}/{ids.object_id}", None


def _by_uuid_ref(ids: ResourceIdentifiers) -> tuple[str, dict[str, Any] | None] | None:
    if not ids.object_uuid:
        return None
    return f"/{ids.collection}/uuid-{ids.object_uuid}", None


def _by_plain_uuid(ids: ResourceIdentifiers) -> tuple[str, dict[str, Any] | None] | None:
    if not ids.object_uuid:
        return None
    return f"/{ids.collection}/{ids.object_uuid}", None


def _search_by_ids(ids: ResourceIdentifiers) -> tuple[str, dict[str, Any] | None] | None:
    keys = []
    if ids.object_uuid:
        keys.append(f"uuid-{ids.object_uuid}")
    if ids.object_id:
        keys.append(ids.object_id)
    if not keys:
        return None
    return f"/{ids.collection}", {"ids": ",".join(keys), "limit": 1}


LOOKUP_BY_ID = LookupMethod("by_id", _by_id)
LOOKUP_BY_UUID_REF = LookupMethod("by_uuid_ref", _by_uuid_ref)
LOOKUP_BY_PLAIN_UUID = LookupMethod("by_plain_uuid", _by_plain_uuid)
LOOKUP_SEARCH = LookupMethod("search_by_ids", _search_by_ids, from_search=True)

DEFAULT_LOOKUPS = (LOOKUP_BY_ID, LOOKUP_BY_UUID_REF, LOOKUP_BY_PLAIN_UUID, LOOKUP_SEARCH)


def build_strategies(
    auth_schemes: tuple[str, ...] | list[str] = recurly_client.AUTH_SCHEMES,
    lookups: tuple[LookupMethod, ...] = DEFAULT_LOOKUPS,
) -> tuple[ResolutionStrategy, ...]:
    """Lookup-major ordering: every auth scheme for a lookup before the next lookup."""
    return tuple(
        ResolutionStrategy(auth_scheme=scheme, lookup=lookup)
        for lookup in lookups
        for scheme in auth_schemes
    )


def _unwrap(lookup: LookupMethod, data: dict[str, Any]) -> dict[str, Any] | None:
    if not lookup.from_search:
        return data
    items = data.get("data")
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def resolve(
    identifiers: ResourceIdentifiers,
    *,
    api_key: str | None,
    strategies: tuple[ResolutionStrategy, ...] | None = None,
    base_url: str | None = None,
    accept: str | None = None,
    timeout_seconds: float = 10.0,
    request_id: str | None = None,
    require: Callable[[dict[str, Any]], bool] = has_account_reference,
) -> ResolvedResource:
    """Walk the strategies in order and return the first usable resource.

    Unauthorized moves on to the next strategy, which is the same lookup under
    the alternate auth scheme. Not found, an unusable body, or an upstream
    failure skips every remaining strategy of that lookup.
    """
    attempts: list[ResolutionAttempt] = []
    if not api_key:
        raise ResolutionFailed("Missing Recurly API key", attempts)

    exhausted_lookups: set[str] = set()
    for strategy in strategies or build_strategies():
        lookup = strategy.lookup
        if lookup.name in exhausted_lookups:
            continue
        target = lookup.build(identifiers)
        if target is None:
            exhausted_lookups.add(lookup.name)
            continue
        path, params = target

        try:
            data = recurly_client.get_resource(
                api_key=api_key,
                path=path,
                auth_scheme=strategy.auth_scheme,
                params=params,
                base_url=base_url,
                accept=accept,
                timeout_seconds=timeout_seconds,
                request_id=request_id,
            )
        except RecurlyProviderError as exc:
            attempts.append(ResolutionAttempt(strategy.label, path, exc.category, exc.status_code))
            if exc.category != "unauthorized":
                exhausted_lookups.add(lookup.name)
            continue

        resource = _unwrap(lookup, data)
        if resource is None or not require(resource):
            attempts.append(ResolutionAttempt(strategy.label, path, "incomplete", 200))
            exhausted_lookups.add(lookup.name)
            continue

        attempts.append(ResolutionAttempt(strategy.label, path, "resolved", 200))
        incr_metric("resolver.resolved", strategy=strategy.label)
        log_event(
            "resource_resolved",
            request_id=request_id,
            collection=identifiers.collection,
            strategy=strategy.label,
            path=path,
            attempt_count=len(attempts),
        )
        return ResolvedResource(resource=resource, strategy=strategy, path=path, attempts=attempts)

    incr_metric("resolver.unresolved", collection=identifiers.collection)
    log_event(
        "resource_unresolved",
        level=logging.WARNING,
        request_id=request_id,
        collection=identifiers.collection,
        object_id=identifiers.object_id,
        object_uuid=identifiers.object_uuid,
        attempts=[attempt.__dict__ for attempt in attempts],
    )
    raise ResolutionFailed(f"Unable to resolve {identifiers.collection} resource", attempts)
