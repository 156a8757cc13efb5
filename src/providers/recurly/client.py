from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

from src.observability import body_snippet, incr_metric, log_event


RECURLY_API_BASE = "https://v3.recurly.com"
RECURLY_API_ACCEPT = "application/vnd.recurly.v2021-02-25"
AUTH_BASIC = "basic"
AUTH_BEARER = "bearer"
AUTH_SCHEMES = (AUTH_BASIC, AUTH_BEARER)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 3
_RETRY_BASE_DELAY_SECONDS = 0.25
_RETRY_MAX_DELAY_SECONDS = 2.0


class RecurlyProviderError(Exception):
    """Provider-level exception for Recurly integration failures."""

    def __init__(self, message: str, *, status_code: int | None = None, path: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.path = path

    @property
    def category(self) -> str:
        if self.status_code in {401, 403}:
            return "unauthorized"
        if self.status_code == 404:
            return "not_found"
        if self.status_code in _RETRYABLE_STATUS_CODES:
            return "transient"
        if "connectivity error" in str(self).lower():
            return "transient"
        return "terminal"

    @property
    def retryable(self) -> bool:
        return self.category == "transient"


def _build_base_url(base_url: str | None) -> str:
    return (base_url or RECURLY_API_BASE).rstrip("/")


def _build_auth(api_key: str, auth_scheme: str) -> tuple[dict[str, str], tuple[str, str] | None]:
    if auth_scheme == AUTH_BEARER:
        return {"Authorization": f"Bearer {api_key}"}, None
    if auth_scheme == AUTH_BASIC:
        # API key as username, blank password.
        return {}, (api_key, "")
    raise RecurlyProviderError(f"Unsupported Recurly auth scheme: {auth_scheme}")


def _request_with_retry(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    auth: tuple[str, str] | None,
    timeout_seconds: float,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    last_exc: httpx.HTTPError | None = None
    response: httpx.Response | None = None
    for attempt in range(1, _MAX_RETRY_ATTEMPTS + 1):
        try:
            with httpx.Client(timeout=timeout_seconds) as client:
                response = client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    auth=auth,
                    params=params,
                )
        except httpx.HTTPError as exc:
            last_exc = exc
            if attempt >= _MAX_RETRY_ATTEMPTS:
                raise
            delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
            delay += random.uniform(0, delay * 0.2)
            time.sleep(delay)
            continue

        if response.status_code in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRY_ATTEMPTS:
            delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
            delay += random.uniform(0, delay * 0.2)
            time.sleep(delay)
            continue
        return response

    if last_exc:
        raise last_exc
    assert response is not None
    return response


def get_resource(
    *,
    api_key: str,
    path: str,
    auth_scheme: str = AUTH_BASIC,
    params: dict[str, Any] | None = None,
    base_url: str | None = None,
    accept: str | None = None,
    timeout_seconds: float = 10.0,
    request_id: str | None = None,
) -> dict[str, Any]:
    """GET a single Recurly resource or list page and return the decoded JSON object."""
    if not api_key:
        raise RecurlyProviderError("Missing Recurly API key")

    auth_headers, basic_auth = _build_auth(api_key, auth_scheme)
    headers = {"Accept": accept or RECURLY_API_ACCEPT}
    headers.update(auth_headers)
    url = f"{_build_base_url(base_url)}{path}"

    try:
        response = _request_with_retry(
            method="GET",
            url=url,
            headers=headers,
            auth=basic_auth,
            timeout_seconds=timeout_seconds,
            params=params,
        )
    except httpx.HTTPError as exc:
        incr_metric("recurly.requests", auth_scheme=auth_scheme, status_code="error")
        log_event(
            "recurly_request_failed",
            level=logging.WARNING,
            request_id=request_id,
            path=path,
            auth_scheme=auth_scheme,
            error=str(exc),
        )
        raise RecurlyProviderError(f"Recurly connectivity error: {exc}", path=path) from exc

    incr_metric("recurly.requests", auth_scheme=auth_scheme, status_code=response.status_code)
    log_event(
        "recurly_request",
        request_id=request_id,
        path=path,
        params=params,
        auth_scheme=auth_scheme,
        status_code=response.status_code,
        body_snippet=body_snippet(response.text),
    )

    if response.status_code in {401, 403}:
        raise RecurlyProviderError(
            f"Recurly rejected credentials ({auth_scheme}) for {path}",
            status_code=response.status_code,
            path=path,
        )
    if response.status_code == 404:
        raise RecurlyProviderError(f"Recurly resource not found: {path}", status_code=404, path=path)
    if response.status_code >= 400:
        raise RecurlyProviderError(
            f"Recurly API returned HTTP {response.status_code}: {body_snippet(response.text)}",
            status_code=response.status_code,
            path=path,
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise RecurlyProviderError(
            "Recurly returned non-JSON response", status_code=response.status_code, path=path
        ) from exc
    if not isinstance(data, dict):
        raise RecurlyProviderError(
            "Unexpected Recurly response type", status_code=response.status_code, path=path
        )
    return data
