"""Shared helpers for the requests-based API clients."""

from typing import Any

import requests

from mrpilot.errors import ApiError

DEFAULT_TIMEOUT = 30


def raise_for_status(service: str, response: requests.Response) -> None:
    """Raise ApiError for any non-2xx response, keeping a short body excerpt."""
    if 200 <= response.status_code < 300:
        return
    body = (response.text or "").strip()
    raise ApiError(service, response.status_code, body[:300] or response.reason or "request failed")


def json_or_empty(response: requests.Response) -> Any:
    if not response.content:
        return {}
    return response.json()
