"""Shared test helpers."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from xbridge.types import ProviderTokenSet, now_ms


def make_tokens(
    expires_in_ms: int = 3_600_000,
    refresh_token: str | None = "rt_1",
    access_token: str = "at_1",
) -> ProviderTokenSet:
    """Build a provider token set expiring ``expires_in_ms`` from now."""
    return ProviderTokenSet(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now_ms() + expires_in_ms,
    )


def mock_response(status_code: int = 200, body: Any = None) -> MagicMock:
    """Create a mock ``httpx.Response``."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    if isinstance(body, Exception):
        resp.text = ""
        resp.json.side_effect = body
    else:
        resp.text = "" if body is None else str(body)
        resp.json.return_value = body if body is not None else {}
    return resp


def mock_http_client(**methods: Any) -> MagicMock:
    """Create a mock ``httpx.AsyncClient`` with the given async methods."""
    client = MagicMock()
    client.is_closed = False
    for name, mock in methods.items():
        setattr(client, name, mock)
    return client
