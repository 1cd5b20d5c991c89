"""Client-side HTTP calls to the xbridge server endpoints."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any

import httpx

from ..exceptions import ExchangeFailed, NetworkTimeout, RefreshFailed
from ..types import ExchangeResult, ProviderTokenSet


logger = logging.getLogger("xbridge.auth")


class AuthApiClient:
    """Calls the server's exchange and refresh endpoints.

    Parameters
    ----------
    base_url : str
        Base URL of the server hosting ``/api/auth/*``.
    timeout : float
        Seconds before a call is abandoned.
    http_client : httpx.AsyncClient, optional
        Pre-configured HTTP client (for testing).
    """

    EXCHANGE_PATH = "/api/auth/twitter/token"  # noqa: S105
    REFRESH_PATH = "/api/auth/twitter/refresh"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        error_cls: type[ExchangeFailed] | type[RefreshFailed],
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            msg = f"Request to {path} timed out"
            raise NetworkTimeout(msg, timeout=self.timeout) from exc
        except httpx.TransportError as exc:
            msg = f"Request to {path} could not reach the server: {exc!r}"
            raise NetworkTimeout(msg, timeout=self.timeout) from exc
        except httpx.HTTPError as exc:
            msg = f"Request to {path} failed: {exc!r}"
            raise error_cls(msg) from exc

        if resp.status_code == 504:
            msg = f"Server reported an upstream timeout on {path}"
            raise NetworkTimeout(msg, timeout=self.timeout)
        if not resp.is_success:
            msg = _error_message(resp) or f"Request to {path} failed"
            raise error_cls(msg, status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            msg = f"Response from {path} is not JSON"
            raise error_cls(msg, status_code=resp.status_code) from exc
        if not isinstance(data, dict):
            msg = f"Response from {path} is not a JSON object"
            raise error_cls(msg, status_code=resp.status_code)
        return data

    async def exchange_code(
        self,
        code: str,
        verifier: str,
        state: str,
        referral_code: str | None = None,
    ) -> ExchangeResult:
        """POST the callback values to the exchange endpoint.

        Raises
        ------
        ExchangeFailed
            If the server rejects the exchange.
        NetworkTimeout
            If the server or its upstream timed out.
        """
        payload: dict[str, Any] = {"code": code, "verifier": verifier, "state": state}
        if referral_code:
            payload["referral_code"] = referral_code
        data = await self._post(self.EXCHANGE_PATH, payload, ExchangeFailed)
        try:
            return ExchangeResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            msg = "Malformed exchange response"
            raise ExchangeFailed(msg) from exc

    async def refresh(self, refresh_token: str) -> ProviderTokenSet:
        """POST a refresh token to the refresh endpoint.

        A response without a refresh token keeps ``refresh_token``.

        Raises
        ------
        RefreshFailed
            If the server or provider rejects the refresh.
        NetworkTimeout
            If the server or its upstream timed out.
        """
        data = await self._post(self.REFRESH_PATH, {"refresh_token": refresh_token}, RefreshFailed)
        try:
            tokens = ProviderTokenSet.from_dict(data["tokens"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = "Malformed refresh response"
            raise RefreshFailed(msg) from exc
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None
