"""Client for the application backend's account endpoints.

The backend keys accounts by the lowercased provider handle and hands
out the application session token. Every call is bounded by a timeout
and failures surface as ``LinkingDegraded``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import LinkingDegraded


if TYPE_CHECKING:
    from ..types import IdentityProfile


logger = logging.getLogger("xbridge.auth")

_JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}


class AccountServiceClient:
    """Async client for account lookup, creation and update.

    Parameters
    ----------
    base_url : str
        Base URL of the account API.
    timeout : float
        Seconds before a call is abandoned.
    http_client : httpx.AsyncClient, optional
        Pre-configured HTTP client (for testing).
    """

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

    async def _request(
        self,
        method: str,
        path: str,
        handle: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            resp = await client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"Account service {method} {path} failed: {exc!r}"
            raise LinkingDegraded(msg, handle=handle) from exc
        if not resp.is_success:
            msg = f"Account service {method} {path} returned {resp.status_code}"
            raise LinkingDegraded(msg, handle=handle, status_code=resp.status_code)
        try:
            return resp.json()  # type: ignore[no-any-return]
        except ValueError as exc:
            msg = f"Account service {method} {path} returned invalid JSON"
            raise LinkingDegraded(msg, handle=handle) from exc

    async def check_handle(self, handle: str) -> dict[str, Any]:
        """Return the raw lookup payload for ``handle``."""
        return await self._request(
            "GET",
            "/auth/check-twitter-handle",
            handle,
            params={"account_handle": handle},
            headers=_JSON_HEADERS,
        )

    async def lookup(self, handle: str) -> str | None:
        """Return the session token of the account for ``handle``, if it exists."""
        data = await self.check_handle(handle)
        return _result_token(data)

    async def create(
        self, profile: IdentityProfile, referral_code: str | None = None
    ) -> str | None:
        """Create an account seeded from ``profile``.

        Returns
        -------
        str or None
            The session token when the backend returns one immediately.
        """
        body = {
            "x_handle": profile.handle,
            "profile_image_url": profile.profile_image_url,
            **profile.account_fields(),
            "referral_code_used": referral_code or "",
        }
        data = await self._request(
            "POST", "/user/create-user", profile.handle, json=body, headers=_JSON_HEADERS
        )
        return _result_token(data)

    async def update(self, token: str, profile: IdentityProfile) -> None:
        """Push the latest profile fields onto the account."""
        await self._request(
            "PUT",
            "/user/update-user",
            profile.handle,
            json=profile.account_fields(),
            headers={**_JSON_HEADERS, "Authorization": f"Bearer {token}"},
        )


def _result_token(data: dict[str, Any]) -> str | None:
    result = data.get("result") if isinstance(data, dict) else None
    if isinstance(result, dict) and result.get("token"):
        return str(result["token"])
    return None
