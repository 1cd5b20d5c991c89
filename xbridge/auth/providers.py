"""OAuth2 provider abstractions (server side).

Defines the OAuthProvider ABC and the X (Twitter) implementation. These
classes hold the confidential client secret and must only run on the
server; the client never talks to the provider's token endpoint.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import ExchangeFailed, NetworkTimeout, RefreshFailed
from ..types import IdentityProfile, ProviderTokenSet


if TYPE_CHECKING:
    from ..config import ProviderSettings


logger = logging.getLogger("xbridge.auth")


class OAuthProvider(ABC):
    """Abstract base class for OAuth2 providers.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    redirect_uri : str
        The redirect URI used in the authorization request.
    token_url : str
        The provider's token exchange endpoint.
    userinfo_url : str
        The provider's identity profile endpoint.
    timeout : float
        Seconds before a provider call is abandoned.
    http_client : httpx.AsyncClient, optional
        Pre-configured HTTP client (for testing).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        timeout: float = 30.0,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize OAuth provider."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self._http_client = http_client

    @property
    def name(self) -> str:
        """Provider name used in errors and logs."""
        return self.__class__.__name__

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _post_token(
        self,
        data: dict[str, str],
        error_cls: type[ExchangeFailed] | type[RefreshFailed],
        action: str,
    ) -> dict[str, Any]:
        """POST a grant to the token endpoint with client credentials.

        Raises
        ------
        NetworkTimeout
            If the provider does not answer in time.
        ExchangeFailed or RefreshFailed
            If the provider rejects the grant.
        """
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url,
                data=data,
                auth=(self.client_id, self.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            msg = f"Provider {action} timed out"
            raise NetworkTimeout(msg, timeout=self.timeout, provider=self.name) from exc
        except httpx.HTTPError as exc:
            msg = f"Provider {action} request failed: {exc}"
            raise error_cls(msg, provider=self.name) from exc

        if not resp.is_success:
            logger.error("Provider %s failed: %s %s", action, resp.status_code, resp.text)
            msg = f"Provider {action} failed"
            raise error_cls(msg, provider=self.name, status_code=resp.status_code)

        data = _json_object(resp)
        if data is None or not data.get("access_token"):
            msg = f"Provider {action} returned an invalid body"
            raise error_cls(msg, provider=self.name, status_code=502)
        return data

    @abstractmethod
    async def exchange_code(self, code: str, verifier: str) -> ProviderTokenSet:
        """Exchange an authorization code and PKCE verifier for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        verifier : str
            The PKCE code verifier that matches the challenge sent
            to the authorization endpoint.

        Returns
        -------
        ProviderTokenSet
            The token set from the provider.

        Raises
        ------
        ExchangeFailed
            If the provider rejects the code/verifier pair.
        NetworkTimeout
            If the provider does not answer in time.
        """

    @abstractmethod
    async def refresh_tokens(self, refresh_token: str) -> ProviderTokenSet:
        """Refresh an access token.

        Parameters
        ----------
        refresh_token : str
            The refresh token.

        Returns
        -------
        ProviderTokenSet
            A new token set with a fresh access token.

        Raises
        ------
        RefreshFailed
            If the refresh token is invalid or expired.
        """

    @abstractmethod
    async def get_profile(self, access_token: str) -> IdentityProfile:
        """Fetch the identity profile for an access token.

        Raises
        ------
        ExchangeFailed
            If the identity endpoint rejects the request.
        """


class XProvider(OAuthProvider):
    """X (Twitter) OAuth 2.0 provider.

    Uses the confidential client flow: the client credentials are sent
    with HTTP Basic auth on every token request.
    """

    DEFAULT_AUTHORIZE_URL = "https://x.com/i/oauth2/authorize"
    DEFAULT_TOKEN_URL = "https://api.x.com/2/oauth2/token"  # noqa: S105
    DEFAULT_USERINFO_URL = "https://api.twitter.com/2/users/me"
    DEFAULT_SCOPES = ("tweet.read", "users.read", "offline.access")

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: list[str] | None = None,
        token_url: str = "",
        userinfo_url: str = "",
        user_fields: str = "",
        timeout: float = 30.0,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the X provider."""
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            token_url=token_url or self.DEFAULT_TOKEN_URL,
            userinfo_url=userinfo_url or self.DEFAULT_USERINFO_URL,
            timeout=timeout,
            http_client=http_client,
        )
        self.scopes = scopes or list(self.DEFAULT_SCOPES)
        self.user_fields = user_fields

    async def exchange_code(self, code: str, verifier: str) -> ProviderTokenSet:
        """Exchange authorization code for tokens via the X token endpoint."""
        data = await self._post_token(
            {
                "client_id": self.client_id,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code_verifier": verifier,
                "scope": " ".join(self.scopes),
            },
            ExchangeFailed,
            "code exchange",
        )
        return ProviderTokenSet.from_token_response(data)

    async def refresh_tokens(self, refresh_token: str) -> ProviderTokenSet:
        """Refresh tokens; X may or may not rotate the refresh token."""
        data = await self._post_token(
            {
                "client_id": self.client_id,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            RefreshFailed,
            "token refresh",
        )
        return ProviderTokenSet.from_token_response(data, previous_refresh_token=refresh_token)

    async def get_profile(self, access_token: str) -> IdentityProfile:
        """Fetch ``/2/users/me`` with the configured user fields."""
        client = await self._get_client()
        params = {"user.fields": self.user_fields} if self.user_fields else None
        try:
            resp = await client.get(
                self.userinfo_url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            msg = "Identity profile fetch timed out"
            raise NetworkTimeout(msg, timeout=self.timeout, provider=self.name) from exc
        except httpx.HTTPError as exc:
            msg = f"Identity profile request failed: {exc}"
            raise ExchangeFailed(msg, provider=self.name) from exc

        if not resp.is_success:
            logger.error("User info fetch failed: %s %s", resp.status_code, resp.text)
            msg = "Failed to get user info"
            raise ExchangeFailed(msg, provider=self.name, status_code=resp.status_code)

        body = _json_object(resp)
        if body is None:
            msg = "Identity profile response is not a JSON object"
            raise ExchangeFailed(msg, provider=self.name, status_code=502)
        user = body.get("data") or {}
        if not user.get("username"):
            msg = "Identity profile has no username"
            raise ExchangeFailed(msg, provider=self.name, status_code=502)
        return IdentityProfile.from_dict(user)


def _json_object(resp: httpx.Response) -> dict[str, Any] | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_provider_from_settings(settings: ProviderSettings, timeout: float = 30.0) -> XProvider:
    """Create the provider from ``ProviderSettings``.

    Parameters
    ----------
    settings : ProviderSettings
        The provider configuration.
    timeout : float
        Seconds before a provider call is abandoned.

    Returns
    -------
    XProvider
        A configured provider instance.

    Raises
    ------
    ValueError
        If the client credentials are missing.
    """
    if not settings.client_id:
        msg = "XBRIDGE_PROVIDER__CLIENT_ID is required"
        raise ValueError(msg)
    if not settings.client_secret:
        msg = "XBRIDGE_PROVIDER__CLIENT_SECRET is required on the server"
        raise ValueError(msg)
    return XProvider(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes.split(),
        token_url=settings.token_url,
        userinfo_url=settings.userinfo_url,
        user_fields=settings.user_fields,
        timeout=timeout,
    )
