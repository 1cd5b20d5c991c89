"""Client half of the OAuth2 PKCE login.

Provides ``AuthFlowManager``, which starts a login by redirecting to
the provider's authorization page and completes it when the provider
redirect comes back with ``code`` and ``state``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import secrets
import webbrowser

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from ..exceptions import AuthenticationError, CsrfMismatch, SessionExpired
from ..types import AuthFlowState
from .host import StaticHostDetector
from .pkce import PKCEChallenge


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import XBridgeSettings
    from ..types import IdentityProfile
    from .api import AuthApiClient
    from .host import HostDetector
    from .token_store import TokenStore


logger = logging.getLogger("xbridge.auth")


def build_authorize_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    pkce: PKCEChallenge,
) -> str:
    """Build the provider authorization URL for ``pkce``.

    Only the challenge leaves the client here; the verifier stays in
    the token store until the exchange.
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "code_challenge": pkce.challenge,
        "code_challenge_method": pkce.method,
        "state": pkce.csrf_state,
    }
    return f"{authorize_url}?{urlencode(params)}"


class AuthFlowManager:
    """Orchestrates the PKCE login on the client.

    Parameters
    ----------
    store : TokenStore
        Token store holding flow state and credentials.
    api : AuthApiClient
        Client for the server's exchange endpoint.
    client_id : str
        The public OAuth2 client ID.
    redirect_uri : str
        The registered redirect URI (the server callback route).
    scopes : list[str]
        Scopes to request.
    authorize_url : str
        The provider's authorization endpoint.
    host_detector : HostDetector, optional
        Reports whether the client runs inside a mini-app host.
        Resolved once, at construction. Defaults to an ordinary browser.
    open_url : callable, optional
        Navigates to the authorization URL. Defaults to ``webbrowser.open``.
    allow_missing_state : bool
        Accept a callback whose stored CSRF state is gone, provided the
        verifier is still present. The anomaly is logged.
    """

    def __init__(
        self,
        store: TokenStore,
        api: AuthApiClient,
        client_id: str,
        redirect_uri: str,
        scopes: list[str],
        authorize_url: str,
        host_detector: HostDetector | None = None,
        open_url: Callable[[str], object] | None = None,
        allow_missing_state: bool = True,
    ) -> None:
        """Initialize the auth flow manager."""
        self.store = store
        self.api = api
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.authorize_url = authorize_url
        self.host_kind = (host_detector or StaticHostDetector()).detect()
        self.open_url = open_url or webbrowser.open
        self.allow_missing_state = allow_missing_state

        self._flow_state = AuthFlowState.IDLE
        self._flow_id: str | None = None

    @property
    def flow_state(self) -> AuthFlowState:
        """Current state of the callback exchange."""
        return self._flow_state

    async def initiate_login(self, current_path: str = "/") -> str:
        """Start a login and navigate to the provider's authorization page.

        Parameters
        ----------
        current_path : str
            Path to return to once the login completes.

        Returns
        -------
        str
            The authorization URL that was opened.
        """
        pkce = PKCEChallenge.generate()
        await self.store.flow.begin(pkce, current_path, self.host_kind)

        url = build_authorize_url(
            self.authorize_url, self.client_id, self.redirect_uri, self.scopes, pkce
        )
        logger.info("Starting login (host=%s, return=%s)", self.host_kind.value, current_path)
        self.open_url(url)
        return url

    async def handle_callback(
        self,
        code: str,
        state: str,
        referral_code: str | None = None,
    ) -> IdentityProfile:
        """Complete a login from the provider redirect.

        Parameters
        ----------
        code : str
            The authorization code.
        state : str
            The returned CSRF state.
        referral_code : str, optional
            Sent with the exchange; defaults to the stored referral code.

        Returns
        -------
        IdentityProfile
            The signed-in identity. A replayed callback on an already
            signed-in client returns the cached profile.

        Raises
        ------
        SessionExpired
            If no verifier is stored (other context, cleared storage or
            a verifier that was already used).
        CsrfMismatch
            If the returned state differs from the stored one.
        ExchangeFailed
            If the server or provider rejects the exchange.
        NetworkTimeout
            If the exchange timed out.
        """
        self._flow_id = secrets.token_urlsafe(8)
        self._flow_state = AuthFlowState.VERIFYING

        try:
            if await self.store.session.exists():
                cached = await self.store.provider.load_profile()
                if cached is not None:
                    logger.info("Already signed in, skipping duplicate callback")
                    await self.store.flow.discard_secrets()
                    self._flow_state = AuthFlowState.SUCCESS
                    return cached

            verifier = await self._consume_flow_secrets(state)

            if referral_code is None:
                referral_code = await self.store.flow.referral_code()

            result = await self.api.exchange_code(code, verifier, state, referral_code)

            await self.store.provider.save_tokens(result.tokens)
            await self.store.provider.save_profile(result.user)
            if result.db_token:
                await self.store.session.set(result.db_token)
            else:
                logger.warning("Exchange returned no application session token")
        except AuthenticationError as exc:
            self._flow_state = AuthFlowState.ERROR
            if exc.flow_id is None:
                exc.flow_id = self._flow_id
                exc.context["flow_id"] = self._flow_id
            raise
        except Exception:
            self._flow_state = AuthFlowState.ERROR
            raise

        self._flow_state = AuthFlowState.SUCCESS
        logger.info("Login completed for %s", result.user.handle)
        return result.user

    async def _consume_flow_secrets(self, state: str) -> str:
        """Validate and delete the stored verifier and CSRF state.

        Both values are removed before this returns, whatever the
        outcome, so they can never be used for a second exchange.
        """
        verifier = await self.store.flow.verifier()
        stored_state = await self.store.flow.csrf_state()
        await self.store.flow.discard_secrets()

        if not verifier:
            msg = "Login session expired. Please try logging in again."
            raise SessionExpired(msg, flow_id=self._flow_id)

        if not stored_state:
            if not self.allow_missing_state:
                msg = "Stored login state is missing"
                raise CsrfMismatch(msg, flow_id=self._flow_id)
            logger.warning("Login state missing, proceeding with the code verifier only")
        elif not secrets.compare_digest(stored_state, state):
            logger.error("State mismatch on callback (flow %s)", self._flow_id)
            msg = "Invalid state parameter, possible CSRF attack"
            raise CsrfMismatch(msg, flow_id=self._flow_id)

        return verifier

    async def consume_return_path(self) -> str | None:
        """Return and forget the path the login was started from."""
        return await self.store.flow.consume_return_path()


def create_flow_from_settings(
    settings: XBridgeSettings,
    store: TokenStore,
    api: AuthApiClient,
    host_detector: HostDetector | None = None,
    open_url: Callable[[str], object] | None = None,
) -> AuthFlowManager:
    """Create an ``AuthFlowManager`` from settings.

    Only public provider settings are read; the client secret is never
    needed on this side.
    """
    return AuthFlowManager(
        store=store,
        api=api,
        client_id=settings.provider.client_id,
        redirect_uri=settings.provider.redirect_uri,
        scopes=settings.provider.scopes.split(),
        authorize_url=settings.provider.authorize_url,
        host_detector=host_detector,
        open_url=open_url,
        allow_missing_state=settings.client.allow_missing_state,
    )
