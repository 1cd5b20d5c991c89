"""Server half of the callback exchange.

``TokenExchangeService`` turns an authorization code and PKCE verifier
into provider tokens, fetches the identity profile, then links the
identity to an application account. Account linking is best effort:
provider authentication alone is enough for the login to succeed.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..exceptions import LinkingDegraded
from ..types import ExchangeResult


if TYPE_CHECKING:
    from ..types import IdentityProfile, ProviderTokenSet
    from .accounts import AccountServiceClient
    from .providers import OAuthProvider


logger = logging.getLogger("xbridge.auth")


class TokenExchangeService:
    """Coordinates the provider exchange and account linking.

    Parameters
    ----------
    provider : OAuthProvider
        The configured provider (holds the client secret).
    accounts : AccountServiceClient
        Client for the application backend's account endpoints.
    """

    def __init__(self, provider: OAuthProvider, accounts: AccountServiceClient) -> None:
        self.provider = provider
        self.accounts = accounts

    async def exchange(
        self,
        code: str,
        verifier: str,
        state: str,
        referral_code: str | None = None,
    ) -> ExchangeResult:
        """Exchange a callback code for tokens, profile and session token.

        Parameters
        ----------
        code : str
            The authorization code from the provider redirect.
        verifier : str
            The PKCE verifier generated when the login started.
        state : str
            The returned CSRF state. Validation happens on the client,
            which owns the stored value; it is only logged here.
        referral_code : str, optional
            Referral code recorded when a new account is created.

        Returns
        -------
        ExchangeResult
            Provider tokens, identity profile and, when linking worked,
            the application session token.

        Raises
        ------
        ExchangeFailed
            If the provider rejects the code or the profile fetch fails.
        NetworkTimeout
            If a provider call times out.
        """
        logger.debug("Exchanging authorization code via %s", self.provider.name)
        tokens = await self.provider.exchange_code(code, verifier)
        profile = await self.provider.get_profile(tokens.access_token)

        db_token = await self.link_account(profile, referral_code)
        if db_token:
            await self._update_account(db_token, profile)
        else:
            logger.warning("Login for %s completed without an application session", profile.handle)

        logger.info("User %s authenticated via %s", profile.handle, self.provider.name)
        return ExchangeResult(tokens=tokens, user=profile, db_token=db_token)

    async def refresh(self, refresh_token: str) -> ProviderTokenSet:
        """Refresh provider tokens, carrying the refresh token over if not rotated."""
        return await self.provider.refresh_tokens(refresh_token)

    async def link_account(
        self, profile: IdentityProfile, referral_code: str | None = None
    ) -> str | None:
        """Find or create the account for ``profile`` and return its session token.

        Lookup failures fall through to creation. When creation succeeds
        but returns no token, the lookup is retried exactly once. No
        failure here is raised to the caller.
        """
        handle = profile.handle
        try:
            token = await self.accounts.lookup(handle)
        except LinkingDegraded as exc:
            logger.warning("Account lookup failed: %s", exc)
            token = None
        if token:
            return token

        try:
            token = await self.accounts.create(profile, referral_code)
        except LinkingDegraded as exc:
            logger.warning("Account creation failed: %s", exc)
            return None
        if token:
            return token

        try:
            return await self.accounts.lookup(handle)
        except LinkingDegraded as exc:
            logger.warning("Account lookup after creation failed: %s", exc)
            return None

    async def _update_account(self, db_token: str, profile: IdentityProfile) -> None:
        try:
            await self.accounts.update(db_token, profile)
        except LinkingDegraded as exc:
            logger.warning("Account profile update failed: %s", exc)
