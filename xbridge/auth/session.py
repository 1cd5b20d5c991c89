"""Provider token refresh scheduling.

``RefreshScheduler`` keeps the provider access token fresh for the life
of a client session. It runs on mount, on a periodic timer and when the
client becomes visible again. All triggers funnel into one in-flight
task, so concurrent triggers share a single refresh call.

The scheduler only ever holds ``ProviderCredentials``; it has no way to
reach the application session token.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING

from ..exceptions import NetworkTimeout, RefreshFailed
from ..log import log_background_error


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..types import ProviderTokenSet
    from .api import AuthApiClient
    from .token_store import ProviderCredentials


logger = logging.getLogger("xbridge.auth")


class RefreshScheduler:
    """Keeps the provider token set fresh.

    Parameters
    ----------
    credentials : ProviderCredentials
        The provider slot of the token store.
    api : AuthApiClient
        Client for the server's refresh endpoint.
    threshold_seconds : int
        Refresh when the token expires within this window (default 5 min).
    interval_seconds : float
        Seconds between periodic checks (default ``60``).
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        api: AuthApiClient,
        threshold_seconds: int = 300,
        interval_seconds: float = 60.0,
    ) -> None:
        """Initialize the refresh scheduler."""
        self.credentials = credentials
        self.api = api
        self.threshold_ms = threshold_seconds * 1000
        self.interval_seconds = interval_seconds

        self._inflight: asyncio.Task[bool] | None = None
        self._timer_task: asyncio.Task[None] | None = None

    @property
    def is_refreshing(self) -> bool:
        """True while a check-and-refresh routine is running."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is active."""
        return self._timer_task is not None and not self._timer_task.done()

    async def _guarded(self, routine: Callable[[], Awaitable[bool]]) -> bool:
        """Run ``routine`` unless one is already in flight; then join that one."""
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Token refresh already in progress, joining it")
        else:
            self._inflight = asyncio.ensure_future(routine())
        task = self._inflight
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                logger.debug("Token refresh was cancelled")
                return False
            raise

    async def is_close_to_expiry(self) -> bool:
        """True when the stored token expires within the threshold window."""
        tokens = await self.credentials.load_tokens()
        if tokens is None:
            return False
        return tokens.is_close_to_expiry(self.threshold_ms)

    async def ensure_valid_token(self) -> bool:
        """Refresh the provider token if it is close to expiry or expired.

        Refreshes when the token is valid but inside the threshold
        window, or when it is missing/expired and a refresh token is
        stored. Anything else is a no-op.

        Returns
        -------
        bool
            True when a refresh happened and succeeded.
        """
        return await self._guarded(self._check_and_refresh)

    async def _check_and_refresh(self) -> bool:
        tokens = await self.credentials.load_tokens()
        authenticated = tokens is not None and not tokens.is_expired()
        close_to_expiry = tokens is not None and tokens.is_close_to_expiry(self.threshold_ms)
        can_refresh = await self.credentials.can_refresh()

        logger.debug(
            "Token check: authenticated=%s, close_to_expiry=%s, can_refresh=%s",
            authenticated,
            close_to_expiry,
            can_refresh,
        )

        if not can_refresh or (authenticated and not close_to_expiry):
            return False

        if authenticated:
            logger.info("Provider token close to expiry, refreshing")
        else:
            logger.info("Provider token expired, attempting silent refresh")

        try:
            if await self.refresh_access_token() is None:
                return False
        except NetworkTimeout as exc:
            logger.warning("Provider token refresh timed out, will retry: %s", exc)
            return False
        except RefreshFailed as exc:
            logger.error("Failed to refresh provider token: %s", exc)
            await self.credentials.clear()
            return False
        return True

    async def refresh_access_token(self) -> ProviderTokenSet | None:
        """Exchange the stored refresh token for a new token set and store it.

        The new set is only stored when the refresh token is still the
        one that was sent; a logout or another login meanwhile wins.

        Returns
        -------
        ProviderTokenSet or None
            The stored token set, or None when it was discarded.

        Raises
        ------
        RefreshFailed
            If no refresh token is stored or the server rejects it.
        NetworkTimeout
            If the refresh endpoint timed out.
        """
        refresh_token = await self.credentials.refresh_token()
        if refresh_token is None:
            msg = "No refresh token available"
            raise RefreshFailed(msg)

        tokens = await self.api.refresh(refresh_token)
        if await self.credentials.refresh_token() != refresh_token:
            logger.info("Provider tokens changed during refresh, discarding the result")
            return None
        await self.credentials.save_tokens(tokens)
        logger.info("Provider token refreshed")
        return tokens

    async def try_refresh_expired_token(self) -> bool:
        """Attempt a guarded refresh and report whether it worked.

        Unlike ``ensure_valid_token`` this never clears stored tokens.
        """
        if not await self.credentials.can_refresh():
            logger.debug("No refresh token available")
            return False
        return await self._guarded(self._refresh_quietly)

    async def _refresh_quietly(self) -> bool:
        try:
            tokens = await self.refresh_access_token()
        except (RefreshFailed, NetworkTimeout) as exc:
            logger.warning("Failed to refresh provider token: %s", exc)
            return False
        return tokens is not None

    async def cancel_inflight(self) -> None:
        """Cancel a running refresh and wait until it has stopped."""
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._inflight = None

    async def on_visibility_change(self, visible: bool) -> None:
        """Check the token when the client becomes visible again."""
        if visible:
            await self.ensure_valid_token()

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.ensure_valid_token()
            except Exception as exc:  # noqa: BLE001
                log_background_error("token refresh", exc)

    async def start(self) -> None:
        """Run an immediate check, then start the periodic timer (idempotent)."""
        if self.is_running:
            return
        self._timer_task = asyncio.create_task(self._run_periodic())
        try:
            await self.ensure_valid_token()
        except Exception as exc:  # noqa: BLE001
            log_background_error("token refresh", exc)

    async def stop(self) -> None:
        """Stop the periodic timer and cancel any in-flight refresh."""
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
        self._timer_task = None
        await self.cancel_inflight()
