"""Auth Context: the state shell applications subscribe to.

``AuthContext`` ties the flow manager, refresh scheduler and token
store together for one client session. It completes a pending
callback on mount, tracks whether the user is signed in (strictly: an
application session token is stored) and notifies subscribers.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..exceptions import AuthenticationError, SessionExpired
from ..types import AuthEvent, CallbackStatus
from .token_store import StorageKeys


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..types import IdentityProfile, StorageChange
    from .flow import AuthFlowManager
    from .session import RefreshScheduler
    from .token_store import TokenStore


logger = logging.getLogger("xbridge.auth")

CALLBACK_PARAMS = ("twitter_auth", "code", "state")


def split_callback_url(url: str) -> tuple[str, str | None, str | None]:
    """Strip the callback parameters from ``url``.

    Returns
    -------
    tuple
        ``(clean_url, code, state)``; ``code`` and ``state`` are None
        unless the URL carries a completed-callback marker.
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    params = dict(query)
    remaining = [(k, v) for k, v in query if k not in CALLBACK_PARAMS]
    clean = urlunsplit(parts._replace(query=urlencode(remaining)))

    code, state = params.get("code"), params.get("state")
    if params.get("twitter_auth") != "success" or not code or not state:
        return url, None, None
    return clean, code, state


class AuthContext:
    """Client-side auth state for one application session.

    Parameters
    ----------
    flow : AuthFlowManager
        Starts logins and completes callbacks.
    scheduler : RefreshScheduler
        Keeps the provider token fresh while mounted.
    store : TokenStore
        The token store shared with ``flow`` and ``scheduler``.
    dismiss_delay : float
        Seconds before the callback status indicator is hidden.
    navigate : callable, optional
        Called with the return path after a successful login when it
        differs from the current path.
    """

    def __init__(
        self,
        flow: AuthFlowManager,
        scheduler: RefreshScheduler,
        store: TokenStore,
        dismiss_delay: float = 2.0,
        navigate: Callable[[str], object] | None = None,
    ) -> None:
        self.flow = flow
        self.scheduler = scheduler
        self.store = store
        self.dismiss_delay = dismiss_delay
        self.navigate = navigate

        self.user: IdentityProfile | None = None
        self.is_loading = True
        self.status = CallbackStatus.HIDDEN
        self.current_path = "/"

        self._authenticated = False
        self._listeners: list[Callable[[AuthEvent], None]] = []
        self._unsubscribe_store: Callable[[], None] | None = None
        self._dismiss_task: asyncio.Task[None] | None = None

    @property
    def is_authenticated(self) -> bool:
        """True when an application session token is stored."""
        return self._authenticated

    @property
    def pending_dismiss(self) -> asyncio.Task[None] | None:
        """The scheduled status dismissal, if one is pending."""
        return self._dismiss_task

    def subscribe(self, listener: Callable[[AuthEvent], None]) -> Callable[[], None]:
        """Register a listener for ``AuthEvent`` notifications.

        Returns
        -------
        callable
            Function that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Auth listener failed on %s", event.value)

    def _set_status(self, status: CallbackStatus) -> None:
        if status is not self.status:
            self.status = status
            self._notify(AuthEvent.STATUS_CHANGED)

    def _set_user(self, user: IdentityProfile | None) -> None:
        if user != self.user:
            self.user = user
            self._notify(AuthEvent.USER_UPDATED)

    def _on_storage_change(self, change: StorageChange) -> None:
        if change.key != StorageKeys.SESSION_TOKEN:
            return
        if change.new_value:
            if not self._authenticated:
                self._authenticated = True
                self._notify(AuthEvent.SIGNED_IN)
            return
        was_authenticated = self._authenticated
        self._authenticated = False
        self._set_user(None)
        if was_authenticated:
            origin = "another context" if change.external else "this context"
            logger.info("Application session cleared from %s", origin)
            self._notify(AuthEvent.SIGNED_OUT)

    async def mount(self, url: str = "/") -> str:
        """Attach to the token store and complete a pending callback.

        Parameters
        ----------
        url : str
            The URL the client was opened at. A URL carrying
            ``twitter_auth=success&code&state`` completes a login.

        Returns
        -------
        str
            ``url`` with the callback parameters removed.
        """
        clean_url, code, state = split_callback_url(url)
        self.current_path = urlsplit(clean_url).path or "/"

        if self._unsubscribe_store is None:
            self._unsubscribe_store = self.store.subscribe(self._on_storage_change)
        self._authenticated = await self.store.session.exists()

        if code and state:
            await self._complete_callback(code, state)

        if self.user is None:
            await self.refresh_user()

        self.is_loading = False
        self.store.start_watching()
        await self.scheduler.start()
        return clean_url

    async def _complete_callback(self, code: str, state: str) -> None:
        self._set_status(CallbackStatus.VERIFYING)
        try:
            user = await self.flow.handle_callback(code, state)
        except SessionExpired:
            # Reload of a consumed callback URL; the user can log in again.
            logger.info("Login session expired, ignoring callback")
            self._set_status(CallbackStatus.HIDDEN)
            return
        except AuthenticationError as exc:
            logger.error("Auth callback failed: %s", exc)
            self._set_status(CallbackStatus.ERROR)
            self._schedule_dismiss(None)
            return
        except Exception:
            logger.exception("Auth callback failed")
            self._set_status(CallbackStatus.ERROR)
            self._schedule_dismiss(None)
            return

        self._set_status(CallbackStatus.SUCCESS)
        self._set_user(user)
        self._notify(AuthEvent.TOKEN_READY)
        return_path = await self.flow.consume_return_path()
        self._schedule_dismiss(return_path)

    def _schedule_dismiss(self, return_path: str | None) -> None:
        if self._dismiss_task is not None and not self._dismiss_task.done():
            self._dismiss_task.cancel()
        self._dismiss_task = asyncio.create_task(self._dismiss_later(return_path))

    async def _dismiss_later(self, return_path: str | None) -> None:
        await asyncio.sleep(self.dismiss_delay)
        self._set_status(CallbackStatus.HIDDEN)
        if return_path and return_path != self.current_path:
            self.current_path = return_path
            if self.navigate is not None:
                self.navigate(return_path)

    async def login(self, current_path: str | None = None) -> str:
        """Start a login that returns to ``current_path`` (default: the current path)."""
        return await self.flow.initiate_login(current_path or self.current_path)

    async def logout(self) -> None:
        """Sign out fully: clear provider tokens, profile and session token."""
        await self.scheduler.cancel_inflight()
        await self.store.provider.clear()
        await self.store.session.clear()
        self._authenticated = False
        self._set_user(None)

    async def refresh_user(self) -> IdentityProfile | None:
        """Reload the cached identity profile while the provider token is valid."""
        if await self.store.provider.is_authenticated():
            self._set_user(await self.store.provider.load_profile())
        return self.user

    async def on_visibility_change(self, visible: bool) -> None:
        """Forward a visibility change to the refresh scheduler."""
        await self.scheduler.on_visibility_change(visible)

    async def unmount(self) -> None:
        """Stop background work and detach from the token store."""
        if self._dismiss_task is not None and not self._dismiss_task.done():
            self._dismiss_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dismiss_task
        self._dismiss_task = None
        await self.scheduler.stop()
        await self.store.stop_watching()
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
