"""Token Store facade over client key/value storage.

All components read and write credentials through ``TokenStore``
rather than the raw storage backend, so every mutation is announced to
subscribers in the same context; mutations from other contexts arrive
through ``watch()``.

The store is split into owned slots. ``ProviderCredentials`` holds the
provider token set and identity profile, ``SessionCredential`` holds the
application session token and ``FlowState`` holds the per-login PKCE
values. Clearing one slot never touches the keys of another.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from typing import TYPE_CHECKING

from ..types import HostKind, IdentityProfile, ProviderTokenSet, StorageChange


if TYPE_CHECKING:
    from collections.abc import Callable

    from .pkce import PKCEChallenge
    from .storage import StorageBackend


logger = logging.getLogger("xbridge.auth")


class StorageKeys:
    """Persisted storage key names."""

    ACCESS_TOKEN = "twitter_access_token"  # noqa: S105
    REFRESH_TOKEN = "twitter_refresh_token"  # noqa: S105
    EXPIRES_AT = "twitter_token_expires_at"
    PROFILE = "twitter_user"
    SESSION_TOKEN = "token"  # noqa: S105
    VERIFIER = "twitter_code_verifier"
    CSRF_STATE = "twitter_oauth_state"
    RETURN_PATH = "twitter_return_path"
    HOST_KIND = "twitter_is_miniapp"
    REFERRAL_CODE = "referral_code"

    PROVIDER = (ACCESS_TOKEN, REFRESH_TOKEN, EXPIRES_AT, PROFILE)


class ProviderCredentials:
    """Provider token set and cached identity profile.

    Written only by the callback exchange and the refresh scheduler.
    """

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    async def load_tokens(self) -> ProviderTokenSet | None:
        """Load the stored provider token set, or None if incomplete."""
        access_token = await self._store.get(StorageKeys.ACCESS_TOKEN)
        expires_at = await self._store.get(StorageKeys.EXPIRES_AT)
        if not access_token or not expires_at:
            return None
        try:
            expiry = int(expires_at)
        except ValueError:
            logger.warning("Ignoring malformed token expiry %r", expires_at)
            return None
        return ProviderTokenSet(
            access_token=access_token,
            refresh_token=await self.refresh_token(),
            expires_at=expiry,
        )

    async def save_tokens(self, tokens: ProviderTokenSet) -> None:
        """Persist a provider token set.

        A set without a refresh token leaves the stored one in place.
        """
        await self._store.set(StorageKeys.ACCESS_TOKEN, tokens.access_token)
        if tokens.refresh_token:
            await self._store.set(StorageKeys.REFRESH_TOKEN, tokens.refresh_token)
        await self._store.set(StorageKeys.EXPIRES_AT, str(tokens.expires_at))

    async def refresh_token(self) -> str | None:
        """Return the stored refresh token, if any."""
        value = await self._store.get(StorageKeys.REFRESH_TOKEN)
        if value is None or not value.strip():
            return None
        return value

    async def is_authenticated(self) -> bool:
        """True when an unexpired provider access token is stored."""
        tokens = await self.load_tokens()
        return tokens is not None and not tokens.is_expired()

    async def can_refresh(self) -> bool:
        """True when a refresh token is stored."""
        return await self.refresh_token() is not None

    async def load_profile(self) -> IdentityProfile | None:
        """Load the cached identity profile."""
        raw = await self._store.get(StorageKeys.PROFILE)
        if raw is None:
            return None
        try:
            return IdentityProfile.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, AttributeError):
            logger.warning("Discarding unreadable cached identity profile")
            return None

    async def save_profile(self, profile: IdentityProfile) -> None:
        """Cache an identity profile."""
        await self._store.set(StorageKeys.PROFILE, json.dumps(profile.to_dict()))

    async def clear(self) -> None:
        """Remove the provider token set and identity profile."""
        for key in StorageKeys.PROVIDER:
            await self._store.remove(key)


class SessionCredential:
    """Application session token issued by the application backend."""

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    async def get(self) -> str | None:
        """Return the session token, if any."""
        return await self._store.get(StorageKeys.SESSION_TOKEN)

    async def set(self, token: str) -> None:
        """Store the session token."""
        await self._store.set(StorageKeys.SESSION_TOKEN, token)

    async def exists(self) -> bool:
        """True when a non-empty session token is stored."""
        return bool(await self.get())

    async def clear(self) -> None:
        """Remove the session token."""
        await self._store.remove(StorageKeys.SESSION_TOKEN)


class FlowState:
    """Flow-scoped values that live only between login and callback."""

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    async def begin(self, pkce: PKCEChallenge, return_path: str, host: HostKind) -> None:
        """Stash the values a callback needs to complete a login."""
        await self._store.set(StorageKeys.VERIFIER, pkce.verifier)
        await self._store.set(StorageKeys.CSRF_STATE, pkce.csrf_state)
        await self._store.set(StorageKeys.RETURN_PATH, return_path)
        await self._store.set(
            StorageKeys.HOST_KIND, "true" if host is HostKind.MINI_APP else "false"
        )

    async def verifier(self) -> str | None:
        """Return the stored PKCE verifier."""
        return await self._store.get(StorageKeys.VERIFIER)

    async def csrf_state(self) -> str | None:
        """Return the stored CSRF state."""
        return await self._store.get(StorageKeys.CSRF_STATE)

    async def discard_secrets(self) -> None:
        """Delete the verifier and CSRF state (one-time use)."""
        await self._store.remove(StorageKeys.CSRF_STATE)
        await self._store.remove(StorageKeys.VERIFIER)

    async def consume_return_path(self) -> str | None:
        """Return and delete the post-login return path."""
        return await self._store.remove(StorageKeys.RETURN_PATH)

    async def host_kind(self) -> HostKind:
        """Return the host environment the login was started from."""
        marker = await self._store.get(StorageKeys.HOST_KIND)
        return HostKind.MINI_APP if marker == "true" else HostKind.BROWSER

    async def referral_code(self) -> str | None:
        """Return the referral code captured before login, if any."""
        return await self._store.get(StorageKeys.REFERRAL_CODE)

    async def set_referral_code(self, code: str) -> None:
        """Remember a referral code to send with the next exchange."""
        await self._store.set(StorageKeys.REFERRAL_CODE, code)


class TokenStore:
    """Change-notifying facade over a storage backend.

    Parameters
    ----------
    storage : StorageBackend
        The backend holding the persisted values.
    """

    def __init__(self, storage: StorageBackend) -> None:
        """Initialize the token store."""
        self.storage = storage
        self.provider = ProviderCredentials(self)
        self.session = SessionCredential(self)
        self.flow = FlowState(self)
        self._listeners: list[Callable[[StorageChange], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

    async def get(self, key: str) -> str | None:
        """Read a raw value."""
        return await self.storage.get(key)

    async def set(self, key: str, value: str) -> None:
        """Write a raw value and notify local subscribers."""
        old = await self.storage.set(key, value)
        self._emit(StorageChange(key, old, value, source_id=self.storage.context_id))

    async def remove(self, key: str) -> str | None:
        """Remove a raw value and notify local subscribers if it existed."""
        old = await self.storage.remove(key)
        if old is not None:
            self._emit(StorageChange(key, old, None, source_id=self.storage.context_id))
        return old

    def subscribe(self, listener: Callable[[StorageChange], None]) -> Callable[[], None]:
        """Register a change listener.

        Parameters
        ----------
        listener : callable
            Called with a ``StorageChange`` for every mutation, local or
            from another context.

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

    def _emit(self, change: StorageChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Storage change listener failed for key %s", change.key)

    async def watch(self) -> None:
        """Forward changes made by other contexts to subscribers until cancelled."""
        async for change in self.storage.changes():
            self._emit(change)

    def start_watching(self) -> asyncio.Task[None]:
        """Start ``watch()`` as a background task (idempotent)."""
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self.watch())
        return self._watch_task

    async def stop_watching(self) -> None:
        """Cancel the background watcher."""
        task, self._watch_task = self._watch_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
