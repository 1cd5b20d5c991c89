"""Tests for the auth context: mount, callback status, sign-in state."""

# pylint: disable=redefined-outer-name,protected-access

from __future__ import annotations

import asyncio

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import pytest_asyncio

from xbridge.auth.api import AuthApiClient
from xbridge.auth.context import AuthContext, split_callback_url
from xbridge.auth.flow import AuthFlowManager
from xbridge.auth.session import RefreshScheduler
from xbridge.auth.storage import MemoryStorage, StorageArea
from xbridge.auth.token_store import TokenStore
from xbridge.client import create_auth_context
from xbridge.config import XBridgeSettings
from xbridge.exceptions import ExchangeFailed
from xbridge.types import AuthEvent, CallbackStatus, ExchangeResult, IdentityProfile

from tests.helpers import make_tokens


@pytest.fixture()
def api(profile: IdentityProfile) -> MagicMock:
    """Server API mock for exchange and refresh."""
    mock = MagicMock()
    mock.exchange_code = AsyncMock(
        return_value=ExchangeResult(make_tokens(), profile, db_token="T1")
    )
    mock.refresh = AsyncMock(return_value=make_tokens(access_token="at_new"))
    return mock


@pytest.fixture()
def navigated() -> list[str]:
    """Paths passed to the navigate callback."""
    return []


def _context(store: TokenStore, api: MagicMock, navigated: list[str]) -> AuthContext:
    flow = AuthFlowManager(
        store,
        api,
        "cid",
        "https://app.example/api/auth/callback/twitter",
        ["users.read"],
        "https://x.com/i/oauth2/authorize",
        open_url=lambda url: None,
    )
    scheduler = RefreshScheduler(store.provider, api, interval_seconds=60)
    return AuthContext(flow, scheduler, store, dismiss_delay=0.05, navigate=navigated.append)


@pytest_asyncio.fixture
async def ctx(store: TokenStore, api: MagicMock, navigated: list[str]):
    """An unmounted auth context with a fast status dismissal."""
    context = _context(store, api, navigated)
    yield context
    await context.unmount()


async def _callback_url(ctx: AuthContext, return_path: str = "/campaigns") -> str:
    """Start a login and build the URL the landing page is opened with."""
    url = await ctx.login(return_path)
    state = parse_qs(urlsplit(url).query)["state"][0]
    return f"https://app.example/?twitter_auth=success&code=abc&state={state}&ref=home"


# ── URL handling ────────────────────────────────────────────────────


class TestSplitCallbackUrl:
    """Tests for split_callback_url()."""

    def test_strips_callback_params(self) -> None:
        """Callback parameters are removed and other parameters kept."""
        clean, code, state = split_callback_url(
            "https://app.example/?twitter_auth=success&code=abc&state=xyz&ref=home"
        )
        assert clean == "https://app.example/?ref=home"
        assert (code, state) == ("abc", "xyz")

    def test_no_marker(self) -> None:
        """Without the success marker nothing is extracted."""
        url = "https://app.example/?code=abc&state=xyz"
        assert split_callback_url(url) == (url, None, None)

    def test_incomplete(self) -> None:
        """A marker without state is not a callback."""
        url = "https://app.example/?twitter_auth=success&code=abc"
        assert split_callback_url(url) == (url, None, None)


# ── Mount ───────────────────────────────────────────────────────────


class TestMount:
    """Tests for AuthContext.mount()."""

    @pytest.mark.asyncio
    async def test_plain_mount(self, ctx: AuthContext) -> None:
        """Mounting without a callback just loads state."""
        clean = await ctx.mount("https://app.example/campaigns")

        assert clean == "https://app.example/campaigns"
        assert ctx.current_path == "/campaigns"
        assert not ctx.is_loading
        assert not ctx.is_authenticated
        assert ctx.user is None
        assert ctx.status is CallbackStatus.HIDDEN
        assert ctx.scheduler.is_running

    @pytest.mark.asyncio
    async def test_restores_session(
        self, ctx: AuthContext, store: TokenStore, profile: IdentityProfile
    ) -> None:
        """A stored session and valid token restore the user."""
        await store.session.set("T1")
        await store.provider.save_tokens(make_tokens())
        await store.provider.save_profile(profile)

        await ctx.mount("/")

        assert ctx.is_authenticated
        assert ctx.user == profile

    @pytest.mark.asyncio
    async def test_callback_success(
        self, ctx: AuthContext, store: TokenStore, navigated: list[str]
    ) -> None:
        """A callback URL completes the login and returns to the start page."""
        events: list[AuthEvent] = []
        statuses: list[CallbackStatus] = []

        def _listener(event: AuthEvent) -> None:
            events.append(event)
            if event is AuthEvent.STATUS_CHANGED:
                statuses.append(ctx.status)

        ctx.subscribe(_listener)
        url = await _callback_url(ctx)

        clean = await ctx.mount(url)

        assert clean == "https://app.example/?ref=home"
        assert ctx.is_authenticated
        assert ctx.user.handle == "alice"
        assert await store.session.get() == "T1"
        assert AuthEvent.SIGNED_IN in events
        assert AuthEvent.TOKEN_READY in events
        assert statuses == [CallbackStatus.VERIFYING, CallbackStatus.SUCCESS]

        await ctx.pending_dismiss
        assert ctx.status is CallbackStatus.HIDDEN
        assert navigated == ["/campaigns"]
        assert ctx.current_path == "/campaigns"

    @pytest.mark.asyncio
    async def test_no_navigation_to_same_page(
        self, ctx: AuthContext, navigated: list[str]
    ) -> None:
        """No navigation when the login started on the landing page."""
        url = await _callback_url(ctx, "/")
        await ctx.mount(url)
        await ctx.pending_dismiss
        assert navigated == []

    @pytest.mark.asyncio
    async def test_callback_error(
        self, ctx: AuthContext, api: MagicMock, navigated: list[str]
    ) -> None:
        """A failed exchange shows an error that auto-dismisses."""
        api.exchange_code.side_effect = ExchangeFailed("rejected", status_code=400)
        url = await _callback_url(ctx)

        await ctx.mount(url)

        assert ctx.status is CallbackStatus.ERROR
        assert not ctx.is_authenticated
        await ctx.pending_dismiss
        assert ctx.status is CallbackStatus.HIDDEN
        assert navigated == []

    @pytest.mark.asyncio
    async def test_csrf_mismatch_shows_error(self, ctx: AuthContext, api: MagicMock) -> None:
        """A forged state is reported as an error without an exchange."""
        await ctx.login("/campaigns")
        await ctx.mount("https://app.example/?twitter_auth=success&code=abc&state=forged")

        assert ctx.status is CallbackStatus.ERROR
        api.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_session_is_silent(self, ctx: AuthContext, api: MagicMock) -> None:
        """Reloading a consumed callback URL shows nothing."""
        statuses: list[CallbackStatus] = []
        ctx.subscribe(lambda event: statuses.append(ctx.status))

        await ctx.mount("https://app.example/?twitter_auth=success&code=abc&state=xyz")

        assert ctx.status is CallbackStatus.HIDDEN
        assert statuses == [CallbackStatus.VERIFYING, CallbackStatus.HIDDEN]
        assert ctx.pending_dismiss is None
        api.exchange_code.assert_not_awaited()


# ── Sign-in state ───────────────────────────────────────────────────


class TestSignInState:
    """Tests for logout and cross-context session changes."""

    @pytest.mark.asyncio
    async def test_logout_clears_everything(
        self, ctx: AuthContext, store: TokenStore, profile: IdentityProfile
    ) -> None:
        """Logout removes provider tokens, profile and session token."""
        await store.session.set("T1")
        await store.provider.save_tokens(make_tokens())
        await store.provider.save_profile(profile)
        await ctx.mount("/")
        events: list[AuthEvent] = []
        ctx.subscribe(events.append)

        await ctx.logout()

        assert not ctx.is_authenticated
        assert ctx.user is None
        assert not await store.session.exists()
        assert await store.provider.load_tokens() is None
        assert await store.provider.load_profile() is None
        assert AuthEvent.SIGNED_OUT in events

    @pytest.mark.asyncio
    async def test_session_removed_in_other_context(
        self, area: StorageArea, api: MagicMock, navigated: list[str], profile: IdentityProfile
    ) -> None:
        """Clearing the session elsewhere signs this context out."""
        tab_a = TokenStore(MemoryStorage(area))
        tab_b = TokenStore(MemoryStorage(area))
        await tab_a.session.set("T1")
        await tab_a.provider.save_tokens(make_tokens())
        await tab_a.provider.save_profile(profile)

        ctx = _context(tab_b, api, navigated)
        events: list[AuthEvent] = []
        ctx.subscribe(events.append)
        await ctx.mount("/")
        await asyncio.sleep(0.01)
        assert ctx.is_authenticated

        await tab_a.session.clear()
        await asyncio.sleep(0.05)

        assert not ctx.is_authenticated
        assert ctx.user is None
        assert AuthEvent.SIGNED_OUT in events
        await ctx.unmount()

    @pytest.mark.asyncio
    async def test_session_set_in_other_context(
        self, area: StorageArea, api: MagicMock, navigated: list[str]
    ) -> None:
        """A login completed elsewhere signs this context in."""
        tab_a = TokenStore(MemoryStorage(area))
        ctx = _context(TokenStore(MemoryStorage(area)), api, navigated)
        await ctx.mount("/")
        await asyncio.sleep(0.01)

        await tab_a.session.set("T1")
        await asyncio.sleep(0.05)

        assert ctx.is_authenticated
        await ctx.unmount()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, ctx: AuthContext) -> None:
        """Unsubscribed listeners receive nothing."""
        events: list[AuthEvent] = []
        unsubscribe = ctx.subscribe(events.append)
        unsubscribe()
        await ctx.mount("https://app.example/?twitter_auth=success&code=abc&state=xyz")
        assert events == []

    @pytest.mark.asyncio
    async def test_visibility_forwarded(
        self, ctx: AuthContext, store: TokenStore, api: MagicMock
    ) -> None:
        """Becoming visible checks the provider token."""
        await ctx.mount("/")
        await store.provider.save_tokens(make_tokens(expires_in_ms=60_000))
        await ctx.on_visibility_change(True)
        api.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_logout_during_refresh(
        self, ctx: AuthContext, store: TokenStore, api: MagicMock, profile: IdentityProfile
    ) -> None:
        """A refresh still on the wire cannot restore tokens after logout."""
        await store.session.set("T1")
        await store.provider.save_profile(profile)
        await ctx.mount("/")
        await store.provider.save_tokens(make_tokens(expires_in_ms=60_000))
        release = asyncio.Event()

        async def _slow_refresh(refresh_token: str):
            await release.wait()
            return make_tokens(access_token="at_new", refresh_token="rt_new")

        api.refresh.side_effect = _slow_refresh
        visible = asyncio.ensure_future(ctx.on_visibility_change(True))
        await asyncio.sleep(0.01)
        assert ctx.scheduler.is_refreshing

        await ctx.logout()
        release.set()
        await visible

        assert await store.provider.load_tokens() is None
        assert await store.provider.refresh_token() is None
        assert not await store.session.exists()

    @pytest.mark.asyncio
    async def test_visibility_survives_html_response(
        self, store: TokenStore, navigated: list[str]
    ) -> None:
        """A captive portal page on the refresh endpoint is not raised to the caller."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>portal</html>")
        )
        api = AuthApiClient(
            "https://app.example", http_client=httpx.AsyncClient(transport=transport)
        )
        ctx = _context(store, api, navigated)
        await store.session.set("T1")
        await ctx.mount("/")
        await store.provider.save_tokens(make_tokens(expires_in_ms=-1000))

        await ctx.on_visibility_change(True)

        assert ctx.is_authenticated
        assert await store.session.get() == "T1"
        await ctx.unmount()
        await api.close()

    @pytest.mark.asyncio
    async def test_unmount_stops_background_work(self, ctx: AuthContext) -> None:
        """Unmount stops the timer and the storage watcher."""
        await ctx.mount("/")
        await ctx.unmount()
        assert not ctx.scheduler.is_running
        assert ctx.store._watch_task is None


class TestCreateAuthContext:
    """Tests for create_auth_context()."""

    def test_wiring(self) -> None:
        """The context is wired from client settings."""
        settings = XBridgeSettings(
            provider={"client_id": "cid"},
            client={"refresh_threshold_seconds": 120, "status_dismiss_seconds": 1.5},
        )
        storage = MemoryStorage()
        ctx = create_auth_context(settings, storage=storage, open_url=lambda url: None)

        assert ctx.store.storage is storage
        assert ctx.flow.client_id == "cid"
        assert ctx.scheduler.threshold_ms == 120_000
        assert ctx.dismiss_delay == 1.5
        assert ctx.flow.api is ctx.scheduler.api

    def test_default_storage_singleton(self) -> None:
        """Without explicit storage the configured singleton is used."""
        first = create_auth_context(XBridgeSettings())
        second = create_auth_context(XBridgeSettings())
        assert first.store.storage is second.store.storage
