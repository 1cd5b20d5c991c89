"""FastAPI routes for the server half of the X login.

Provides the token exchange, token refresh, provider redirect and
handle check endpoints. The client secret never leaves these routes.
"""

# pylint: disable=logging-too-many-args,too-many-statements

from __future__ import annotations

import collections
import logging
import threading
import time

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..exceptions import AuthenticationError, LinkingDegraded, NetworkTimeout
from .host import build_mini_app_deep_link, is_mini_app_request


if TYPE_CHECKING:
    from ..config import XBridgeSettings
    from .accounts import AccountServiceClient
    from .exchange import TokenExchangeService


logger = logging.getLogger("xbridge.auth")


class TokenExchangeRequest(BaseModel):
    """Body of ``POST /api/auth/twitter/token``."""

    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    verifier: str | None = None
    state: str | None = None
    referral_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("referral_code", "referralCode"),
    )


class TokenRefreshRequest(BaseModel):
    """Body of ``POST /api/auth/twitter/refresh``."""

    model_config = ConfigDict(extra="ignore")

    refresh_token: str | None = None


# ── Exchange Rate Limiter ────────────────────────────────────────────


class ExchangeRateLimiter:
    """In-process sliding-window rate limiter for code exchanges.

    Limits by client IP address with a configurable window and max requests.

    Parameters
    ----------
    max_requests : int
        Maximum number of requests allowed per window.
    window_seconds : float
        Time window in seconds.
    """

    def __init__(self, max_requests: int = 10, window_seconds: float = 60.0) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, collections.deque[float]] = {}
        self._last_sweep = time.monotonic()
        self._lock = threading.Lock()

    def is_allowed(self, client_ip: str) -> bool:
        """Check if a request from *client_ip* is allowed."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep >= self._window:
                self._evict_idle(now)
            dq = self._requests.setdefault(client_ip, collections.deque())
            while dq and dq[0] < now - self._window:
                dq.popleft()

            if len(dq) >= self._max_requests:
                return False

            dq.append(now)
            return True

    def _evict_idle(self, now: float) -> None:
        """Drop clients with no request inside the window."""
        cutoff = now - self._window
        idle = [ip for ip, dq in self._requests.items() if not dq or dq[-1] < cutoff]
        for ip in idle:
            del self._requests[ip]
        self._last_sweep = now

    def reset(self) -> None:
        """Clear all rate limit state (for testing)."""
        with self._lock:
            self._requests.clear()


def _error_response(exc: AuthenticationError, message: str) -> JSONResponse:
    """Translate an auth failure into a JSON error response."""
    if isinstance(exc, NetworkTimeout):
        return JSONResponse(
            status_code=504,
            content={"error": f"{message}: upstream timed out", "retryable": True},
        )
    status_code = exc.context.get("status_code") or 502
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "retryable": exc.retryable},
    )


def _safe_return_path(value: str | None, default: str) -> str:
    # Only same-site absolute paths; "//host" would leave the site.
    if not value or not value.startswith("/") or value.startswith("//"):
        return default
    return value


def create_auth_router(  # noqa: C901
    service: TokenExchangeService,
    accounts: AccountServiceClient,
    settings: XBridgeSettings,
    rate_limiter: ExchangeRateLimiter | None = None,
) -> APIRouter:
    """Create a FastAPI router with the X login routes.

    Parameters
    ----------
    service : TokenExchangeService
        Performs the provider exchange and account linking.
    accounts : AccountServiceClient
        Account API client used by the handle check proxy.
    settings : XBridgeSettings
        Server, mini-app and backend configuration.
    rate_limiter : ExchangeRateLimiter, optional
        Limiter for the exchange endpoint. Built from settings if omitted.

    Returns
    -------
    APIRouter
        Router with ``/api/auth/*`` routes.
    """
    router = APIRouter(prefix="/api/auth", tags=["authentication"])
    limiter = rate_limiter or ExchangeRateLimiter(
        settings.backend.exchange_rate_limit,
        settings.backend.exchange_rate_window,
    )
    markers = tuple(settings.miniapp.user_agent_markers)

    @router.post("/twitter/token")
    async def exchange_token(request: Request, body: TokenExchangeRequest) -> JSONResponse:
        """Exchange an authorization code and verifier for tokens.

        Rate limited per client IP.
        """
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.is_allowed(client_ip):
            return JSONResponse(
                status_code=429,
                content={"error": "Too many login attempts. Please try again later."},
            )

        if not body.code or not body.verifier or not body.state:
            return JSONResponse(status_code=400, content={"error": "Missing required parameters"})

        try:
            result = await service.exchange(
                body.code, body.verifier, body.state, referral_code=body.referral_code
            )
        except AuthenticationError as exc:
            logger.error("Token exchange failed: %s", exc)
            return _error_response(exc, "Failed to exchange code for tokens")
        except Exception:
            logger.exception("Token exchange error")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        return JSONResponse(content=result.to_dict())

    @router.post("/twitter/refresh")
    async def refresh_token(body: TokenRefreshRequest) -> JSONResponse:
        """Refresh the provider access token."""
        if not body.refresh_token:
            return JSONResponse(
                status_code=400, content={"error": "Missing refresh_token parameter"}
            )

        try:
            tokens = await service.refresh(body.refresh_token)
        except AuthenticationError as exc:
            logger.error("Token refresh failed: %s", exc)
            return _error_response(exc, "Failed to refresh token")
        except Exception:
            logger.exception("Token refresh error")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        return JSONResponse(content={"tokens": tokens.to_dict()})

    @router.get("/callback/twitter")
    async def provider_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
        return_to: str | None = None,
        is_miniapp: str | None = None,
    ) -> RedirectResponse:
        """Forward the provider redirect to the page that completes the login.

        The exchange itself happens on the client, which holds the
        verifier; this route only relays ``code`` and ``state``.
        """
        target = _safe_return_path(return_to, settings.server.default_return_path)
        mini_app = is_mini_app_request(
            request.headers.get("user-agent"), is_miniapp, markers=markers
        )

        def _redirect_back(params: dict[str, Any]) -> RedirectResponse:
            if mini_app:
                url = build_mini_app_deep_link(
                    settings.miniapp.app_id, settings.miniapp.callback_path, params
                )
            else:
                url = f"{target}?{urlencode({'error': params['error']})}"
            return RedirectResponse(url=url, status_code=307)

        if error:
            logger.error("Provider OAuth error: %s %s", error, error_description)
            return _redirect_back(
                {"error": "auth_failed", "error_description": error_description or error}
            )

        if not code or not state:
            return _redirect_back({"error": "missing_params"})

        if mini_app:
            url = build_mini_app_deep_link(
                settings.miniapp.app_id,
                settings.miniapp.callback_path,
                {"twitter_auth": "success", "code": code, "state": state, "return_to": target},
            )
        else:
            query = urlencode({"twitter_auth": "success", "code": code, "state": state})
            url = f"{settings.server.landing_path}?{query}"
        return RedirectResponse(url=url, status_code=307)

    @router.get("/check-twitter-handle")
    async def check_handle(account_handle: str | None = None) -> JSONResponse:
        """Proxy an account handle lookup to the application backend."""
        if not account_handle:
            return JSONResponse(status_code=400, content={"error": "Account handle is required"})

        try:
            data = await accounts.check_handle(account_handle)
        except LinkingDegraded as exc:
            logger.error("Error checking handle: %s", exc)
            return JSONResponse(
                status_code=exc.context.get("status_code") or 500,
                content={"error": "Failed to check Twitter handle"},
            )
        return JSONResponse(content=data)

    return router
