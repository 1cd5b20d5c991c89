"""FastAPI application hosting the server half of the login flow."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from .auth.accounts import AccountServiceClient
from .auth.exchange import TokenExchangeService
from .auth.providers import create_provider_from_settings
from .auth.routes import create_auth_router
from .config import get_settings


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .auth.routes import ExchangeRateLimiter
    from .config import XBridgeSettings


def create_app(
    settings: XBridgeSettings | None = None,
    *,
    service: TokenExchangeService | None = None,
    accounts: AccountServiceClient | None = None,
    rate_limiter: ExchangeRateLimiter | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Parameters
    ----------
    settings : XBridgeSettings, optional
        Configuration; the cached global settings are used if omitted.
    service : TokenExchangeService, optional
        Pre-built exchange service (for testing).
    accounts : AccountServiceClient, optional
        Pre-built account client (for testing).
    rate_limiter : ExchangeRateLimiter, optional
        Pre-built rate limiter (for testing).

    Returns
    -------
    FastAPI
        The application with the auth routes mounted.
    """
    settings = settings or get_settings()
    timeout = settings.backend.request_timeout

    if accounts is None:
        accounts = AccountServiceClient(settings.backend.account_api_url, timeout=timeout)
    if service is None:
        provider = create_provider_from_settings(settings.provider, timeout=timeout)
        service = TokenExchangeService(provider, accounts)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:  # pylint: disable=unused-argument
        yield
        await service.provider.close()
        await accounts.close()

    app = FastAPI(title="xbridge", lifespan=_lifespan)
    app.include_router(create_auth_router(service, accounts, settings, rate_limiter))
    return app
