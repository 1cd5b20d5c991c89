"""Wiring for the client runtime.

``create_auth_context`` assembles storage, token store, API client,
flow manager and refresh scheduler into an ``AuthContext``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .auth.api import AuthApiClient
from .auth.context import AuthContext
from .auth.flow import create_flow_from_settings
from .auth.session import RefreshScheduler
from .auth.storage import get_storage
from .auth.token_store import TokenStore
from .config import get_settings


if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from .auth.host import HostDetector
    from .auth.storage import StorageBackend
    from .config import XBridgeSettings


def create_auth_context(
    settings: XBridgeSettings | None = None,
    *,
    storage: StorageBackend | None = None,
    host_detector: HostDetector | None = None,
    open_url: Callable[[str], object] | None = None,
    navigate: Callable[[str], object] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AuthContext:
    """Build an ``AuthContext`` from settings.

    Parameters
    ----------
    settings : XBridgeSettings, optional
        Configuration; the cached global settings are used if omitted.
    storage : StorageBackend, optional
        Storage backend; the configured singleton is used if omitted.
    host_detector : HostDetector, optional
        Host environment capability (ordinary browser by default).
    open_url : callable, optional
        Opens the provider authorization URL.
    navigate : callable, optional
        Navigates to the post-login return path.
    http_client : httpx.AsyncClient, optional
        Pre-configured HTTP client for the server API (for testing).

    Returns
    -------
    AuthContext
        An unmounted context.
    """
    settings = settings or get_settings()
    client = settings.client

    if storage is None:
        storage = get_storage(
            client.storage_backend,
            redis_url=client.redis_url,
            prefix=client.storage_prefix,
        )
    store = TokenStore(storage)
    api = AuthApiClient(client.app_url, timeout=client.request_timeout, http_client=http_client)

    flow = create_flow_from_settings(
        settings, store, api, host_detector=host_detector, open_url=open_url
    )
    scheduler = RefreshScheduler(
        store.provider,
        api,
        threshold_seconds=client.refresh_threshold_seconds,
        interval_seconds=client.refresh_interval_seconds,
    )
    return AuthContext(
        flow,
        scheduler,
        store,
        dismiss_delay=client.status_dismiss_seconds,
        navigate=navigate,
    )
