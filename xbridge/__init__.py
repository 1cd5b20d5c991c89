"""xbridge: X (Twitter) OAuth2 PKCE login bridged to an application account."""

from __future__ import annotations

from .auth import AuthContext, AuthFlowManager, RefreshScheduler, TokenStore
from .client import create_auth_context
from .config import XBridgeSettings, clear_settings, get_settings
from .exceptions import (
    AuthenticationError,
    CsrfMismatch,
    ExchangeFailed,
    LinkingDegraded,
    NetworkTimeout,
    RefreshFailed,
    SessionExpired,
    TokenError,
    XBridgeError,
)


__version__ = "0.1.0"

__all__ = [
    "AuthContext",
    "AuthFlowManager",
    "AuthenticationError",
    "CsrfMismatch",
    "ExchangeFailed",
    "LinkingDegraded",
    "NetworkTimeout",
    "RefreshFailed",
    "RefreshScheduler",
    "SessionExpired",
    "TokenError",
    "TokenStore",
    "XBridgeError",
    "XBridgeSettings",
    "__version__",
    "clear_settings",
    "create_auth_context",
    "get_settings",
]
