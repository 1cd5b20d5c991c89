"""OAuth2 PKCE login against X, bridged to an application session.

Provides the PKCE generator, the token store over pluggable storage,
the client flow manager, refresh scheduling and the auth context, plus
the server-side provider, account linking and routes.
"""

from __future__ import annotations

from .accounts import AccountServiceClient
from .api import AuthApiClient
from .context import AuthContext
from .exchange import TokenExchangeService
from .flow import AuthFlowManager, build_authorize_url
from .host import HostDetector, StaticHostDetector, UserAgentHostDetector
from .pkce import PKCEChallenge
from .providers import OAuthProvider, XProvider, create_provider_from_settings
from .session import RefreshScheduler
from .storage import (
    MemoryStorage,
    RedisStorage,
    StorageArea,
    StorageBackend,
    get_storage,
    reset_storage,
)
from .token_store import TokenStore


__all__ = [
    "AccountServiceClient",
    "AuthApiClient",
    "AuthContext",
    "AuthFlowManager",
    "HostDetector",
    "MemoryStorage",
    "OAuthProvider",
    "PKCEChallenge",
    "RedisStorage",
    "RefreshScheduler",
    "StaticHostDetector",
    "StorageArea",
    "StorageBackend",
    "TokenExchangeService",
    "TokenStore",
    "UserAgentHostDetector",
    "XProvider",
    "build_authorize_url",
    "create_provider_from_settings",
    "get_storage",
    "reset_storage",
]
