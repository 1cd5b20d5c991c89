"""Type definitions shared by the xbridge auth components."""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class HostKind(str, Enum):
    """Execution environment the login flow runs in."""

    BROWSER = "browser"
    MINI_APP = "mini_app"


class AuthFlowState(str, Enum):
    """State of the callback exchange state machine."""

    IDLE = "idle"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"


class CallbackStatus(str, Enum):
    """Transient status indicator shown while a callback is processed."""

    HIDDEN = "hidden"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"


class AuthEvent(str, Enum):
    """Notifications emitted by the auth context to its subscribers."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_READY = "token_ready"
    STATUS_CHANGED = "status_changed"
    USER_UPDATED = "user_updated"


@dataclass
class ProviderTokenSet:
    """Provider (X) OAuth2 token set.

    Attributes
    ----------
    access_token : str
        The access token for provider API requests.
    refresh_token : str or None
        Refresh token; without one the set cannot be renewed.
    expires_at : int
        Expiry as epoch milliseconds.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int = 0

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        previous_refresh_token: str | None = None,
    ) -> ProviderTokenSet:
        """Build a token set from a provider token endpoint response.

        ``expires_in`` (seconds) is converted to an absolute expiry.
        When the provider does not rotate the refresh token, the
        previous one is carried over.
        """
        expires_in = int(data.get("expires_in") or 0)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=now_ms() + expires_in * 1000,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderTokenSet:
        """Build a token set from the ``tokens`` object of the exchange API."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_at=int(data.get("expires_at") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``tokens`` object of the exchange API."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    def is_expired(self, at_ms: int | None = None) -> bool:
        """Check if the access token has expired."""
        return (now_ms() if at_ms is None else at_ms) >= self.expires_at

    def is_close_to_expiry(self, threshold_ms: int, at_ms: int | None = None) -> bool:
        """Check if the token expires within ``threshold_ms``."""
        return (now_ms() if at_ms is None else at_ms) + threshold_ms >= self.expires_at


@dataclass
class IdentityProfile:
    """Snapshot of provider-reported user attributes.

    Treated as a cache: it is refreshed on every login and safe to go stale.
    """

    id: str
    username: str
    name: str = ""
    profile_image_url: str | None = None
    verified: bool = False
    verified_type: str | None = None
    is_identity_verified: bool = False
    subscription_type: str | None = None
    location: str | None = None
    verified_followers_count: str | None = None
    public_metrics: dict[str, int] | None = None

    @property
    def handle(self) -> str:
        """Unique account handle (lowercased username)."""
        return self.username.lower()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdentityProfile:
        """Build a profile from a user object (provider ``data`` or API ``user``)."""
        return cls(
            id=str(data.get("id", "")),
            username=data.get("username", ""),
            name=data.get("name", ""),
            profile_image_url=data.get("profile_image_url"),
            verified=bool(data.get("verified", False)),
            verified_type=data.get("verified_type") or None,
            is_identity_verified=bool(data.get("is_identity_verified", False)),
            subscription_type=data.get("subscription_type") or None,
            location=data.get("location") or None,
            verified_followers_count=data.get("verified_followers_count") or None,
            public_metrics=data.get("public_metrics") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``user`` object of the exchange API."""
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "profile_image_url": self.profile_image_url,
            "verified": self.verified,
            "verified_type": self.verified_type,
            "is_identity_verified": self.is_identity_verified,
            "subscription_type": self.subscription_type,
            "location": self.location,
            "verified_followers_count": self.verified_followers_count,
            "public_metrics": self.public_metrics,
        }

    def account_fields(self) -> dict[str, Any]:
        """Fields pushed onto the application account record."""
        return {
            "x_id": self.id,
            "name": self.name,
            "verified": self.verified,
            "verified_type": self.verified_type,
            "is_identity_verified": self.is_identity_verified,
            "subscription_type": self.subscription_type,
            "location": self.location,
            "verified_followers_count": self.verified_followers_count,
            "public_metrics": self.public_metrics,
        }


@dataclass
class ExchangeResult:
    """Result of the server-side code exchange.

    Attributes
    ----------
    tokens : ProviderTokenSet
        Provider tokens for the new login.
    user : IdentityProfile
        The provider identity.
    db_token : str or None
        Application session token, absent when linking degraded.
    """

    tokens: ProviderTokenSet
    user: IdentityProfile
    db_token: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeResult:
        """Parse the exchange endpoint's JSON body."""
        return cls(
            tokens=ProviderTokenSet.from_dict(data["tokens"]),
            user=IdentityProfile.from_dict(data.get("user") or {}),
            db_token=data.get("dbToken") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the exchange endpoint's JSON body."""
        return {
            "tokens": self.tokens.to_dict(),
            "user": self.user.to_dict(),
            "dbToken": self.db_token,
        }


@dataclass
class StorageChange:
    """A mutation of one storage key.

    Attributes
    ----------
    key : str
        The storage key that changed.
    old_value : str or None
        Previous value, when known.
    new_value : str or None
        New value; None means the key was removed.
    external : bool
        True when the change originated in another context.
    """

    key: str
    old_value: str | None = None
    new_value: str | None = None
    external: bool = False
    source_id: str = ""
    timestamp: float = field(default_factory=time.time)
