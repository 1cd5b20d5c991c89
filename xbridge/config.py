"""Configuration system for xbridge using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.xbridge] section (project-level)
3. ./xbridge.toml (project-level, explicit)
4. ~/.config/xbridge/config.toml (user-level, overrides project)
5. XBRIDGE_CONFIG_FILE (explicit file override)
6. Environment variables (highest priority)

Environment variables use the XBRIDGE_ prefix with nested delimiter __.
Example: XBRIDGE_PROVIDER__CLIENT_ID, XBRIDGE_CLIENT__REFRESH_INTERVAL_SECONDS
"""

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("xbridge")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    xbridge_toml = Path("xbridge.toml")
    if xbridge_toml.exists():
        files.append(xbridge_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "xbridge" / "config.toml"
    else:
        user_config = Path("~/.config/xbridge/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("XBRIDGE_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("xbridge", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "redis_url",
}

_REDACTED = "********"


class ProviderSettings(BaseSettings):
    """X (Twitter) OAuth2 provider settings.

    Environment prefix: XBRIDGE_PROVIDER__
    Example: XBRIDGE_PROVIDER__CLIENT_ID=your-client-id

    ``client_secret`` is only read by the server; the client side of the
    flow needs nothing but the public fields.
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_PROVIDER__",
        extra="ignore",
    )

    client_id: str = Field(default="", description="OAuth2 client ID from the provider")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (server side only, never sent to the client)",
    )
    redirect_uri: str = Field(
        default="http://localhost:3000/api/auth/callback/twitter",
        description="Redirect URI registered with the provider",
    )
    scopes: str = Field(
        default="tweet.read users.read offline.access",
        description="Space-separated OAuth2 scopes to request",
    )
    authorize_url: str = Field(
        default="https://x.com/i/oauth2/authorize",
        description="Authorization endpoint URL",
    )
    token_url: str = Field(
        default="https://api.x.com/2/oauth2/token",
        description="Token exchange endpoint URL",
    )
    userinfo_url: str = Field(
        default="https://api.twitter.com/2/users/me",
        description="Identity profile endpoint URL",
    )
    user_fields: str = Field(
        default=(
            "profile_image_url,verified,affiliation,is_identity_verified,location,"
            "parody,profile_banner_url,protected,public_metrics,subscription_type,"
            "verified_followers_count,verified_type"
        ),
        description="Comma-separated user.fields requested from the identity endpoint",
    )


class BackendSettings(BaseSettings):
    """Application backend (account service) settings.

    Environment prefix: XBRIDGE_BACKEND__
    Example: XBRIDGE_BACKEND__ACCOUNT_API_URL=https://api.example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_BACKEND__",
        extra="ignore",
    )

    account_api_url: str = Field(
        default="https://api.dopamyn.fun",
        description="Base URL of the account lookup/create/update API",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before a provider or account call is abandoned",
    )
    exchange_rate_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum code exchanges per client IP per window",
    )
    exchange_rate_window: float = Field(
        default=60.0,
        gt=0,
        description="Rate limit window in seconds",
    )


class ClientSettings(BaseSettings):
    """Client runtime settings.

    Environment prefix: XBRIDGE_CLIENT__
    Example: XBRIDGE_CLIENT__REFRESH_THRESHOLD_SECONDS=300
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_CLIENT__",
        extra="ignore",
    )

    app_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the server hosting the exchange/refresh endpoints",
    )
    refresh_threshold_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh the provider token when it expires within this window",
    )
    refresh_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between periodic token freshness checks",
    )
    status_dismiss_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Seconds before the callback status indicator auto-dismisses",
    )
    allow_missing_state: bool = Field(
        default=True,
        description="Accept a callback whose stored CSRF state is missing (verifier required)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before an exchange/refresh call is abandoned",
    )
    storage_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Client storage backend: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis storage backend",
    )
    storage_prefix: str = Field(
        default="xbridge",
        description="Key prefix for the redis storage backend",
    )


class MiniAppSettings(BaseSettings):
    """Embedded mini-app host settings.

    Environment prefix: XBRIDGE_MINIAPP__
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_MINIAPP__",
        extra="ignore",
    )

    app_id: str = Field(default="", description="Mini-app identifier used in deep links")
    callback_path: str = Field(
        default="/auth/callback",
        description="Path inside the mini app that completes the login",
    )
    user_agent_markers: list[str] = Field(
        default_factory=lambda: ["worldapp", "miniapp"],
        description="User-agent substrings that identify a mini-app host",
    )


class ServerSettings(BaseSettings):
    """HTTP server settings.

    Environment prefix: XBRIDGE_SERVER__
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_SERVER__",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    landing_path: str = Field(
        default="/",
        description="Page the provider redirect lands on to finish the login",
    )
    default_return_path: str = Field(
        default="/campaigns",
        description="Where failed provider redirects send the user",
    )

    @field_validator("landing_path", "default_return_path")
    @classmethod
    def _require_absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            msg = f"path must start with '/', got {v!r}"
            raise ValueError(msg)
        return v


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: XBRIDGE_LOG__
    Example: XBRIDGE_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class XBridgeSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: XBRIDGE__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.xbridge] section
    3. ./xbridge.toml (project-level)
    4. ~/.config/xbridge/config.toml (user-level, overrides project)
    5. XBRIDGE_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="XBRIDGE__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    miniapp: MiniAppSettings = Field(default_factory=MiniAppSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    def redacted_dump(self) -> dict[str, dict[str, Any]]:
        """Dump every section with sensitive values replaced."""
        dumped = self.model_dump()
        for section in dumped.values():
            for name in _SENSITIVE_FIELDS & section.keys():
                if section[name]:
                    section[name] = _REDACTED
        return dumped

    def to_toml(self) -> str:
        """Export settings as TOML string (secrets redacted)."""
        lines = ["# xbridge configuration", "# Generated by: xbridge config --toml", ""]
        for section_name, section_data in self.redacted_dump().items():
            lines.append(f"[{section_name}]")
            for field_name, field_value in section_data.items():
                lines.append(f"{field_name} = {_toml_value(field_value)}")
            lines.append("")
        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as environment variable assignments (secrets redacted)."""
        lines = []
        for section_name, section_data in self.redacted_dump().items():
            for field_name, field_value in section_data.items():
                if isinstance(field_value, list):
                    field_value = ",".join(str(v) for v in field_value)
                env_name = f"XBRIDGE_{section_name.upper()}__{field_name.upper()}"
                lines.append(f"{env_name}={field_value}")
        return "\n".join(lines)


def _toml_value(value: Any) -> str:
    if isinstance(value, list):
        return "[" + ", ".join(f'"{v}"' for v in value) + "]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


@lru_cache(maxsize=1)
def get_settings() -> XBridgeSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return XBridgeSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
