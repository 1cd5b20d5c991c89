"""xbridge exception hierarchy.

All xbridge-specific exceptions inherit from XBridgeError, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class XBridgeError(Exception):
    """Base exception for all xbridge errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize xbridge exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, flow_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class AuthenticationError(XBridgeError):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including the
    PKCE flow, the code exchange, account linking or token refresh.
    """

    #: Whether retrying the same operation later may succeed.
    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The OAuth2 provider name (e.g., "XProvider").
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id


class CsrfMismatch(AuthenticationError):
    """Returned ``state`` does not match the stored CSRF state.

    Treated as a potential attack: the flow is aborted before any
    exchange and the user has to start a new login.
    """


class SessionExpired(AuthenticationError):
    """The flow-scoped PKCE verifier is missing.

    The login was started in another browser context, the storage was
    cleared, or the verifier was already consumed by an earlier callback.
    """


class ExchangeFailed(AuthenticationError):
    """The provider rejected the code/verifier pair or the profile fetch failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the upstream service.
        provider : str, optional
            The OAuth2 provider name.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(
            message, provider=provider, flow_id=flow_id, status_code=status_code, **context
        )
        self.status_code = status_code


class LinkingDegraded(AuthenticationError):
    """Account lookup, creation or update on the application backend failed.

    Provider authentication itself succeeded; the login completes
    without an application session token.
    """

    retryable = True

    def __init__(self, message: str, handle: str | None = None, **context: Any) -> None:
        """Initialize linking error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        handle : str, optional
            The provider handle the account operation was for.
        **context : Any
            Additional context.
        """
        super().__init__(message, handle=handle, **context)
        self.handle = handle


class NetworkTimeout(AuthenticationError):
    """A bounded-time server call did not complete.

    Retryable, distinct from an authoritative rejection.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        timeout: float | None = None,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float, optional
            The timeout value in seconds.
        provider : str, optional
            The OAuth2 provider name.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class TokenError(AuthenticationError):
    """Base exception for token-related failures."""


class RefreshFailed(TokenError):
    """Provider token refresh failed.

    The provider-side capability is dropped; an application session,
    if any, is preserved.
    """

    retryable = True
