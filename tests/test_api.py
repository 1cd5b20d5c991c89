"""Tests for the client's calls to the exchange and refresh endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from xbridge.auth.api import AuthApiClient
from xbridge.exceptions import ExchangeFailed, NetworkTimeout, RefreshFailed

from tests.helpers import mock_http_client, mock_response


EXCHANGE_BODY = {
    "tokens": {"access_token": "at_1", "refresh_token": "rt_1", "expires_at": 1_900_000_000_000},
    "user": {"id": "1234", "username": "Alice", "name": "Alice Example"},
    "dbToken": "T1",
}


def _api(post: AsyncMock) -> AuthApiClient:
    return AuthApiClient(
        "https://app.example/", timeout=2.0, http_client=mock_http_client(post=post)
    )


class TestExchangeCode:
    """Tests for AuthApiClient.exchange_code()."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """The exchange response is parsed into an ExchangeResult."""
        post = AsyncMock(return_value=mock_response(200, EXCHANGE_BODY))
        result = await _api(post).exchange_code("c", "v", "s", referral_code="REF42")

        assert result.db_token == "T1"
        assert result.user.handle == "alice"
        assert result.tokens.expires_at == 1_900_000_000_000
        args, kwargs = post.call_args
        assert args[0] == "https://app.example/api/auth/twitter/token"
        assert kwargs["json"] == {
            "code": "c",
            "verifier": "v",
            "state": "s",
            "referral_code": "REF42",
        }
        assert kwargs["timeout"] == 2.0

    @pytest.mark.asyncio
    async def test_no_referral_code(self) -> None:
        """An absent referral code is not sent."""
        post = AsyncMock(return_value=mock_response(200, EXCHANGE_BODY))
        await _api(post).exchange_code("c", "v", "s")
        assert "referral_code" not in post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        """The server's error message and status are surfaced."""
        body = {"error": "Failed to exchange code for tokens", "retryable": False}
        post = AsyncMock(return_value=mock_response(400, body))

        with pytest.raises(ExchangeFailed, match="Failed to exchange code") as exc_info:
            await _api(post).exchange_code("c", "v", "s")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_upstream_timeout(self) -> None:
        """A 504 from the server is a retryable timeout."""
        post = AsyncMock(return_value=mock_response(504, {"error": "timed out", "retryable": True}))
        with pytest.raises(NetworkTimeout):
            await _api(post).exchange_code("c", "v", "s")

    @pytest.mark.asyncio
    async def test_client_timeout(self) -> None:
        """A local timeout is a retryable timeout."""
        post = AsyncMock(side_effect=httpx.ConnectTimeout("slow"))
        with pytest.raises(NetworkTimeout) as exc_info:
            await _api(post).exchange_code("c", "v", "s")
        assert exc_info.value.timeout == 2.0

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        """A body without tokens is a failed exchange."""
        post = AsyncMock(return_value=mock_response(200, {"user": {}}))
        with pytest.raises(ExchangeFailed, match="Malformed"):
            await _api(post).exchange_code("c", "v", "s")

    @pytest.mark.asyncio
    async def test_non_object_body(self) -> None:
        """A JSON body that is not an object raises ExchangeFailed."""
        post = AsyncMock(return_value=mock_response(200, ["tokens"]))
        with pytest.raises(ExchangeFailed, match="not a JSON object"):
            await _api(post).exchange_code("c", "v", "s")


class TestRefresh:
    """Tests for AuthApiClient.refresh()."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """A rotated refresh token is returned."""
        body = {"tokens": {"access_token": "at_2", "refresh_token": "rt_2", "expires_at": 5}}
        post = AsyncMock(return_value=mock_response(200, body))

        tokens = await _api(post).refresh("rt_1")

        assert tokens.access_token == "at_2"
        assert tokens.refresh_token == "rt_2"
        assert post.call_args.kwargs["json"] == {"refresh_token": "rt_1"}

    @pytest.mark.asyncio
    async def test_refresh_token_carried_over(self) -> None:
        """A response without a refresh token keeps the one sent."""
        body = {"tokens": {"access_token": "at_2", "refresh_token": None, "expires_at": 5}}
        tokens = await _api(AsyncMock(return_value=mock_response(200, body))).refresh("rt_1")
        assert tokens.refresh_token == "rt_1"

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        """A rejected refresh raises RefreshFailed."""
        post = AsyncMock(return_value=mock_response(401, {"error": "Failed to refresh token"}))
        with pytest.raises(RefreshFailed) as exc_info:
            await _api(post).refresh("rt_1")
        assert exc_info.value.context["status_code"] == 401

    @pytest.mark.asyncio
    async def test_non_json_error(self) -> None:
        """An error page without JSON still raises RefreshFailed."""
        post = AsyncMock(return_value=mock_response(500, ValueError("html")))
        with pytest.raises(RefreshFailed, match="failed"):
            await _api(post).refresh("rt_1")

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self) -> None:
        """An unreachable server is retryable and never a rejection."""
        post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(NetworkTimeout) as exc_info:
            await _api(post).refresh("rt_1")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_protocol_error(self) -> None:
        """HTTP errors other than transport failures raise RefreshFailed."""
        post = AsyncMock(side_effect=httpx.TooManyRedirects("loop"))
        with pytest.raises(RefreshFailed):
            await _api(post).refresh("rt_1")

    @pytest.mark.asyncio
    async def test_html_success_body(self) -> None:
        """A 200 page that is not JSON raises RefreshFailed."""
        post = AsyncMock(return_value=mock_response(200, ValueError("<html>portal</html>")))
        with pytest.raises(RefreshFailed, match="not JSON"):
            await _api(post).refresh("rt_1")
