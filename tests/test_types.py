"""Tests for shared token, profile and exchange result types."""

from __future__ import annotations

from xbridge.types import ExchangeResult, IdentityProfile, ProviderTokenSet, now_ms


# ── ProviderTokenSet ────────────────────────────────────────────────


class TestProviderTokenSet:
    """Tests for ProviderTokenSet."""

    def test_from_token_response(self) -> None:
        """expires_in seconds become an absolute millisecond expiry."""
        before = now_ms()
        tokens = ProviderTokenSet.from_token_response(
            {"access_token": "at", "refresh_token": "rt", "expires_in": 7200}
        )
        after = now_ms()
        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert before + 7_200_000 <= tokens.expires_at <= after + 7_200_000

    def test_refresh_token_carried_over(self) -> None:
        """A response without a refresh token keeps the previous one."""
        tokens = ProviderTokenSet.from_token_response(
            {"access_token": "at2", "expires_in": 60}, previous_refresh_token="rt_old"
        )
        assert tokens.refresh_token == "rt_old"

    def test_rotated_refresh_token_wins(self) -> None:
        """A rotated refresh token replaces the previous one."""
        tokens = ProviderTokenSet.from_token_response(
            {"access_token": "at2", "refresh_token": "rt_new", "expires_in": 60},
            previous_refresh_token="rt_old",
        )
        assert tokens.refresh_token == "rt_new"

    def test_expiry_checks(self) -> None:
        """is_expired and is_close_to_expiry use the given clock."""
        tokens = ProviderTokenSet("at", "rt", expires_at=10_000)
        assert not tokens.is_expired(at_ms=9_999)
        assert tokens.is_expired(at_ms=10_000)
        assert tokens.is_close_to_expiry(5_000, at_ms=5_000)
        assert not tokens.is_close_to_expiry(5_000, at_ms=4_999)

    def test_dict_round_trip(self) -> None:
        """to_dict/from_dict use the exchange API field names."""
        tokens = ProviderTokenSet("at", "rt", expires_at=123)
        assert tokens.to_dict() == {"access_token": "at", "refresh_token": "rt", "expires_at": 123}
        assert ProviderTokenSet.from_dict(tokens.to_dict()) == tokens


# ── IdentityProfile ─────────────────────────────────────────────────


class TestIdentityProfile:
    """Tests for IdentityProfile."""

    def test_handle_is_lowercased_username(self, profile: IdentityProfile) -> None:
        """The account handle is the lowercased username."""
        assert profile.handle == "alice"

    def test_from_provider_payload(self) -> None:
        """Provider user objects are parsed with defaults for missing fields."""
        parsed = IdentityProfile.from_dict({"id": 42, "username": "Bob", "name": "Bob B"})
        assert parsed.id == "42"
        assert parsed.username == "Bob"
        assert parsed.verified is False
        assert parsed.public_metrics is None

    def test_account_fields(self, profile: IdentityProfile) -> None:
        """Account fields carry the provider id and verification data."""
        fields = profile.account_fields()
        assert fields["x_id"] == "1234"
        assert fields["verified_type"] == "blue"
        assert fields["public_metrics"] == {"followers_count": 10}
        assert "username" not in fields


# ── ExchangeResult ──────────────────────────────────────────────────


class TestExchangeResult:
    """Tests for ExchangeResult."""

    def test_session_token_key(self, profile: IdentityProfile) -> None:
        """The session token travels under the dbToken key."""
        result = ExchangeResult(ProviderTokenSet("at", "rt", 1), profile, db_token="T1")
        body = result.to_dict()
        assert body["dbToken"] == "T1"
        assert body["user"]["username"] == "Alice"
        assert ExchangeResult.from_dict(body) == result

    def test_missing_session_token(self) -> None:
        """A null or empty dbToken parses as no session token."""
        body = {"tokens": {"access_token": "at"}, "user": {"id": "1", "username": "a"}}
        assert ExchangeResult.from_dict(body).db_token is None
        body["dbToken"] = ""
        assert ExchangeResult.from_dict(body).db_token is None
