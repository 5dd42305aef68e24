"""Unit tests for auth data types."""

from __future__ import annotations

from ghmonitor.auth.types import AuthResult, PendingFlow, TokenRecord, UserProfile
from ghmonitor.exceptions import StateMismatchError


class TestRecords:
    """Tests for the persisted record types."""

    def test_pending_flow_expiry(self) -> None:
        """A pending flow expires strictly after its TTL."""
        flow = PendingFlow(state="s", pkce_verifier="v", created_at=100.0)
        assert not flow.is_expired(700.0, 600)
        assert flow.is_expired(700.5, 600)
        assert PendingFlow.from_dict(flow.to_dict()) == flow

    def test_token_record_expiry(self) -> None:
        """A token is expired from expires_at onward."""
        record = TokenRecord("gho_a", None, expires_at=200.0, stored_at=100.0)
        assert not record.is_expired(199.9)
        assert record.is_expired(200.0)

    def test_token_record_empty_refresh(self) -> None:
        """An empty refresh token loads as None."""
        record = TokenRecord.from_dict(
            {"access_token": "gho_a", "refresh_token": "", "expires_at": 1, "stored_at": 0}
        )
        assert record.refresh_token is None

    def test_profile_from_api(self) -> None:
        """Extra API fields are kept in raw but ignored for equality."""
        payload = {"id": "7", "login": "octocat", "name": None, "plan": {"name": "free"}}
        profile = UserProfile.from_api(payload)
        assert profile.id == 7
        assert profile.display_name == "octocat"
        assert profile.raw["plan"] == {"name": "free"}
        assert profile == UserProfile(id=7, login="octocat")


class TestAuthResult:
    """Tests for AuthResult constructors."""

    def test_ok(self) -> None:
        """ok() carries the profile."""
        profile = UserProfile(id=1, login="octocat")
        result = AuthResult.ok(profile)
        assert result.success
        assert result.profile is profile
        assert result.error is None

    def test_fail(self) -> None:
        """fail() carries the typed error."""
        error = StateMismatchError("forged")
        result = AuthResult.fail(error)
        assert not result.success
        assert result.profile is None
        assert result.error is error
