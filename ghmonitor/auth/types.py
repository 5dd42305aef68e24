"""Data types for the GitHub authentication flow.

Persisted records (PendingFlow, TokenRecord, UserProfile) serialize to
plain dicts so the token store can encrypt them as JSON.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from ..exceptions import AuthenticationError


@dataclass(frozen=True)
class PendingFlow:
    """Artifacts of one in-flight browser flow.

    Attributes
    ----------
    state : str
        Anti-forgery value round-tripped through the redirect.
    pkce_verifier : str
        The PKCE code verifier bound to the challenge sent to the provider.
    created_at : float
        Unix timestamp when the flow was started.
    """

    state: str
    pkce_verifier: str
    created_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        """Whether the flow is older than ``ttl`` seconds at ``now``."""
        return now - self.created_at > ttl

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingFlow:
        """Deserialize from a dict produced by ``to_dict``."""
        return cls(
            state=str(data["state"]),
            pkce_verifier=str(data["pkce_verifier"]),
            created_at=float(data["created_at"]),
        )


@dataclass(frozen=True)
class TokenRecord:
    """Durable access/refresh token pair.

    Replaced wholesale on every store; never mutated in place.

    Attributes
    ----------
    access_token : str
        Bearer credential for API requests.
    refresh_token : str or None
        Credential used to mint new access tokens, if the provider issued one.
    expires_at : float
        Unix timestamp after which the access token is no longer valid.
    stored_at : float
        Unix timestamp of the store that produced this record.
    """

    access_token: str
    refresh_token: str | None
    expires_at: float
    stored_at: float

    def is_expired(self, now: float) -> bool:
        """Whether the access token has expired at ``now``."""
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenRecord:
        """Deserialize from a dict produced by ``to_dict``."""
        refresh = data.get("refresh_token")
        return cls(
            access_token=str(data["access_token"]),
            refresh_token=str(refresh) if refresh else None,
            expires_at=float(data["expires_at"]),
            stored_at=float(data["stored_at"]),
        )


@dataclass(frozen=True)
class UserProfile:
    """Cached identity of the authenticated GitHub user.

    Attributes
    ----------
    id : int
        Stable numeric user id.
    login : str
        Login name.
    name : str or None
        Display name, if set.
    avatar_url : str or None
        Avatar image URL.
    raw : dict[str, Any]
        The full profile payload as returned by the provider.
    """

    id: int
    login: str
    name: str | None = None
    avatar_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def display_name(self) -> str:
        """Name to show in the UI."""
        return self.name or self.login

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        """Deserialize from a stored dict."""
        return cls(
            id=int(data["id"]),
            login=str(data["login"]),
            name=data.get("name"),
            avatar_url=data.get("avatar_url"),
            raw=dict(data.get("raw") or {}),
        )

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> UserProfile:
        """Build a profile from a ``GET /user`` response body.

        Raises
        ------
        KeyError, TypeError, ValueError
            If the payload lacks a usable ``id`` or ``login``.
        """
        return cls(
            id=int(payload["id"]),
            login=str(payload["login"]),
            name=payload.get("name"),
            avatar_url=payload.get("avatar_url"),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class TokenResponse:
    """Parsed token endpoint response.

    Attributes
    ----------
    access_token : str
        The issued access token.
    refresh_token : str or None
        The issued refresh token, if any.
    expires_in : int or None
        Access token lifetime in seconds, if the provider sent one.
    scope : str
        Granted scopes (comma or space separated, as sent).
    token_type : str
        Token type, typically "bearer".
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    token_type: str = "bearer"  # noqa: S105


class ListenerState(str, Enum):
    """State of the OAuth callback listener."""

    STOPPED = "stopped"
    LISTENING = "listening"
    COMPLETED = "completed"
    FAILED = "failed"


class AuthFlowState(str, Enum):
    """State of the orchestrated authentication flow."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AuthResult:
    """Outcome of one authentication flow.

    Attributes
    ----------
    success : bool
        Whether authentication completed successfully.
    profile : UserProfile or None
        The authenticated user on success.
    error : AuthenticationError or None
        The typed failure otherwise.
    """

    success: bool
    profile: UserProfile | None = None
    error: AuthenticationError | None = None

    @classmethod
    def ok(cls, profile: UserProfile) -> AuthResult:
        """Successful result."""
        return cls(success=True, profile=profile)

    @classmethod
    def fail(cls, error: AuthenticationError) -> AuthResult:
        """Failed result."""
        return cls(success=False, error=error)
