"""ghmonitor exception hierarchy.

All ghmonitor-specific exceptions inherit from GHMonitorException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class GHMonitorException(Exception):
    """Base exception for all ghmonitor errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize ghmonitor exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, flow_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class AuthenticationError(GHMonitorException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including the
    browser flow, the token exchange, or token refresh.
    """

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
            The identity provider name (e.g., "github").
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id


class FlowStartError(AuthenticationError):
    """The authentication flow could not begin.

    Raised when the callback port cannot be bound or secure
    randomness is unavailable. The flow never starts.
    """


class ProviderDeniedError(AuthenticationError):
    """The identity provider returned an explicit error on the redirect.

    Typically ``access_denied`` when the user declines consent.
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        provider: str | None = None,
        flow_id: str | None = None,
    ) -> None:
        """Initialize provider denial.

        Parameters
        ----------
        error : str
            The provider's ``error`` code.
        error_description : str, optional
            The provider's human-readable ``error_description``.
        provider : str, optional
            The identity provider name.
        flow_id : str, optional
            The auth flow identifier.
        """
        message = f"Provider denied authorization: {error}"
        if error_description:
            message = f"{message} - {error_description}"
        super().__init__(message, provider=provider, flow_id=flow_id)
        self.error = error
        self.error_description = error_description


class StateMismatchError(AuthenticationError):
    """The callback ``state`` did not match a live pending flow.

    Raised on CSRF mismatch, replay of a consumed state, or a flow
    older than its expiry window.
    """


class AuthFlowCancelled(AuthenticationError):
    """Authentication flow was cancelled.

    Raised when the host application aborts an in-progress flow,
    or a newer flow replaces it.
    """


class ExchangeError(AuthenticationError):
    """The token endpoint rejected a request or returned garbage.

    Carries the provider's ``error`` / ``error_description`` when present.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str, optional
            The provider's ``error`` code.
        error_description : str, optional
            The provider's ``error_description``.
        status_code : int, optional
            HTTP status code of the failed response.
        provider : str, optional
            The identity provider name.
        **context : Any
            Additional context.
        """
        super().__init__(
            message,
            provider=provider,
            error=error,
            status_code=status_code,
            **context,
        )
        self.error = error
        self.error_description = error_description
        self.status_code = status_code


class TokenRefreshError(ExchangeError):
    """Token refresh failed.

    Raised when exchanging a refresh token for a new access token fails.
    """


class StorageError(GHMonitorException):
    """Encrypting, decrypting, reading or writing persisted state failed."""

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The record key involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key


class GitHubAPIError(GHMonitorException):
    """A GitHub REST API call failed."""

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status code of the failed response.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class NotAuthenticatedError(GitHubAPIError):
    """No usable credential is available; the user must log in again."""


class RateLimitError(GitHubAPIError):
    """The GitHub API rate limit is exhausted."""

    def __init__(
        self,
        message: str,
        reset_at: float | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize rate limit error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        reset_at : float, optional
            Unix timestamp when the limit resets.
        status_code : int, optional
            HTTP status code of the failed response.
        """
        super().__init__(message, status_code=status_code, reset_at=reset_at)
        self.reset_at = reset_at
