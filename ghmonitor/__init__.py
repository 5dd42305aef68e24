"""ghmonitor - GitHub Actions Monitor authentication core.

Signs the user in to GitHub with OAuth 2.0 Authorization Code + PKCE
through the system browser, keeps the resulting tokens encrypted at
rest, and hands valid access tokens to the GitHub API client.
"""

from __future__ import annotations

from .auth import AuthResult, AuthService, SecureTokenStore, UserProfile
from .config import GHMonitorSettings, clear_settings, get_settings
from .exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    ExchangeError,
    FlowStartError,
    GHMonitorException,
    GitHubAPIError,
    NotAuthenticatedError,
    ProviderDeniedError,
    RateLimitError,
    StateMismatchError,
    StorageError,
    TokenRefreshError,
)
from .github import GitHubClient
from .log import get_logger


__version__ = "0.1.0"

__all__ = [
    "AuthFlowCancelled",
    "AuthResult",
    "AuthService",
    "AuthenticationError",
    "ExchangeError",
    "FlowStartError",
    "GHMonitorException",
    "GHMonitorSettings",
    "GitHubAPIError",
    "GitHubClient",
    "NotAuthenticatedError",
    "ProviderDeniedError",
    "RateLimitError",
    "SecureTokenStore",
    "StateMismatchError",
    "StorageError",
    "TokenRefreshError",
    "UserProfile",
    "__version__",
    "clear_settings",
    "get_logger",
    "get_settings",
]
