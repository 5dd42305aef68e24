"""GitHub API access built on the authentication service."""

from __future__ import annotations

from .client import API_BASE_URL, GitHubClient, RateLimit
from .credentials import authenticated_remote_url, redact_remote_url


__all__ = [
    "API_BASE_URL",
    "GitHubClient",
    "RateLimit",
    "authenticated_remote_url",
    "redact_remote_url",
]
