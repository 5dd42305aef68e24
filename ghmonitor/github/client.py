"""Authenticated GitHub REST API client.

Every request asks ``AuthService.get_valid_token()`` for the bearer
token; the token is never cached here. A 401 triggers one forced refresh
and a single retry.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from ..auth.types import UserProfile
from ..exceptions import GitHubAPIError, NotAuthenticatedError, RateLimitError


if TYPE_CHECKING:
    from ..auth.service import AuthService


logger = logging.getLogger("ghmonitor.github")

API_BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class RateLimit:
    """Rate-limit window reported by the last API response.

    Attributes
    ----------
    limit : int
        Requests allowed per window.
    remaining : int
        Requests left in the current window.
    reset_at : float
        Unix timestamp when the window resets.
    """

    limit: int
    remaining: int
    reset_at: float

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> RateLimit | None:
        """Parse ``x-ratelimit-*`` headers, or None if they are absent."""
        try:
            return cls(
                limit=int(headers["x-ratelimit-limit"]),
                remaining=int(headers["x-ratelimit-remaining"]),
                reset_at=float(headers["x-ratelimit-reset"]),
            )
        except (KeyError, ValueError):
            return None

    def seconds_until_reset(self, now: float | None = None) -> float:
        """Seconds until the window resets (never negative)."""
        return max(0.0, self.reset_at - (time.time() if now is None else now))


class GitHubClient:
    """Async GitHub REST client authenticated through ``AuthService``.

    Parameters
    ----------
    auth : AuthService
        Source of valid access tokens.
    base_url : str
        API root (default ``https://api.github.com``).
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        auth: AuthService,
        base_url: str = API_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the GitHub client."""
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit: RateLimit | None = None
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        """Enter the client context."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close the HTTP client."""
        await self.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                },
            )
        return self._http_client

    async def aclose(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def _send(self, method: str, path: str, token: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.request(
                method,
                path,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise GitHubAPIError(msg) from exc

        rate_limit = RateLimit.from_headers(resp.headers)
        if rate_limit is not None:
            self.rate_limit = rate_limit
        return resp

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Path relative to the API root (e.g. ``"/user"``).
        **kwargs : Any
            Passed through to ``httpx.AsyncClient.request``.

        Returns
        -------
        httpx.Response
            A successful response.

        Raises
        ------
        NotAuthenticatedError
            If no usable token exists, or the API still rejects the
            token after one refresh.
        RateLimitError
            If the rate limit is exhausted.
        GitHubAPIError
            For any other failed request.
        """
        token = await self.auth.get_valid_token()
        if token is None:
            msg = "Not signed in to GitHub"
            raise NotAuthenticatedError(msg)

        resp = await self._send(method, path, token, **kwargs)
        if resp.status_code == 401:
            logger.info("GitHub rejected the access token; refreshing once")
            token = await self.auth.refresh(rejected_token=token)
            if token is None:
                msg = "GitHub credentials are no longer valid"
                raise NotAuthenticatedError(msg, status_code=401)
            resp = await self._send(method, path, token, **kwargs)
            if resp.status_code == 401:
                msg = "GitHub rejected the refreshed credentials"
                raise NotAuthenticatedError(msg, status_code=401)

        self._raise_for_status(resp)
        return resp

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if not resp.is_error:
            return
        rate_limit = RateLimit.from_headers(resp.headers)
        exhausted = rate_limit is not None and rate_limit.remaining == 0
        if resp.status_code == 429 or (resp.status_code == 403 and exhausted):
            reset_at = rate_limit.reset_at if rate_limit else None
            msg = "GitHub API rate limit exceeded"
            raise RateLimitError(msg, reset_at=reset_at, status_code=resp.status_code)

        try:
            detail = resp.json().get("message", "")
        except (ValueError, AttributeError):
            detail = ""
        msg = f"GitHub API error: HTTP {resp.status_code}"
        if detail:
            msg = f"{msg} - {detail}"
        raise GitHubAPIError(msg, status_code=resp.status_code)

    async def get(self, path: str, **kwargs: Any) -> Any:
        """GET ``path`` and return the decoded JSON body."""
        resp = await self.request("GET", path, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            msg = f"GET {path} returned a non-JSON body"
            raise GitHubAPIError(msg, status_code=resp.status_code) from exc

    async def get_authenticated_user(self) -> UserProfile:
        """Fetch the signed-in user's profile."""
        payload = await self.get("/user")
        try:
            return UserProfile.from_api(payload)
        except (KeyError, TypeError, ValueError) as exc:
            msg = "Unexpected /user response"
            raise GitHubAPIError(msg) from exc
