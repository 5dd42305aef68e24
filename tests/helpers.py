"""Shared test helpers: a fake clock, a browser stub, and a simulated GitHub."""

from __future__ import annotations

import json
import urllib.error

from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse
from urllib.request import urlopen

import httpx

from ghmonitor.auth.pkce import compute_challenge


START_TIME = 1_700_000_000.0
HTTP_TIMEOUT = 5.0

TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105
PROFILE_URL = "https://api.github.com/user"

OCTOCAT = {
    "id": 583231,
    "login": "octocat",
    "name": "The Octocat",
    "avatar_url": "https://avatars.githubusercontent.com/u/583231?v=4",
}


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrowserStub:
    """Stands in for ``webbrowser.open``; records every URL."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.urls: list[str] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        return self.result

    @property
    def last_params(self) -> dict[str, str]:
        query = parse_qs(urlparse(self.urls[-1]).query)
        return {k: v[0] for k, v in query.items()}


def http_get(url: str) -> tuple[int, str]:
    """GET ``url`` like a browser would; error statuses are returned, not raised."""
    try:
        with urlopen(url, timeout=HTTP_TIMEOUT) as resp:  # noqa: S310
            return resp.status, resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def callback_url(redirect_uri: str, **params: str) -> str:
    return f"{redirect_uri}?{urlencode(params)}"


class FakeGitHub:
    """respx-backed simulation of GitHub's token and profile endpoints.

    The token endpoint only honours a code whose ``code_verifier`` hashes
    to the challenge the app sent in the authorization URL.
    """

    def __init__(self, expires_in: int | None = 3600) -> None:
        self.expires_in = expires_in
        self.challenge: str | None = None
        self.code = "auth-code-1"
        self.refresh_token = "ghr_initial"
        self.rotate_refresh_token = True
        self.refresh_fails = False
        self.issued = 0
        self.token_requests: list[dict[str, Any]] = []
        self.token_route: Any = None
        self.profile_route: Any = None

    def install(self, router: Any) -> FakeGitHub:
        self.token_route = router.post(TOKEN_URL).mock(side_effect=self._token)
        self.profile_route = router.get(PROFILE_URL).mock(side_effect=self._profile)
        return self

    def authorize(self, authorize_url: str) -> dict[str, str]:
        """Record the challenge from the authorization URL; return its params."""
        params = {k: v[0] for k, v in parse_qs(urlparse(authorize_url).query).items()}
        self.challenge = params["code_challenge"]
        return params

    def _issue(self) -> dict[str, Any]:
        self.issued += 1
        body: dict[str, Any] = {
            "access_token": f"gho_{self.issued}",
            "scope": "repo,workflow",
            "token_type": "bearer",
        }
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if self.rotate_refresh_token:
            self.refresh_token = f"ghr_{self.issued}"
            body["refresh_token"] = self.refresh_token
        return body

    def _token(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.token_requests.append(payload)

        if payload.get("grant_type") == "refresh_token":
            if self.refresh_fails or payload.get("refresh_token") != self.refresh_token:
                return httpx.Response(200, json={"error": "bad_refresh_token"})
            return httpx.Response(200, json=self._issue())

        verifier = payload.get("code_verifier", "")
        if payload.get("code") != self.code or compute_challenge(verifier) != self.challenge:
            return httpx.Response(
                200,
                json={
                    "error": "bad_verification_code",
                    "error_description": "The code passed is incorrect or expired.",
                },
            )
        return httpx.Response(200, json=self._issue())

    def _profile(self, request: httpx.Request) -> httpx.Response:
        if not request.headers.get("Authorization", "").startswith("Bearer gho_"):
            return httpx.Response(401, json={"message": "Bad credentials"})
        return httpx.Response(200, json=OCTOCAT)
