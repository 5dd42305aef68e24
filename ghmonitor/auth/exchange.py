"""Token exchange client for GitHub's OAuth endpoints.

Builds the authorization URL, trades an authorization code or refresh
token for tokens, and fetches the authenticated user's profile. Every
call is a single attempt; retry policy belongs to the caller.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import ExchangeError, TokenRefreshError
from .types import TokenResponse, UserProfile


if TYPE_CHECKING:
    from ..config import AuthSettings
    from .pkce import PKCEChallenge


logger = logging.getLogger("ghmonitor.auth")

PROVIDER = "github"

_JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class TokenExchangeClient:
    """HTTP client for the provider's authorize, token and profile endpoints.

    Parameters
    ----------
    client_id : str
        The OAuth client ID.
    redirect_uri : str
        The fixed redirect URI registered with the provider.
    scopes : list[str]
        Requested OAuth scopes.
    client_secret : str
        Confidential secret; empty for a public PKCE client.
    authorize_url : str
        The provider's authorization endpoint.
    token_url : str
        The provider's token endpoint.
    profile_url : str
        The provider's authenticated-user endpoint.
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        client_secret: str = "",
        authorize_url: str = "https://github.com/login/oauth/authorize",
        token_url: str = "https://github.com/login/oauth/access_token",  # noqa: S107
        profile_url: str = "https://api.github.com/user",
        timeout: float = 30.0,
    ) -> None:
        """Initialize the exchange client."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or []
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.profile_url = profile_url
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> TokenExchangeClient:
        """Create a client from ``AuthSettings``."""
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            scopes=settings.scope_list,
            authorize_url=settings.authorize_url,
            token_url=settings.token_url,
            profile_url=settings.profile_url,
            timeout=settings.http_timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close the shared HTTP client. Call from app shutdown."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    def build_authorize_url(self, state: str, pkce: PKCEChallenge) -> str:
        """Build the URL the system browser opens to start consent.

        Parameters
        ----------
        state : str
            Anti-forgery state.
        pkce : PKCEChallenge
            The challenge whose verifier is held in the token store.

        Returns
        -------
        str
            The full authorization URL.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def _credentials(self) -> dict[str, str]:
        data = {"client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    async def _post_token(
        self,
        payload: dict[str, str],
        error_cls: type[ExchangeError],
        action: str,
    ) -> TokenResponse:
        """POST to the token endpoint and parse the response."""
        try:
            client = await self._get_client()
            resp = await client.post(self.token_url, json=payload, headers=_JSON_HEADERS)
        except httpx.HTTPError as exc:
            msg = f"{action} request failed: {exc}"
            raise error_cls(msg, provider=PROVIDER) from exc

        try:
            raw = resp.json()
        except ValueError as exc:
            msg = f"{action} returned an unparsable response (HTTP {resp.status_code})"
            raise error_cls(msg, status_code=resp.status_code, provider=PROVIDER) from exc

        if not isinstance(raw, dict):
            msg = f"{action} returned an unexpected response body"
            raise error_cls(msg, status_code=resp.status_code, provider=PROVIDER)

        # GitHub reports most failures as HTTP 200 with an error body.
        if raw.get("error"):
            error = str(raw["error"])
            description = raw.get("error_description")
            msg = f"{action} rejected: {description or error}"
            raise error_cls(
                msg,
                error=error,
                error_description=description,
                status_code=resp.status_code,
                provider=PROVIDER,
            )

        if resp.is_error:
            msg = f"{action} failed: HTTP {resp.status_code}"
            raise error_cls(msg, status_code=resp.status_code, provider=PROVIDER)

        return _parse_token_response(raw, error_cls, action)

    async def exchange_code(self, code: str, verifier: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        verifier : str
            The PKCE verifier consumed from the token store.

        Returns
        -------
        TokenResponse
            The issued tokens.

        Raises
        ------
        ExchangeError
            If the provider rejects the code or the response is unusable.
        """
        payload = {**self._credentials(), "code": code, "code_verifier": verifier}
        tokens = await self._post_token(payload, ExchangeError, "Token exchange")
        logger.info("Exchanged authorization code for tokens")
        return tokens

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Mint a new access token from a refresh token.

        Parameters
        ----------
        refresh_token : str
            The stored refresh token.

        Returns
        -------
        TokenResponse
            The new tokens. ``refresh_token`` is None when the provider
            did not rotate it.

        Raises
        ------
        TokenRefreshError
            If the provider rejects the refresh or the response is unusable.
        """
        payload = {
            **self._credentials(),
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        tokens = await self._post_token(payload, TokenRefreshError, "Token refresh")
        logger.info("Refreshed access token")
        return tokens

    async def fetch_profile(self, access_token: str) -> UserProfile:
        """Fetch the authenticated user's profile.

        Parameters
        ----------
        access_token : str
            A valid access token.

        Returns
        -------
        UserProfile
            The user identity.

        Raises
        ------
        ExchangeError
            If the request fails or the body lacks an id and login.
        """
        try:
            client = await self._get_client()
            resp = await client.get(
                self.profile_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github+json",
                },
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Profile request failed: HTTP {exc.response.status_code}"
            raise ExchangeError(
                msg, status_code=exc.response.status_code, provider=PROVIDER
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Profile request failed: {exc}"
            raise ExchangeError(msg, provider=PROVIDER) from exc
        except ValueError as exc:
            msg = "Profile response was not valid JSON"
            raise ExchangeError(msg, provider=PROVIDER) from exc

        if not isinstance(payload, dict):
            msg = "Profile response has an unexpected shape"
            raise ExchangeError(msg, provider=PROVIDER)
        try:
            return UserProfile.from_api(payload)
        except (KeyError, TypeError, ValueError) as exc:
            msg = "Profile response lacks a user id or login"
            raise ExchangeError(msg, provider=PROVIDER) from exc


def _parse_token_response(
    raw: dict[str, Any],
    error_cls: type[ExchangeError],
    action: str,
) -> TokenResponse:
    access_token = raw.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        msg = f"{action} response is missing access_token"
        raise error_cls(msg, provider=PROVIDER)

    expires_in: int | None
    try:
        expires_in = int(raw["expires_in"]) if raw.get("expires_in") is not None else None
    except (TypeError, ValueError):
        expires_in = None

    refresh_token = raw.get("refresh_token")
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        expires_in=expires_in,
        scope=str(raw.get("scope", "")),
        token_type=str(raw.get("token_type", "bearer")),
    )
