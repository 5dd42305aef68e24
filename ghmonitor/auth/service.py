"""Authentication orchestrator.

``AuthService`` is constructed once at application startup and handed to
every consumer (GitHub API client, UI, git credential setup). It runs the
browser sign-in flow, hands out valid access tokens (refreshing them when
expired), and logs the user out.

The browser flow resolves through an ``asyncio.Future[AuthResult]``;
optional ``on_success`` / ``on_error`` callbacks fire on the event loop
in the same order.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    ExchangeError,
    FlowStartError,
    StorageError,
)
from ..log import redact_url
from .callback_server import OAuthCallbackServer
from .exchange import TokenExchangeClient
from .pkce import PKCEChallenge, generate_state
from .token_store import create_token_store
from .types import AuthFlowState, AuthResult


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import AuthSettings, GHMonitorSettings
    from .token_store import SecureTokenStore
    from .types import UserProfile

    SuccessCallback = Callable[[UserProfile], Any]
    ErrorCallback = Callable[[AuthenticationError], Any]


logger = logging.getLogger("ghmonitor.auth")


def _open_system_browser(url: str) -> bool:
    try:
        return webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Could not launch a browser: %s", exc)
        return False


@dataclass
class _Flow:
    """Book-keeping for the one in-flight browser flow."""

    flow_id: str
    future: asyncio.Future[AuthResult]
    listener: OAuthCallbackServer | None = None
    on_success: SuccessCallback | None = field(default=None, repr=False)
    on_error: ErrorCallback | None = field(default=None, repr=False)


class AuthService:
    """Owns the sign-in flow and the token lifecycle.

    Parameters
    ----------
    token_store : SecureTokenStore
        Single source of truth for all persisted auth state.
    exchange_client : TokenExchangeClient
        Talks to the provider's token and profile endpoints.
    settings : AuthSettings
        Callback host/port/path and timeouts.
    open_browser : callable, optional
        ``open_browser(url) -> bool``; defaults to the system browser.
    """

    def __init__(
        self,
        token_store: SecureTokenStore,
        exchange_client: TokenExchangeClient,
        settings: AuthSettings,
        open_browser: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the auth service."""
        self.token_store = token_store
        self.exchange_client = exchange_client
        self.settings = settings
        self._open_browser = open_browser or _open_system_browser

        self._flow: _Flow | None = None
        self._flow_state = AuthFlowState.IDLE
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: GHMonitorSettings,
        open_browser: Callable[[str], bool] | None = None,
    ) -> AuthService:
        """Build a service with the configured store and exchange client.

        Raises
        ------
        StorageError
            If no encryption key can be obtained for the token store.
        """
        return cls(
            token_store=create_token_store(settings.storage, settings.auth),
            exchange_client=TokenExchangeClient.from_settings(settings.auth),
            settings=settings.auth,
            open_browser=open_browser,
        )

    async def __aenter__(self) -> AuthService:
        """Enter the service lifetime."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Tear the service down."""
        await self.aclose()

    @property
    def flow_state(self) -> AuthFlowState:
        """State of the most recent browser flow."""
        return self._flow_state

    @property
    def flow_in_progress(self) -> bool:
        """Whether a browser flow is awaiting its callback."""
        return self._flow is not None and not self._flow.future.done()

    # ── Browser flow ────────────────────────────────────────────────

    def _create_listener(self, loop: asyncio.AbstractEventLoop) -> OAuthCallbackServer:
        return OAuthCallbackServer(
            token_store=self.token_store,
            exchange_client=self.exchange_client,
            loop=loop,
            host=self.settings.callback_host,
            port=self.settings.callback_port,
            path=self.settings.callback_path,
            success_close_delay=self.settings.success_close_delay_seconds,
            exchange_timeout=self.settings.http_timeout_seconds * 2,
        )

    async def start_flow(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> asyncio.Future[AuthResult]:
        """Start the browser sign-in flow.

        A flow already in progress is cancelled and replaced.

        Parameters
        ----------
        on_success : callable, optional
            Called with the ``UserProfile`` once the flow completes.
        on_error : callable, optional
            Called with the ``AuthenticationError`` if the flow fails.

        Returns
        -------
        asyncio.Future[AuthResult]
            Resolves exactly once when the callback is handled or the
            flow is cancelled.

        Raises
        ------
        FlowStartError
            If the callback port cannot be bound, secure randomness is
            unavailable, or the pending flow cannot be persisted.
        """
        loop = asyncio.get_running_loop()

        if self._flow is not None:
            await self._abandon_flow(AuthFlowCancelled("Superseded by a new sign-in attempt"))

        pkce = PKCEChallenge.generate()
        state = generate_state()
        flow = _Flow(
            flow_id=secrets.token_hex(4),
            future=loop.create_future(),
            on_success=on_success,
            on_error=on_error,
        )

        try:
            self.token_store.store_pending_flow(state, pkce.verifier)
        except StorageError as exc:
            self._flow_state = AuthFlowState.FAILED
            msg = f"Cannot persist pending sign-in: {exc}"
            raise FlowStartError(msg, flow_id=flow.flow_id) from exc

        def _listener_success(profile: UserProfile) -> None:
            loop.call_soon_threadsafe(self._resolve, flow, AuthResult.ok(profile))

        def _listener_error(error: AuthenticationError) -> None:
            loop.call_soon_threadsafe(self._resolve, flow, AuthResult.fail(error))

        listener = self._create_listener(loop)
        try:
            listener.start(_listener_success, _listener_error)
        except FlowStartError as exc:
            self.token_store.clear_pending_flow()
            self._flow_state = AuthFlowState.FAILED
            exc.flow_id = flow.flow_id
            exc.context["flow_id"] = flow.flow_id
            logger.error("Auth flow %s could not start: %s", flow.flow_id, exc)
            raise

        flow.listener = listener
        self._flow = flow
        self._flow_state = AuthFlowState.IN_PROGRESS

        authorize_url = self.exchange_client.build_authorize_url(state, pkce)
        logger.info("Auth flow %s: opening %s", flow.flow_id, redact_url(authorize_url))
        opened = await asyncio.to_thread(self._open_browser, authorize_url)
        if not opened:
            logger.warning("Open this URL in a browser to sign in: %s", authorize_url)
        return flow.future

    async def authenticate(self) -> AuthResult:
        """Run the browser flow to completion.

        Returns
        -------
        AuthResult
            Success with the profile, or failure with the typed error
            (including ``FlowStartError``).
        """
        try:
            future = await self.start_flow()
        except FlowStartError as exc:
            return AuthResult.fail(exc)
        return await asyncio.shield(future)

    def _resolve(self, flow: _Flow, result: AuthResult) -> None:
        """Settle ``flow`` on the event loop. Later results are dropped."""
        if flow.future.done():
            return
        flow.future.set_result(result)

        if result.success:
            self._flow_state = AuthFlowState.COMPLETED
            logger.info("Auth flow %s completed", flow.flow_id)
            callback, arg = flow.on_success, result.profile
        else:
            if isinstance(result.error, AuthFlowCancelled):
                self._flow_state = AuthFlowState.CANCELLED
            else:
                self._flow_state = AuthFlowState.FAILED
            if result.error is not None and result.error.flow_id is None:
                result.error.flow_id = flow.flow_id
                result.error.context["flow_id"] = flow.flow_id
            logger.info("Auth flow %s ended: %s", flow.flow_id, result.error)
            callback, arg = flow.on_error, result.error

        if callback is not None:
            try:
                callback(arg)
            except Exception:
                logger.exception("Auth flow callback raised")

    async def _abandon_flow(self, reason: AuthenticationError) -> None:
        """Stop the listener, drop the pending flow and settle the future."""
        flow, self._flow = self._flow, None
        if flow is None:
            return
        if flow.listener is not None:
            await asyncio.to_thread(flow.listener.stop)
        if not flow.future.done():
            try:
                self.token_store.clear_pending_flow()
            except StorageError as exc:
                logger.warning("Could not clear pending flow: %s", exc)
            self._resolve(flow, AuthResult.fail(reason))

    async def cancel(self) -> None:
        """Cancel the in-progress flow, if any."""
        await self._abandon_flow(AuthFlowCancelled("Authentication flow was cancelled"))

    # ── Tokens ──────────────────────────────────────────────────────

    async def get_valid_token(self) -> str | None:
        """Return a usable access token, refreshing it if expired.

        Returns
        -------
        str or None
            The access token, or None when nothing usable is stored or
            the refresh failed. Never raises for "not logged in".
        """
        try:
            token = self.token_store.get_valid_access_token()
            if token is not None:
                return token
            tokens = self.token_store.get_tokens()
        except StorageError as exc:
            logger.warning("Token store unreadable: %s", exc)
            return None

        if tokens is None or not tokens.refresh_token:
            return None
        return await self._refresh(rejected_token=None)

    async def refresh(self, rejected_token: str | None = None) -> str | None:
        """Refresh the access token regardless of its recorded expiry.

        Parameters
        ----------
        rejected_token : str, optional
            The token the API just rejected. If another caller already
            replaced it with a valid one, that token is returned without
            a second network call.

        Returns
        -------
        str or None
            The new access token, or None if no refresh was possible.
        """
        return await self._refresh(rejected_token=rejected_token, force=True)

    async def _refresh(self, rejected_token: str | None, force: bool = False) -> str | None:
        async with self._refresh_lock:
            try:
                current = self.token_store.get_valid_access_token()
                tokens = self.token_store.get_tokens()
            except StorageError as exc:
                logger.warning("Token store unreadable: %s", exc)
                return None

            # Another caller may have refreshed while we waited for the lock.
            if current is not None and not force:
                return current
            if current is not None and rejected_token is not None and current != rejected_token:
                return current

            if tokens is None or not tokens.refresh_token:
                return None

            try:
                response = await self.exchange_client.refresh(tokens.refresh_token)
            except ExchangeError as exc:
                logger.warning("Token refresh failed: %s", exc)
                return None

            try:
                record = self.token_store.store_tokens(
                    response.access_token,
                    response.refresh_token or tokens.refresh_token,
                    response.expires_in,
                )
            except StorageError as exc:
                logger.warning("Could not persist refreshed tokens: %s", exc)
                return None
            return record.access_token

    async def is_authenticated(self) -> bool:
        """Whether ``get_valid_token`` yields a token."""
        return await self.get_valid_token() is not None

    def get_current_user(self) -> UserProfile | None:
        """The cached profile of the signed-in user, or None."""
        return self.token_store.get_user_profile()

    # ── Lifecycle ───────────────────────────────────────────────────

    async def logout(self) -> None:
        """Stop any running listener and delete all persisted auth state."""
        await self._abandon_flow(AuthFlowCancelled("Signed out during authentication"))
        try:
            self.token_store.clear_all()
        except StorageError:
            logger.exception("Failed to clear stored credentials")
        self._flow_state = AuthFlowState.IDLE

    async def aclose(self) -> None:
        """Tear down at app exit: cancel any flow and close HTTP resources."""
        await self.cancel()
        await self.exchange_client.aclose()
