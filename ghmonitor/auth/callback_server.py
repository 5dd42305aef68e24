"""Single-use localhost HTTP listener for the OAuth redirect.

Binds the fixed redirect port registered with GitHub, handles exactly one
callback per flow (provider error, state check, code exchange, profile
fetch, persistence), renders a result page to the browser, and then
releases the port. Requests that arrive after the outcome is settled are
answered but otherwise ignored.

Uses stdlib http.server on a daemon thread; the async token exchange is
submitted to the caller's event loop.
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import asyncio
import concurrent.futures
import html
import logging
import threading

from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import (
    AuthenticationError,
    ExchangeError,
    FlowStartError,
    ProviderDeniedError,
    StateMismatchError,
    StorageError,
)
from .types import ListenerState


if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from .exchange import TokenExchangeClient
    from .token_store import SecureTokenStore
    from .types import UserProfile


logger = logging.getLogger("ghmonitor.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f6f8fa; color: #1f2328; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.error { color: #cf222e; }
  p { color: #656d76; }
"""

_SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Successful</title><style>{style}</style></head>
<body><div class="card">
  <h1>&#x2705; Authentication Successful</h1>
  <p>Welcome, <strong>{login}</strong>!</p>
  <p>You can close this window and return to the app.</p>
</div>
<script>setTimeout(function () {{ window.close(); }}, 3000);</script>
</body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Failed</title><style>{style}</style></head>
<body><div class="card">
  <h1 class="error">&#x274C; Authentication Failed</h1>
  <p>{error}</p>
  <p>You can close this window and try again from the app.</p>
</div></body></html>"""

_SETTLED_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication</title><style>{style}</style></head>
<body><div class="card">
  <h1>This sign-in link has already been used.</h1>
  <p>You can close this window.</p>
</div></body></html>"""

_WAITING_HTML = """<!DOCTYPE html>
<html>
<head><title>Waiting for Authentication</title><style>{style}</style></head>
<body><div class="card">
  <h1>Waiting for authentication&hellip;</h1>
  <p>Please complete the login in the browser window.</p>
</div></body></html>"""


def _page(template: str, **values: str) -> str:
    return template.format(style=_PAGE_STYLE, **values)


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


@dataclass
class _Outcome:
    """Result of processing one callback request."""

    status: int
    body: str
    profile: UserProfile | None = None
    error: AuthenticationError | None = None


class OAuthCallbackServer:
    """One-shot listener for the OAuth redirect.

    ``STOPPED -> LISTENING -> (COMPLETED | FAILED) -> STOPPED``

    Parameters
    ----------
    token_store : SecureTokenStore
        Verifies the state, yields the PKCE verifier, and persists results.
    exchange_client : TokenExchangeClient
        Performs the code exchange and profile fetch.
    loop : asyncio.AbstractEventLoop
        Running event loop the async exchange calls are submitted to.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Fixed redirect port (``0`` picks a free port, for tests).
    path : str
        Redirect path (default ``"/callback"``).
    success_close_delay : float
        Seconds to keep serving after success so the page finishes loading.
    exchange_timeout : float
        Upper bound in seconds for each exchange call submitted to the loop.
    """

    def __init__(
        self,
        token_store: SecureTokenStore,
        exchange_client: TokenExchangeClient,
        loop: asyncio.AbstractEventLoop,
        host: str = "127.0.0.1",
        port: int = 3000,
        path: str = "/callback",
        success_close_delay: float = 1.0,
        exchange_timeout: float = 60.0,
    ) -> None:
        """Initialize the callback server."""
        self._token_store = token_store
        self._exchange = exchange_client
        self._loop = loop
        self._host = host
        self._port = port
        self._path = path
        self._success_close_delay = success_close_delay
        self._exchange_timeout = exchange_timeout

        self._lock = threading.Lock()
        self._state = ListenerState.STOPPED
        self._outcome: ListenerState | None = None
        self._claimed = False
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._stop_timer: threading.Timer | None = None
        self._actual_port: int = 0
        self._on_success: Callable[[UserProfile], Any] | None = None
        self._on_error: Callable[[AuthenticationError], Any] | None = None

    @property
    def state(self) -> ListenerState:
        """Current listener state."""
        return self._state

    @property
    def outcome(self) -> ListenerState | None:
        """COMPLETED or FAILED once a callback has been settled, else None."""
        return self._outcome

    @property
    def port(self) -> int:
        """The bound port (0 before start)."""
        return self._actual_port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI served by this listener."""
        return f"http://{self._host}:{self._actual_port or self._port}{self._path}"

    def start(
        self,
        on_success: Callable[[UserProfile], Any],
        on_error: Callable[[AuthenticationError], Any],
    ) -> str:
        """Bind the port and start serving on a daemon thread.

        Parameters
        ----------
        on_success : callable
            Called once with the stored ``UserProfile`` after a completed exchange.
        on_error : callable
            Called once with the ``AuthenticationError`` on any failure.

        Returns
        -------
        str
            The redirect URI.

        Raises
        ------
        FlowStartError
            If the listener is already running or the port cannot be bound.
        """
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth redirects."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path == server_ref._path:
                    outcome = server_ref._handle_callback(parse_qs(parsed.query))
                    try:
                        self._send_html(outcome.body, outcome.status)
                    except ConnectionError as exc:
                        logger.info("Browser left before the result page was sent: %s", exc)
                    finally:
                        server_ref._settle(outcome)
                elif parsed.path == "/":
                    self._send_html(_page(_WAITING_HTML))
                else:
                    self.send_error(404)

            def _send_html(self, html_content: str, status: int = 200) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.send_header("Referrer-Policy", "no-referrer")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Route http.server access logs to the ghmonitor logger."""
                if args:
                    logger.debug("OAuth callback server: %s", args[0] % args[1:])

        with self._lock:
            if self._state is not ListenerState.STOPPED:
                msg = "OAuth callback listener is already running"
                raise FlowStartError(msg)
            try:
                server = HTTPServer((self._host, self._port), _CallbackHandler)
            except OSError as exc:
                msg = f"Cannot bind OAuth callback port {self._host}:{self._port}: {exc}"
                raise FlowStartError(msg) from exc

            self._server = server
            self._actual_port = server.server_address[1]
            self._on_success = on_success
            self._on_error = on_error
            self._claimed = False
            self._outcome = None
            self._state = ListenerState.LISTENING
            self._thread = threading.Thread(
                target=server.serve_forever,
                name="ghmonitor-oauth-callback",
                daemon=True,
            )
            self._thread.start()

        logger.debug("OAuth callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run a coroutine on the owning event loop from the handler thread."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=self._exchange_timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            msg = f"Token exchange timed out after {self._exchange_timeout}s"
            raise ExchangeError(msg, provider="github") from exc

    def _complete(self, params: dict[str, list[str]]) -> UserProfile:
        """Validate the redirect and exchange the code. Raises on any failure."""
        error = _first(params, "error")
        if error:
            raise ProviderDeniedError(
                error, _first(params, "error_description"), provider="github"
            )

        if not self._token_store.verify_and_consume_state(_first(params, "state")):
            msg = "State parameter mismatch or expired (possible CSRF attack)"
            raise StateMismatchError(msg, provider="github")

        code = _first(params, "code")
        if not code:
            msg = "No authorization code in callback"
            raise ExchangeError(msg, provider="github")

        verifier = self._token_store.consume_pkce_verifier()
        if verifier is None:
            msg = "PKCE verifier not found or expired"
            raise ExchangeError(msg, provider="github")

        tokens = self._run(self._exchange.exchange_code(code, verifier))
        profile: UserProfile = self._run(self._exchange.fetch_profile(tokens.access_token))

        try:
            self._token_store.store_tokens(
                tokens.access_token, tokens.refresh_token, tokens.expires_in
            )
            self._token_store.store_user_profile(profile)
        except StorageError as exc:
            msg = f"Failed to persist credentials: {exc}"
            raise AuthenticationError(msg, provider="github") from exc
        return profile

    def _handle_callback(self, params: dict[str, list[str]]) -> _Outcome:
        """Process one redirect request into a response and an outcome."""
        with self._lock:
            if self._state is not ListenerState.LISTENING or self._claimed:
                logger.debug("Ignoring callback after the flow was settled")
                return _Outcome(status=200, body=_page(_SETTLED_HTML))
            self._claimed = True

        try:
            profile = self._complete(params)
        except AuthenticationError as exc:
            error: AuthenticationError = exc
        except Exception as exc:  # noqa: BLE001
            msg = f"Authentication flow failed: {exc}"
            error = AuthenticationError(msg, provider="github")
            error.__cause__ = exc
        else:
            body = _page(_SUCCESS_HTML, login=html.escape(profile.login, quote=True))
            return _Outcome(status=200, body=body, profile=profile)

        logger.warning("OAuth callback failed: %s", error)
        self._discard_pending()
        if isinstance(error, StateMismatchError):
            status = 400
        elif isinstance(error, ProviderDeniedError):
            status = 200
        else:
            status = 500
        safe_msg = html.escape(error.message, quote=True)
        return _Outcome(status=status, body=_page(_ERROR_HTML, error=safe_msg), error=error)

    def _discard_pending(self) -> None:
        try:
            self._token_store.clear_pending_flow()
        except StorageError as exc:
            logger.warning("Could not clear pending flow: %s", exc)

    def _settle(self, outcome: _Outcome) -> None:
        """Record the outcome, notify the host, and schedule shutdown."""
        if outcome.profile is None and outcome.error is None:
            return

        with self._lock:
            final = ListenerState.COMPLETED if outcome.error is None else ListenerState.FAILED
            self._state = final
            self._outcome = final
            delay = self._success_close_delay if outcome.error is None else 0.0
            # Shut down from a separate thread; serve_forever runs on this one.
            self._stop_timer = threading.Timer(delay, self.stop)
            self._stop_timer.daemon = True
            self._stop_timer.start()

        callback: Callable[..., Any] | None
        if outcome.error is None:
            callback, arg = self._on_success, outcome.profile
        else:
            callback, arg = self._on_error, outcome.error
        if callback is not None:
            try:
                callback(arg)
            except Exception:
                logger.exception("OAuth callback handler raised")

    def stop(self) -> None:
        """Shut down the listener and release the port. Idempotent.

        Blocks until the serving thread exits, so it must not run on the
        event loop thread while an exchange is in flight; use
        ``asyncio.to_thread`` from async code.
        """
        with self._lock:
            server, thread, timer = self._server, self._thread, self._stop_timer
            self._server = None
            self._thread = None
            self._stop_timer = None

        current = threading.current_thread()
        if timer is not None and timer is not current:
            timer.cancel()
        if server is not None:
            server.shutdown()
            server.server_close()
        if thread is not None and thread is not current and thread.is_alive():
            thread.join(timeout=5)

        with self._lock:
            if self._server is None:
                self._state = ListenerState.STOPPED
        if server is not None:
            logger.debug("OAuth callback server stopped")
