"""Secure token store.

Sole owner of every persisted auth artifact: the pending browser flow,
the access/refresh token record, and the cached user profile. Each is a
separate encrypted record under a fixed key. Decryption failures read as
"nothing stored", which sends the user back through login.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import hmac
import json
import logging
import threading
import time

from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..exceptions import StorageError
from .encryption import create_cipher
from .storage import FileRecordStore, MemoryRecordStore
from .types import PendingFlow, TokenRecord, UserProfile


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import AuthSettings, StorageSettings
    from .encryption import RecordCipher
    from .storage import RecordStore


logger = logging.getLogger("ghmonitor.auth")

TOKENS_KEY = "github.tokens"  # noqa: S105
PROFILE_KEY = "user.profile"
PENDING_FLOW_KEY = "oauth.pending"

STORE_FILE_NAME = "store.json"

DEFAULT_PENDING_TTL = 600.0
DEFAULT_EXPIRES_IN = 28800


class SecureTokenStore:
    """Encrypted persistence for tokens, profile and pending-flow artifacts.

    Parameters
    ----------
    records : RecordStore
        Backend holding the encrypted records.
    cipher : RecordCipher
        Cipher applied to every record.
    clock : callable, optional
        Returns the current Unix time (default ``time.time``).
    pending_ttl : float
        Seconds a pending flow stays valid (default 600).
    default_expires_in : int
        Token lifetime used when the provider omits ``expires_in``
        (default 28800, eight hours).
    """

    def __init__(
        self,
        records: RecordStore,
        cipher: RecordCipher,
        clock: Callable[[], float] | None = None,
        pending_ttl: float = DEFAULT_PENDING_TTL,
        default_expires_in: int = DEFAULT_EXPIRES_IN,
    ) -> None:
        """Initialize the token store."""
        self._records = records
        self._cipher = cipher
        self._clock = clock or time.time
        self.pending_ttl = pending_ttl
        self.default_expires_in = default_expires_in
        # Guards read-modify-write of the pending flow record, which the
        # callback listener thread and the event loop both touch.
        self._pending_lock = threading.Lock()

    # ── Encrypted record helpers ────────────────────────────────────

    def _write(self, key: str, payload: dict[str, Any]) -> None:
        self._records.set(key, self._cipher.encrypt(json.dumps(payload)))

    def _read(self, key: str) -> dict[str, Any] | None:
        try:
            blob = self._records.get(key)
            if blob is None:
                return None
            data = json.loads(self._cipher.decrypt(blob))
        except (StorageError, json.JSONDecodeError) as exc:
            logger.warning("Discarding unreadable record %s: %s", key, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Discarding malformed record %s", key)
            return None
        return data

    def _delete(self, *keys: str) -> None:
        self._records.delete(*keys)

    # ── Pending flow ────────────────────────────────────────────────

    def store_pending_flow(self, state: str, verifier: str) -> PendingFlow:
        """Persist a new pending flow, replacing any earlier one.

        Parameters
        ----------
        state : str
            The anti-forgery state sent to the provider.
        verifier : str
            The PKCE code verifier.

        Returns
        -------
        PendingFlow
            The stored flow.
        """
        flow = PendingFlow(state=state, pkce_verifier=verifier, created_at=self._clock())
        with self._pending_lock:
            self._write(PENDING_FLOW_KEY, flow.to_dict())
        return flow

    def _load_pending(self) -> dict[str, Any] | None:
        data = self._read(PENDING_FLOW_KEY)
        if data is None:
            return None
        try:
            created_at = float(data["created_at"])
        except (KeyError, TypeError, ValueError):
            self._delete(PENDING_FLOW_KEY)
            return None
        if self._clock() - created_at > self.pending_ttl:
            logger.info("Pending auth flow expired; discarding it")
            self._delete(PENDING_FLOW_KEY)
            return None
        return data

    def _consume_pending_field(self, field: str) -> str | None:
        """Return and remove one field of the pending flow record."""
        data = self._load_pending()
        if data is None:
            return None
        value = data.get(field)
        data[field] = None
        if data.get("state") is None and data.get("pkce_verifier") is None:
            self._delete(PENDING_FLOW_KEY)
        else:
            self._write(PENDING_FLOW_KEY, data)
        return value if isinstance(value, str) and value else None

    def verify_and_consume_state(self, candidate: str | None) -> bool:
        """Check ``candidate`` against the pending state, then discard the state.

        The stored state is removed whether or not it matched, so a state
        value verifies at most once. On a mismatch the whole pending flow
        is deleted; on a match only the PKCE verifier is kept, for
        ``consume_pkce_verifier``.

        Parameters
        ----------
        candidate : str or None
            The ``state`` query parameter received on the callback.

        Returns
        -------
        bool
            True only for an unexpired pending flow whose state equals ``candidate``.
        """
        with self._pending_lock:
            stored = self._consume_pending_field("state")
            matched = (
                stored is not None
                and bool(candidate)
                and hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))
            )
            if not matched:
                self._delete(PENDING_FLOW_KEY)
        return matched

    def consume_pkce_verifier(self) -> str | None:
        """Return and discard the pending PKCE verifier.

        Returns
        -------
        str or None
            The verifier, or None if absent or expired.
        """
        with self._pending_lock:
            return self._consume_pending_field("pkce_verifier")

    def get_pending_flow(self) -> PendingFlow | None:
        """Peek at the unexpired pending flow without consuming it."""
        with self._pending_lock:
            data = self._load_pending()
        if data is None or not data.get("state") or not data.get("pkce_verifier"):
            return None
        return PendingFlow.from_dict(data)

    def clear_pending_flow(self) -> None:
        """Discard any pending flow."""
        with self._pending_lock:
            self._delete(PENDING_FLOW_KEY)

    # ── Tokens ──────────────────────────────────────────────────────

    def _lifetime(self, expires_in: Any) -> int:
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError):
            return self.default_expires_in
        return seconds if seconds > 0 else self.default_expires_in

    def store_tokens(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
    ) -> TokenRecord:
        """Encrypt and persist a new token record, replacing the old one.

        Parameters
        ----------
        access_token : str
            The access token.
        refresh_token : str, optional
            The refresh token, if issued.
        expires_in : int, optional
            Lifetime in seconds; missing or non-positive values use
            ``default_expires_in``.

        Returns
        -------
        TokenRecord
            The stored record.

        Raises
        ------
        StorageError
            If the record cannot be written.
        """
        now = self._clock()
        record = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=now + self._lifetime(expires_in),
            stored_at=now,
        )
        self._write(TOKENS_KEY, record.to_dict())
        logger.debug("Stored token record expiring at %.0f", record.expires_at)
        return record

    def get_tokens(self) -> TokenRecord | None:
        """Load the token record, or None if absent or unreadable."""
        data = self._read(TOKENS_KEY)
        if data is None:
            return None
        try:
            return TokenRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed token record: %s", exc)
            return None

    def is_expired(self) -> bool:
        """Whether the stored access token is expired (True when none is stored)."""
        tokens = self.get_tokens()
        return tokens is None or tokens.is_expired(self._clock())

    def get_valid_access_token(self) -> str | None:
        """Return the access token if unexpired. Never refreshes."""
        tokens = self.get_tokens()
        if tokens is None or tokens.is_expired(self._clock()):
            return None
        return tokens.access_token

    # ── Profile ─────────────────────────────────────────────────────

    def store_user_profile(self, profile: UserProfile) -> None:
        """Persist the authenticated user's profile."""
        self._write(PROFILE_KEY, profile.to_dict())

    def get_user_profile(self) -> UserProfile | None:
        """Load the cached user profile, or None."""
        data = self._read(PROFILE_KEY)
        if data is None:
            return None
        try:
            return UserProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding malformed user profile: %s", exc)
            return None

    # ── Logout ──────────────────────────────────────────────────────

    def clear_all(self) -> None:
        """Delete tokens, profile and any pending flow."""
        with self._pending_lock:
            self._delete(TOKENS_KEY, PROFILE_KEY, PENDING_FLOW_KEY)
        logger.info("Cleared all stored credentials")


def create_token_store(
    storage: StorageSettings,
    auth: AuthSettings | None = None,
    clock: Callable[[], float] | None = None,
) -> SecureTokenStore:
    """Build a token store from configuration.

    Parameters
    ----------
    storage : StorageSettings
        Backend, data directory and encryption selection.
    auth : AuthSettings, optional
        Supplies the pending flow TTL and default token lifetime.
    clock : callable, optional
        Time source override.

    Returns
    -------
    SecureTokenStore
        A configured store.

    Raises
    ------
    StorageError
        If no encryption key can be obtained.
    """
    records: RecordStore
    if storage.backend == "memory":
        records = MemoryRecordStore()
    else:
        records = FileRecordStore(Path(storage.data_dir) / STORE_FILE_NAME)

    return SecureTokenStore(
        records=records,
        cipher=create_cipher(storage),
        clock=clock,
        pending_ttl=auth.pending_flow_ttl_seconds if auth else DEFAULT_PENDING_TTL,
        default_expires_in=auth.default_expires_in if auth else DEFAULT_EXPIRES_IN,
    )
