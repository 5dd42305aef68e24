"""Unit tests for the secure token store."""

# pylint: disable=redefined-outer-name,protected-access

from __future__ import annotations

import json
import stat
import sys

from pathlib import Path

import pytest

from cryptography.fernet import Fernet

from ghmonitor.auth.encryption import RecordCipher
from ghmonitor.auth.storage import FileRecordStore, MemoryRecordStore
from ghmonitor.auth.token_store import (
    PENDING_FLOW_KEY,
    PROFILE_KEY,
    STORE_FILE_NAME,
    TOKENS_KEY,
    SecureTokenStore,
    create_token_store,
)
from ghmonitor.auth.types import UserProfile
from ghmonitor.config import AuthSettings, StorageSettings
from tests.helpers import START_TIME, FakeClock


# ── Token expiry ────────────────────────────────────────────────────


class TestTokens:
    """Tests for token persistence and expiry."""

    def test_valid_until_expiry(self, token_store: SecureTokenStore, clock: FakeClock) -> None:
        """A one-hour token is valid at T+3599 and expired at T+3601."""
        token_store.store_tokens("gho_a", "ghr_a", 3600)

        clock.advance(3599)
        assert not token_store.is_expired()
        assert token_store.get_valid_access_token() == "gho_a"

        clock.advance(2)
        assert token_store.is_expired()
        assert token_store.get_valid_access_token() is None
        # Expired tokens are still readable for refresh
        assert token_store.get_tokens().refresh_token == "ghr_a"

    def test_expires_at_is_stored_at_plus_lifetime(self, token_store: SecureTokenStore) -> None:
        """expires_at == stored_at + expires_in."""
        record = token_store.store_tokens("gho_a", None, 120)
        assert record.stored_at == START_TIME
        assert record.expires_at == START_TIME + 120

    @pytest.mark.parametrize("expires_in", [None, 0, -5, "soon"])
    def test_missing_or_invalid_expires_in_uses_default(
        self, token_store: SecureTokenStore, expires_in: object
    ) -> None:
        """Unusable lifetimes fall back to eight hours."""
        record = token_store.store_tokens("gho_a", None, expires_in)  # type: ignore[arg-type]
        assert record.expires_at == START_TIME + 28800

    def test_is_expired_when_empty(self, token_store: SecureTokenStore) -> None:
        """No tokens counts as expired."""
        assert token_store.is_expired()
        assert token_store.get_tokens() is None
        assert token_store.get_valid_access_token() is None

    def test_store_replaces_record(self, token_store: SecureTokenStore) -> None:
        """A second store replaces the first wholesale."""
        token_store.store_tokens("gho_a", "ghr_a", 3600)
        token_store.store_tokens("gho_b", None, 3600)
        tokens = token_store.get_tokens()
        assert tokens.access_token == "gho_b"
        assert tokens.refresh_token is None


# ── Pending flow ────────────────────────────────────────────────────


class TestPendingFlow:
    """Tests for state verification and verifier consumption."""

    def test_state_verifies_once(self, token_store: SecureTokenStore) -> None:
        """The right state verifies exactly once."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        assert token_store.verify_and_consume_state("state-abc") is True
        assert token_store.verify_and_consume_state("state-abc") is False

    def test_wrong_state_still_consumes(self, token_store: SecureTokenStore) -> None:
        """A failed comparison discards the whole pending flow."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        assert token_store.verify_and_consume_state("forged") is False
        assert token_store.consume_pkce_verifier() is None
        assert token_store.get_pending_flow() is None
        assert token_store.verify_and_consume_state("state-abc") is False

    def test_matching_state_keeps_verifier(self, token_store: SecureTokenStore) -> None:
        """A successful match leaves the verifier for one consumption."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        assert token_store.verify_and_consume_state("state-abc") is True
        assert token_store.consume_pkce_verifier() == "verifier-xyz"
        assert token_store.consume_pkce_verifier() is None

    @pytest.mark.parametrize("candidate", [None, ""])
    def test_missing_candidate(self, token_store: SecureTokenStore, candidate: str | None) -> None:
        """A missing state never verifies."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        assert token_store.verify_and_consume_state(candidate) is False

    def test_stale_state_rejected(self, token_store: SecureTokenStore, clock: FakeClock) -> None:
        """State older than ten minutes is rejected and discarded."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        clock.advance(601)
        assert token_store.get_pending_flow() is None
        assert token_store.verify_and_consume_state("state-abc") is False
        assert token_store.consume_pkce_verifier() is None

    def test_state_at_ttl_boundary_accepted(
        self, token_store: SecureTokenStore, clock: FakeClock
    ) -> None:
        """Exactly ten minutes old is still live."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        clock.advance(600)
        assert token_store.verify_and_consume_state("state-abc") is True

    def test_verifier_consumed_once(
        self, token_store: SecureTokenStore, records: MemoryRecordStore
    ) -> None:
        """The verifier is handed out once; the record goes when both parts are used."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        assert token_store.verify_and_consume_state("state-abc")
        assert PENDING_FLOW_KEY in records.keys()

        assert token_store.consume_pkce_verifier() == "verifier-xyz"
        assert token_store.consume_pkce_verifier() is None
        assert PENDING_FLOW_KEY not in records.keys()

    def test_new_flow_replaces_old(self, token_store: SecureTokenStore) -> None:
        """Only the latest pending flow is live."""
        token_store.store_pending_flow("first", "v1")
        token_store.store_pending_flow("second", "v2")
        assert token_store.get_pending_flow().state == "second"
        assert token_store.verify_and_consume_state("second") is True
        assert token_store.consume_pkce_verifier() == "v2"

    def test_get_pending_flow_peeks(self, token_store: SecureTokenStore) -> None:
        """get_pending_flow does not consume."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        flow = token_store.get_pending_flow()
        assert flow.state == "state-abc"
        assert flow.pkce_verifier == "verifier-xyz"
        assert token_store.verify_and_consume_state("state-abc") is True

    def test_clear_pending_flow(self, token_store: SecureTokenStore) -> None:
        """Clearing removes both state and verifier."""
        token_store.store_pending_flow("state-abc", "verifier-xyz")
        token_store.clear_pending_flow()
        assert token_store.get_pending_flow() is None
        assert token_store.consume_pkce_verifier() is None


# ── Profile and logout ──────────────────────────────────────────────


class TestProfileAndClear:
    """Tests for the cached profile and clear_all."""

    def test_profile_persisted(self, token_store: SecureTokenStore) -> None:
        """The stored profile reads back equal."""
        profile = UserProfile(id=1, login="octocat", name="The Octocat")
        token_store.store_user_profile(profile)
        assert token_store.get_user_profile() == profile
        assert token_store.get_user_profile().display_name == "The Octocat"

    def test_clear_all(self, token_store: SecureTokenStore, records: MemoryRecordStore) -> None:
        """Logout removes every artifact."""
        token_store.store_tokens("gho_a", "ghr_a", 3600)
        token_store.store_user_profile(UserProfile(id=1, login="octocat"))
        token_store.store_pending_flow("state-abc", "verifier-xyz")

        token_store.clear_all()

        assert token_store.get_tokens() is None
        assert token_store.get_user_profile() is None
        assert token_store.get_pending_flow() is None
        assert records.keys() == []


# ── Corruption and encryption ───────────────────────────────────────


class TestCorruption:
    """Unreadable records read as absent."""

    def test_garbage_blob(self, token_store: SecureTokenStore, records: MemoryRecordStore) -> None:
        """A blob that is not a Fernet token reads as no tokens."""
        records.set(TOKENS_KEY, "not-a-fernet-token")
        assert token_store.get_tokens() is None
        assert token_store.is_expired()

    def test_foreign_key(self, records: MemoryRecordStore, clock: FakeClock) -> None:
        """Records encrypted under another key read as absent."""
        writer = SecureTokenStore(records, RecordCipher(Fernet.generate_key(), "file"), clock=clock)
        writer.store_tokens("gho_a", "ghr_a", 3600)
        writer.store_user_profile(UserProfile(id=1, login="octocat"))

        reader = SecureTokenStore(records, RecordCipher(Fernet.generate_key(), "file"), clock=clock)
        assert reader.get_tokens() is None
        assert reader.get_user_profile() is None

    def test_encrypted_non_object(
        self, token_store: SecureTokenStore, records: MemoryRecordStore, cipher: RecordCipher
    ) -> None:
        """Valid ciphertext of a non-object payload is discarded."""
        records.set(PROFILE_KEY, cipher.encrypt(json.dumps(["octocat"])))
        assert token_store.get_user_profile() is None

    def test_malformed_token_record(
        self, token_store: SecureTokenStore, records: MemoryRecordStore, cipher: RecordCipher
    ) -> None:
        """A decryptable record missing fields is discarded."""
        records.set(TOKENS_KEY, cipher.encrypt(json.dumps({"access_token": "gho_a"})))
        assert token_store.get_tokens() is None


class TestFilePersistence:
    """Tests for the file-backed store built from settings."""

    def test_no_plaintext_on_disk(self, tmp_path: Path) -> None:
        """Neither tokens nor the verifier are written in the clear."""
        storage = StorageSettings(data_dir=tmp_path, encryption="fallback")
        store = create_token_store(storage, AuthSettings())
        store.store_tokens("gho_secret_token_value", "ghr_secret_refresh", 3600)
        store.store_pending_flow("state-plain", "verifier-plain")

        content = (tmp_path / STORE_FILE_NAME).read_text(encoding="utf-8")
        for secret in ("gho_secret_token_value", "ghr_secret_refresh", "verifier-plain"):
            assert secret not in content
        assert set(json.loads(content)) == {TOKENS_KEY, PENDING_FLOW_KEY}

    def test_survives_restart(self, tmp_path: Path) -> None:
        """A new store over the same directory reads existing tokens."""
        storage = StorageSettings(data_dir=tmp_path, encryption="fallback")
        create_token_store(storage).store_tokens("gho_a", "ghr_a", 3600)

        reopened = create_token_store(storage)
        assert reopened.get_valid_access_token() == "gho_a"

    def test_corrupt_store_file(self, tmp_path: Path) -> None:
        """A truncated store file reads as empty and is rewritten on the next store."""
        storage = StorageSettings(data_dir=tmp_path, encryption="fallback")
        store = create_token_store(storage)
        (tmp_path / STORE_FILE_NAME).write_text("{ truncated", encoding="utf-8")

        assert store.get_tokens() is None
        store.store_tokens("gho_b", None, 60)
        assert store.get_valid_access_token() == "gho_b"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_store_file_is_private(self, tmp_path: Path) -> None:
        """The store file is readable only by the owner."""
        store = SecureTokenStore(
            FileRecordStore(tmp_path / STORE_FILE_NAME),
            RecordCipher(Fernet.generate_key(), "file"),
        )
        store.store_tokens("gho_a", None, 60)
        mode = stat.S_IMODE((tmp_path / STORE_FILE_NAME).stat().st_mode)
        assert mode == 0o600

    def test_memory_backend(self, tmp_path: Path) -> None:
        """The memory backend writes no store file."""
        storage = StorageSettings(data_dir=tmp_path, backend="memory", encryption="fallback")
        store = create_token_store(storage)
        store.store_tokens("gho_a", None, 60)
        assert not (tmp_path / STORE_FILE_NAME).exists()
        assert store.get_valid_access_token() == "gho_a"
