"""At-rest encryption for persisted auth records.

Every record is Fernet-encrypted. The Fernet key itself lives in the OS
keyring when a usable backend exists (OS-backed protection); otherwise
it is kept in a key file readable only by the current user.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import os

from pathlib import Path
from typing import TYPE_CHECKING

import keyring
import keyring.errors

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import StorageError


if TYPE_CHECKING:
    from ..config import StorageSettings


logger = logging.getLogger("ghmonitor.auth")

KEYRING_USERNAME = "record-encryption-key"
KEY_FILE_NAME = ".key"


class RecordCipher:
    """Fernet cipher over UTF-8 text.

    Parameters
    ----------
    key : bytes
        A urlsafe-base64 Fernet key.
    source : str
        Where the key came from (``"keyring"`` or ``"file"``), for diagnostics.
    """

    def __init__(self, key: bytes, source: str) -> None:
        """Initialize the cipher."""
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            msg = f"Invalid encryption key from {source}"
            raise StorageError(msg) from exc
        self.source = source

    @property
    def os_backed(self) -> bool:
        """Whether the key is protected by the OS keyring."""
        return self.source == "keyring"

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text, returning an ASCII token."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a token produced by ``encrypt``.

        Raises
        ------
        StorageError
            If the token is corrupted or was encrypted under another key.
        """
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as exc:
            msg = "Failed to decrypt stored record"
            raise StorageError(msg) from exc


def keyring_available() -> bool:
    """Whether the active keyring backend can actually store secrets."""
    try:
        backend = keyring.get_keyring()
        priority = float(backend.priority)  # type: ignore[arg-type]
    except (RuntimeError, keyring.errors.KeyringError, AttributeError) as exc:
        logger.debug("Keyring probe failed: %s", exc)
        return False
    # fail.Keyring reports 0 and null.Keyring a negative priority
    return priority > 0


def load_keyring_key(service_name: str) -> bytes:
    """Fetch the record key from the OS keyring, creating it on first use.

    Raises
    ------
    StorageError
        If the keyring refuses the read or write.
    """
    try:
        existing = keyring.get_password(service_name, KEYRING_USERNAME)
        if existing:
            return existing.encode("ascii")
        key = Fernet.generate_key()
        keyring.set_password(service_name, KEYRING_USERNAME, key.decode("ascii"))
    except keyring.errors.KeyringError as exc:
        msg = f"OS keyring unavailable: {exc}"
        raise StorageError(msg) from exc
    logger.info("Created record encryption key in OS keyring (%s)", service_name)
    return key


def load_file_key(path: Path) -> bytes:
    """Fetch the record key from a 0600 key file, creating it on first use.

    Raises
    ------
    StorageError
        If the key file cannot be read or created.
    """
    try:
        return path.read_bytes().strip()
    except FileNotFoundError:
        pass
    except OSError as exc:
        msg = f"Cannot read key file: {exc}"
        raise StorageError(msg, key=str(path)) from exc

    key = Fernet.generate_key()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        # Another process won the race; use its key.
        return path.read_bytes().strip()
    except OSError as exc:
        msg = f"Cannot create key file: {exc}"
        raise StorageError(msg, key=str(path)) from exc
    with os.fdopen(fd, "wb") as fh:
        fh.write(key)
    logger.warning(
        "OS keyring not available; using fallback key file %s for token encryption",
        path,
    )
    return key


def create_cipher(settings: StorageSettings) -> RecordCipher:
    """Build the record cipher selected by ``settings.encryption``.

    ``auto`` prefers the OS keyring and degrades to the key file when the
    keyring is missing or refuses access.

    Raises
    ------
    StorageError
        If the explicitly requested key source is unusable.
    """
    mode = settings.encryption
    key_path = Path(settings.data_dir) / KEY_FILE_NAME

    if mode == "fallback":
        return RecordCipher(load_file_key(key_path), source="file")

    if mode == "keyring":
        return RecordCipher(load_keyring_key(settings.service_name), source="keyring")

    if keyring_available():
        try:
            return RecordCipher(load_keyring_key(settings.service_name), source="keyring")
        except StorageError as exc:
            logger.warning("Falling back to key file encryption: %s", exc)
    return RecordCipher(load_file_key(key_path), source="file")
