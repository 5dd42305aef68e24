"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os
import socket

import pytest

from cryptography.fernet import Fernet

from ghmonitor.auth.encryption import RecordCipher
from ghmonitor.auth.storage import MemoryRecordStore
from ghmonitor.auth.token_store import SecureTokenStore
from ghmonitor.config import AuthSettings, clear_settings
from tests.helpers import FakeClock


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep user config files and GHMONITOR_* variables out of every test."""

    for name in list(os.environ):
        if name.startswith("GHMONITOR"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    clear_settings()
    yield
    clear_settings()


@pytest.fixture()
def clock() -> FakeClock:
    """A manually advanced clock."""
    return FakeClock()


@pytest.fixture()
def cipher() -> RecordCipher:
    """A cipher over a throwaway key."""
    return RecordCipher(Fernet.generate_key(), source="file")


@pytest.fixture()
def records() -> MemoryRecordStore:
    """Raw in-memory record backend."""
    return MemoryRecordStore()


@pytest.fixture()
def token_store(records, cipher, clock) -> SecureTokenStore:
    """A token store on the fake clock."""
    return SecureTokenStore(records, cipher, clock=clock)


@pytest.fixture()
def free_port() -> int:
    """A localhost port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def auth_settings(free_port) -> AuthSettings:
    """Auth settings pointing the callback at a free port."""
    return AuthSettings(
        client_id="test-client-id",
        callback_port=free_port,
        success_close_delay_seconds=0.0,
        http_timeout_seconds=5.0,
    )
