"""Tests for CLI module.

Tests the command-line interface for sign-in and configuration.
"""

import json

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from ghmonitor.auth import AuthService, create_token_store
from ghmonitor.auth.types import AuthResult, UserProfile
from ghmonitor.cli import format_config_show, main
from ghmonitor.config import GHMonitorSettings
from ghmonitor.exceptions import ProviderDeniedError


@pytest.fixture()
def file_store_env(tmp_path: Path, monkeypatch):
    """Point the CLI at an isolated file store with a key file."""
    data_dir = tmp_path / "data"
    monkeypatch.setenv("GHMONITOR_STORAGE__DATA_DIR", str(data_dir))
    monkeypatch.setenv("GHMONITOR_STORAGE__ENCRYPTION", "fallback")
    return data_dir


def _store():
    settings = GHMonitorSettings()
    return create_token_store(settings.storage, settings.auth)


class TestMainEntryPoint:
    """Tests for CLI main entry point."""

    def test_no_args_prints_help_text(self, capsys):
        """Running with no args prints help text with the subcommands."""
        assert main([]) == 0
        output = capsys.readouterr().out
        assert "usage:" in output.lower()
        for command in ("login", "logout", "status", "whoami", "config"):
            assert command in output

    def test_help_flag_shows_usage(self, capsys):
        """--help exits after printing usage."""
        with pytest.raises(SystemExit):
            main(["--help"])
        assert "ghmonitor" in capsys.readouterr().out


class TestConfigCommand:
    """Tests for the config command."""

    def test_show(self, capsys, monkeypatch):
        """--show lists every section with secrets masked."""
        monkeypatch.setenv("GHMONITOR_AUTH__CLIENT_SECRET", "s3cr3t-value")
        assert main(["config", "--show"]) == 0
        output = capsys.readouterr().out
        assert "[auth]" in output
        assert "[storage]" in output
        assert "s3cr3t-value" not in output
        assert "client_secret = '********'" in output

    def test_toml(self, capsys):
        """--toml prints loadable TOML."""
        assert main(["config", "--toml"]) == 0
        output = capsys.readouterr().out
        assert output.startswith("# ghmonitor Configuration")
        assert "callback_port = 3000" in output

    def test_format_config_show(self):
        """The formatter includes field values."""
        output = format_config_show(GHMonitorSettings())
        assert "callback_host = '127.0.0.1'" in output


@pytest.mark.usefixtures("file_store_env")
class TestAuthCommands:
    """Tests for login, logout, status and whoami."""

    def test_status_signed_out(self, capsys):
        """status exits 1 when nothing is stored."""
        assert main(["status"]) == 1
        assert "Not signed in" in capsys.readouterr().out

    def test_status_signed_in(self, capsys):
        """status reports the cached login."""
        store = _store()
        store.store_tokens("gho_a", "ghr_a", 3600)
        store.store_user_profile(UserProfile(id=1, login="octocat"))

        assert main(["status"]) == 0
        assert "Signed in as octocat" in capsys.readouterr().out

    def test_whoami(self, capsys):
        """whoami prints the profile as JSON."""
        _store().store_user_profile(UserProfile(id=1, login="octocat", name="The Octocat"))

        assert main(["whoami"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data == {"id": 1, "login": "octocat", "name": "The Octocat", "avatar_url": None}

    def test_whoami_signed_out(self, capsys):
        """whoami exits 1 without a profile."""
        assert main(["whoami"]) == 1
        assert "Not signed in" in capsys.readouterr().err

    def test_logout(self, capsys):
        """logout removes stored credentials."""
        store = _store()
        store.store_tokens("gho_a", "ghr_a", 3600)
        store.store_user_profile(UserProfile(id=1, login="octocat"))

        assert main(["logout"]) == 0
        assert "Signed out" in capsys.readouterr().out
        reopened = _store()
        assert reopened.get_tokens() is None
        assert reopened.get_user_profile() is None

    def test_login_success(self, capsys):
        """login prints the signed-in user."""
        result = AuthResult.ok(UserProfile(id=1, login="octocat"))
        with patch.object(AuthService, "authenticate", AsyncMock(return_value=result)):
            assert main(["login"]) == 0
        assert "Signed in as octocat" in capsys.readouterr().out

    def test_login_failure(self, capsys):
        """login exits 1 and reports the error."""
        result = AuthResult.fail(ProviderDeniedError("access_denied"))
        with patch.object(AuthService, "authenticate", AsyncMock(return_value=result)):
            assert main(["login"]) == 1
        assert "access_denied" in capsys.readouterr().err
