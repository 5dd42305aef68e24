"""Configuration system for ghmonitor using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.ghmonitor] section (project-level)
3. ./ghmonitor.toml (project-level, explicit)
4. ~/.config/ghmonitor/config.toml (user-level, overrides project)
5. GHMONITOR_CONFIG_FILE (explicit file override)
6. Environment variables (highest priority)

Environment variables use GHMONITOR_ prefix with nested delimiter __.
Example: GHMONITOR_AUTH__CLIENT_ID, GHMONITOR_STORAGE__BACKEND
"""

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


logger = logging.getLogger("ghmonitor.config")

APP_DIR_NAME = "GitHubActionsMonitor"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    # Project-level pyproject.toml [tool.ghmonitor] (lowest file priority)
    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    # Explicit ghmonitor.toml (project-level)
    project_toml = Path("ghmonitor.toml")
    if project_toml.exists():
        files.append(project_toml)

    # User-level config (overrides project configs)
    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "ghmonitor" / "config.toml"
    else:
        user_config = Path("~/.config/ghmonitor/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    # Environment variable override for config file (highest file priority)
    env_config = os.environ.get("GHMONITOR_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        # Handle pyproject.toml [tool.ghmonitor] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("ghmonitor", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def default_data_dir() -> Path:
    """Per-user application data directory."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", "~"))
    elif sys.platform == "darwin":
        base = Path("~/Library/Application Support")
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))
    return (base / APP_DIR_NAME).expanduser()


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"client_secret"}

_REDACTED = "********"


class AuthSettings(BaseSettings):
    """GitHub OAuth configuration.

    Environment prefix: GHMONITOR_AUTH__
    Example: GHMONITOR_AUTH__CLIENT_ID=your-client-id

    TOML section: [auth]
    """

    model_config = SettingsConfigDict(
        env_prefix="GHMONITOR_AUTH__",
        extra="ignore",
    )

    client_id: str = Field(
        default="Ov23libY99pSHCALp1Ul",
        description="OAuth client ID registered for the desktop app",
    )
    client_secret: str = Field(
        default="",
        description="Client secret, only for providers that refuse public-client PKCE",
    )
    scopes: str = Field(
        default="repo workflow read:org notifications read:discussion read:packages",
        description="Space-separated OAuth scopes to request",
    )

    authorize_url: str = "https://github.com/login/oauth/authorize"
    token_url: str = "https://github.com/login/oauth/access_token"  # noqa: S105
    profile_url: str = "https://api.github.com/user"

    # The provider's registered redirect URI is fixed, so is the port.
    callback_host: str = Field(default="127.0.0.1", description="Callback bind address")
    callback_port: int = Field(default=3000, ge=1, le=65535, description="Callback port")
    callback_path: str = Field(default="/callback", description="Redirect path")

    pending_flow_ttl_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Lifetime of a pending flow's state and PKCE verifier",
    )
    default_expires_in: int = Field(
        default=28800,
        gt=0,
        description="Token lifetime assumed when the provider omits expires_in",
    )
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    success_close_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the listener stops after a successful callback",
    )

    @field_validator("callback_path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        """Ensure the redirect path starts with a slash."""
        return v if v.startswith("/") else f"/{v}"

    @property
    def redirect_uri(self) -> str:
        """The redirect URI registered with the provider."""
        return f"http://{self.callback_host}:{self.callback_port}{self.callback_path}"

    @property
    def scope_list(self) -> list[str]:
        """Requested scopes as a list."""
        return [s for s in self.scopes.split() if s]


class StorageSettings(BaseSettings):
    """Secure token store settings.

    Environment prefix: GHMONITOR_STORAGE__
    Example: GHMONITOR_STORAGE__ENCRYPTION=fallback
    """

    model_config = SettingsConfigDict(
        env_prefix="GHMONITOR_STORAGE__",
        extra="ignore",
    )

    backend: Literal["file", "memory"] = Field(
        default="file",
        description="Record backend: file (persistent) or memory (tests, ephemeral)",
    )
    data_dir: Path = Field(
        default_factory=default_data_dir,
        description="Directory holding the encrypted store and fallback key",
    )
    encryption: Literal["auto", "keyring", "fallback"] = Field(
        default="auto",
        description="auto uses the OS keyring when usable, else a local key file",
    )
    service_name: str = Field(
        default="ghmonitor",
        description="Keyring service name for the encryption key",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: GHMONITOR_LOG__
    Example: GHMONITOR_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="GHMONITOR_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class GHMonitorSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: GHMONITOR__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.ghmonitor] section
    3. ./ghmonitor.toml (project-level)
    4. ~/.config/ghmonitor/config.toml (user-level, overrides project)
    5. GHMONITOR_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="GHMONITOR__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    _section_names: ClassVar[tuple[str, ...]] = ("auth", "storage", "log")

    def __init__(self, **data: Any) -> None:
        # Load TOML configuration first
        toml_config = _load_toml_config()

        # Merge TOML config with explicit data (explicit takes precedence)
        merged = _deep_merge(toml_config, data)

        # Section classes read their own env prefixes; TOML values only
        # fill in what the environment leaves unset.
        for name, section_cls in (
            ("auth", AuthSettings),
            ("storage", StorageSettings),
            ("log", LogSettings),
        ):
            section = merged.get(name)
            if isinstance(section, dict):
                merged[name] = section_cls(**_without_env_overrides(section_cls, section))

        super().__init__(**merged)

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# ghmonitor Configuration", "# Generated by: ghmonitor config --toml", ""]

        all_data = self.model_dump(
            exclude=dict.fromkeys(self._section_names, _SENSITIVE_FIELDS),
        )

        for section_name in self._section_names:
            section_data = all_data.get(section_name, {})
            lines.append(f"[{section_name}]")
            for field_name, field_value in section_data.items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, (int, float)):
                    value_str = str(field_value)
                else:
                    escaped = str(field_value).replace("\\", "\\\\").replace('"', '\\"')
                    value_str = f'"{escaped}"'
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, section_name))
            lines.extend(
                f'{rn} = "{_REDACTED}"'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)


def _without_env_overrides(
    section_cls: type[BaseSettings], values: dict[str, Any]
) -> dict[str, Any]:
    """Drop TOML values that an environment variable already sets."""
    prefix = str(section_cls.model_config.get("env_prefix", "")).upper()
    return {k: v for k, v in values.items() if f"{prefix}{k.upper()}" not in os.environ}


@lru_cache(maxsize=1)
def get_settings() -> GHMonitorSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return GHMonitorSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
