"""Logging utilities for ghmonitor.

Module loggers hang off the ``ghmonitor`` logger configured here.
Anything that might carry credential material goes through
``redact_sensitive_data`` or ``redact_url`` before it is logged.
"""

from __future__ import annotations

import logging
import sys

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the ghmonitor logger instance.

    Returns
    -------
    logging.Logger
        The ghmonitor logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("ghmonitor")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def configure(level: int | str = "WARNING", fmt: str | None = None) -> logging.Logger:
    """Apply level and format to the ghmonitor logger.

    Parameters
    ----------
    level : int or str
        The logging level.
    fmt : str, optional
        Format string for the stream handler.

    Returns
    -------
    logging.Logger
        The configured logger.
    """
    logger = get_logger()
    set_level(level)
    if fmt:
        for handler in logger.handlers:
            handler.setFormatter(logging.Formatter(fmt))
    return logger


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable debug logging for the auth flow and API client."""
    set_level(logging.DEBUG)


# Keys that should be redacted in log output for security
_SENSITIVE_KEYS = frozenset(
    {
        "token",
        "secret",
        "verifier",
        "code",
        "password",
        "key",
        "state",
        "authorization",
    }
)

_REDACTED = "[REDACTED]"


def _is_sensitive(key: Any) -> bool:
    key_lower = key.lower() if isinstance(key, str) else str(key).lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Redact sensitive values from data for safe logging.

    Recursively traverses dicts/lists and replaces values for keys
    that match sensitive patterns with "[REDACTED]".

    Parameters
    ----------
    data : dict or list or str or None
        The data to redact.
    max_depth : int, optional
        Maximum recursion depth to prevent infinite loops (default: 5).

    Returns
    -------
    dict or list or str or None
        A copy of the data with sensitive values redacted.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"

    if data is None:
        return None

    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            if _is_sensitive(k):
                result[k] = _REDACTED
            else:
                result[k] = redact_sensitive_data(v, max_depth - 1)
        return result

    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]

    return data


def redact_url(url: str) -> str:
    """Redact sensitive query parameters and userinfo from a URL.

    Parameters
    ----------
    url : str
        The URL to clean.

    Returns
    -------
    str
        The URL with sensitive query values and any credentials replaced.
    """
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_REDACTED}@{netloc.rsplit('@', 1)[1]}"
    query = urlencode(
        [(k, _REDACTED if _is_sensitive(k) else v) for k, v in parse_qsl(parts.query)],
        safe="[]",
    )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))
