"""Helpers for handing the access token to git over HTTPS remotes."""

from __future__ import annotations

from urllib.parse import quote, urlsplit, urlunsplit


def _host_part(netloc: str) -> str:
    return netloc.rsplit("@", 1)[-1]


def authenticated_remote_url(url: str, token: str) -> str:
    """Embed ``token`` into an HTTPS git remote URL.

    Non-HTTPS remotes (SSH, ``git@host:path``, local paths) are returned
    unchanged. Any existing userinfo is replaced.

    Parameters
    ----------
    url : str
        The remote URL.
    token : str
        A valid access token.

    Returns
    -------
    str
        ``https://oauth2:<token>@host/path`` for HTTPS remotes.
    """
    parts = urlsplit(url)
    if parts.scheme != "https" or not parts.netloc:
        return url
    netloc = f"oauth2:{quote(token, safe='')}@{_host_part(parts.netloc)}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_remote_url(url: str) -> str:
    """Strip any credentials from a remote URL for display or logging."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or "@" not in parts.netloc:
        return url
    return urlunsplit(
        (parts.scheme, _host_part(parts.netloc), parts.path, parts.query, parts.fragment)
    )
