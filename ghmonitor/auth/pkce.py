"""PKCE (Proof Key for Code Exchange) and state generation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass

from ..exceptions import FlowStartError


def _secure_token(nbytes: int) -> str:
    """URL-safe token from the OS CSPRNG; never falls back to weaker sources."""
    try:
        return secrets.token_urlsafe(nbytes)
    except (NotImplementedError, OSError) as exc:
        msg = f"Secure random source unavailable: {exc}"
        raise FlowStartError(msg) from exc


def compute_challenge(verifier: str) -> str:
    """Return ``base64url(sha256(verifier))`` without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 32) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes in the verifier (default 32, the
            RFC 7636 minimum; smaller values are rejected).

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.

        Raises
        ------
        ValueError
            If ``length`` is below 32.
        FlowStartError
            If the secure random source fails.
        """
        if length < 32:
            msg = f"PKCE verifier needs at least 32 random bytes, got {length}"
            raise ValueError(msg)
        verifier = _secure_token(length)
        return cls(verifier=verifier, challenge=compute_challenge(verifier))


def generate_state(nbytes: int = 16) -> str:
    """Generate an anti-forgery ``state`` value.

    Parameters
    ----------
    nbytes : int
        Number of random bytes (default 16, the minimum accepted).

    Returns
    -------
    str
        A URL-safe random string.

    Raises
    ------
    FlowStartError
        If the secure random source fails.
    """
    if nbytes < 16:
        msg = f"State needs at least 16 random bytes, got {nbytes}"
        raise ValueError(msg)
    return _secure_token(nbytes)
