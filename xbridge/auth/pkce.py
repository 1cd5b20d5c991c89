"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass, field


def _challenge_for(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier, challenge and CSRF state for one login attempt.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string). Sent only to the
        token exchange step, never to the authorization endpoint.
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    csrf_state : str
        Random ``state`` echoed through the authorization redirect.
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    csrf_state: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier, challenge and CSRF state.

        Parameters
        ----------
        length : int
            Number of bytes for the random verifier (default 64).
            RFC 7636 recommends at least 32 bytes.

        Returns
        -------
        PKCEChallenge
            A new, unrelated challenge triple.
        """
        verifier = secrets.token_urlsafe(length)
        return cls(
            verifier=verifier,
            challenge=_challenge_for(verifier),
            csrf_state=secrets.token_urlsafe(32),
        )

    def matches(self, verifier: str) -> bool:
        """Check that ``verifier`` hashes to this challenge."""
        return secrets.compare_digest(_challenge_for(verifier), self.challenge)
