"""
Credential storage and verification.

The verifier is a collaborator injected into the app so it can be swapped
for a real password hashing scheme without touching handlers or storage.
"""

from __future__ import annotations

import hmac
from typing import Protocol


class CredentialVerifier(Protocol):
    def prepare(self, secret: str) -> str:
        """Return the value to persist for a newly submitted secret."""
        ...

    def verify(self, stored: str, candidate: str) -> bool:
        ...


class PlaintextCredentials:
    """
    Placeholder verifier that stores secrets as given.

    Not a security mechanism: it only keeps the login contract working
    until a hashing verifier is plugged in.
    """

    def prepare(self, secret: str) -> str:
        return secret

    def verify(self, stored: str, candidate: str) -> bool:
        return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))
