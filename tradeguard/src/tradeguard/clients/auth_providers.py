"""
Authentication provider abstractions for the settlement ledger.

These classes build the HTTP headers for a ledger request.  Separating
auth concerns from the HTTP client lets the ledger client run unsigned
against a local ledger in development and signed against the shared
network ledger in production without modifying the client code.
"""
from __future__ import annotations

import base64
import hashlib
import time
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..secrets_manager import BaseSecretsManager, get_default_secrets_manager

# Signatures are valid for five minutes after creation.
SIGNATURE_TTL_SECONDS = 300


class AuthProvider:
    """Abstract base class for authentication providers."""

    async def get_headers(self, body: str) -> Dict[str, str]:
        """Return headers for a request carrying ``body``.

        Subclasses must implement this method.
        """
        raise NotImplementedError


class UnsignedProvider(AuthProvider):
    """No authentication; only declares the JSON content type."""

    async def get_headers(self, body: str) -> Dict[str, str]:
        return {"Content-Type": "application/json"}


class BecknSignatureProvider(AuthProvider):
    """Ed25519 request signing in the Beckn ``Signature`` header format.

    The signing string covers the creation and expiry timestamps and a
    BLAKE2b-512 digest of the request body.
    """

    def __init__(self, subscriber_id: str, key_id: str, private_key_b64: str) -> None:
        seed = base64.b64decode(private_key_b64)
        if len(seed) != 32:
            raise ValueError("Ed25519 signing key must be a base64 encoded 32-byte seed")
        self.subscriber_id = subscriber_id
        self.key_id = key_id
        self._private_key = Ed25519PrivateKey.from_private_bytes(seed)

    @staticmethod
    def body_digest(body: str) -> str:
        return base64.b64encode(hashlib.blake2b(body.encode("utf-8")).digest()).decode()

    def authorization(self, body: str, created: Optional[int] = None) -> str:
        created = int(time.time()) if created is None else created
        expires = created + SIGNATURE_TTL_SECONDS
        signing_string = (
            f"(created): {created}\n"
            f"(expires): {expires}\n"
            f"digest: BLAKE-512={self.body_digest(body)}"
        )
        signature = base64.b64encode(self._private_key.sign(signing_string.encode())).decode()
        key_id = f"{self.subscriber_id}|{self.key_id}|ed25519"
        return (
            f'Signature keyId="{key_id}", algorithm="ed25519", created="{created}", '
            f'expires="{expires}", headers="(created) (expires) digest", signature="{signature}"'
        )

    async def get_headers(self, body: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": self.authorization(body),
        }


def provider_from_secrets(secrets: Optional[BaseSecretsManager] = None) -> AuthProvider:
    """Build a signing provider when all Beckn credentials are configured."""
    secrets = secrets or get_default_secrets_manager()
    subscriber_id = secrets.get_secret("BECKN_SUBSCRIBER_ID")
    key_id = secrets.get_secret("BECKN_SIGNING_KEY_ID")
    private_key = secrets.get_secret("BECKN_SIGNING_PRIVATE_KEY")
    if subscriber_id and key_id and private_key:
        return BecknSignatureProvider(subscriber_id, key_id, private_key)
    return UnsignedProvider()
