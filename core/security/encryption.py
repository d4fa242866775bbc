"""Secret encryption using AES-GCM.

Encrypts platform session tokens at rest. Uses AES-256-GCM for
authenticated encryption, with the tenant id bound as associated data so a
ciphertext cannot be replayed under another tenant.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    key = secrets.token_bytes(32)
    return base64.b64encode(key).decode('utf-8')


@dataclass
class EncryptedSecret:
    """Encrypted payload with metadata."""
    ciphertext: str  # Base64, GCM tag appended
    nonce: str       # Base64 96-bit nonce
    created_at: str
    tenant_id: str
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "tenant_id": self.tenant_id,
            "key_version": self.key_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedSecret":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            created_at=data["created_at"],
            tenant_id=data["tenant_id"],
            key_version=data.get("key_version", 1),
        )


class SecretEncryption:
    """AES-256-GCM encryption for session secrets.

    Usage:
        enc = SecretEncryption(generate_encryption_key())
        sealed = enc.encrypt({"access_token": "..."}, tenant_id="T-001")
        data = enc.decrypt(sealed)
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded 32-byte key."""
        try:
            self._key = base64.b64decode(encryption_key, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid encryption key: {e}") from e
        if len(self._key) != 32:
            raise ValueError("Invalid encryption key: key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(self._key)

    def encrypt(self, data: Dict[str, Any], tenant_id: str, key_version: int = 1) -> EncryptedSecret:
        plaintext = json.dumps(data).encode('utf-8')
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, tenant_id.encode('utf-8'))

        return EncryptedSecret(
            ciphertext=base64.b64encode(ciphertext).decode('utf-8'),
            nonce=base64.b64encode(nonce).decode('utf-8'),
            created_at=datetime.utcnow().isoformat(),
            tenant_id=tenant_id,
            key_version=key_version,
        )

    def decrypt(self, sealed: EncryptedSecret) -> Dict[str, Any]:
        """Decrypt a payload.

        Raises:
            ValueError: wrong key, tampered data or wrong tenant
        """
        try:
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(sealed.nonce),
                base64.b64decode(sealed.ciphertext),
                sealed.tenant_id.encode('utf-8'),
            )
        except InvalidTag as e:
            raise ValueError("Secret decryption failed: authentication tag mismatch") from e
        return json.loads(plaintext.decode('utf-8'))
