"""Platform session token storage.

The platform API is called with a per-tenant bearer token issued by the
(external) authentication service. Tokens are kept encrypted at rest:
- InMemoryTokenStore: For development/testing
- FileTokenStore: For single-server deployments
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from core.observability.logging import get_logger
from core.security.encryption import EncryptedSecret, SecretEncryption

logger = get_logger(__name__)


@dataclass
class StoredSession:
    """Encrypted session token record."""
    tenant_id: str
    encrypted_token: EncryptedSecret
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        if not self.expires_at:
            return False
        return datetime.utcnow() >= (self.expires_at - timedelta(seconds=buffer_seconds))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "encrypted_token": self.encrypted_token.to_dict(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredSession":
        return cls(
            tenant_id=data["tenant_id"],
            encrypted_token=EncryptedSecret.from_dict(data["encrypted_token"]),
            expires_at=datetime.fromisoformat(data["expires_at"]) if data.get("expires_at") else None,
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.utcnow(),
        )


class TokenStore(ABC):
    """Abstract base class for session token storage."""

    @abstractmethod
    async def store(self, session: StoredSession) -> None:
        pass

    @abstractmethod
    async def get(self, tenant_id: str) -> Optional[StoredSession]:
        pass

    @abstractmethod
    async def delete(self, tenant_id: str) -> bool:
        pass


class InMemoryTokenStore(TokenStore):
    """In-memory token storage. Tokens are lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, StoredSession] = {}
        self._lock = threading.Lock()

    async def store(self, session: StoredSession) -> None:
        with self._lock:
            self._sessions[session.tenant_id] = session

    async def get(self, tenant_id: str) -> Optional[StoredSession]:
        with self._lock:
            return self._sessions.get(tenant_id)

    async def delete(self, tenant_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(tenant_id, None) is not None


class FileTokenStore(TokenStore):
    """File-based token storage, one JSON file per tenant.

    Directory structure:
        {base_path}/
            {tenant_id}.json
    """

    def __init__(self, base_path: str = ".tokens"):
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        os.chmod(self._base_path, 0o700)

    def _token_path(self, tenant_id: str) -> Path:
        safe_tenant = "".join(c if c.isalnum() or c in "-_" else "_" for c in tenant_id)
        return self._base_path / f"{safe_tenant}.json"

    async def store(self, session: StoredSession) -> None:
        path = self._token_path(session.tenant_id)
        with self._lock:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(session.to_dict(), f, indent=2)
            os.chmod(path, 0o600)

    async def get(self, tenant_id: str) -> Optional[StoredSession]:
        path = self._token_path(tenant_id)
        if not path.exists():
            return None

        with self._lock:
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                return StoredSession.from_dict(data)
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Unreadable session file for tenant {tenant_id}: {e}")
                return None

    async def delete(self, tenant_id: str) -> bool:
        path = self._token_path(tenant_id)
        with self._lock:
            if path.exists():
                path.unlink()
                return True
            return False


class SessionTokens:
    """Encrypts, stores and retrieves per-tenant bearer tokens."""

    def __init__(self, store: TokenStore, encryption: SecretEncryption):
        self._store = store
        self._encryption = encryption

    async def save(self, tenant_id: str, access_token: str, expires_in: Optional[int] = None) -> None:
        expires_at = datetime.utcnow() + timedelta(seconds=expires_in) if expires_in else None
        sealed = self._encryption.encrypt({"access_token": access_token}, tenant_id=tenant_id)
        await self._store.store(StoredSession(tenant_id=tenant_id, encrypted_token=sealed, expires_at=expires_at))

    async def get_access_token(self, tenant_id: str) -> Optional[str]:
        """Return the decrypted token, or None when missing or expired."""
        session = await self._store.get(tenant_id)
        if session is None or session.is_expired():
            return None
        return self._encryption.decrypt(session.encrypted_token).get("access_token")

    async def clear(self, tenant_id: str) -> bool:
        return await self._store.delete(tenant_id)
