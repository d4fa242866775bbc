"""Security module - permission gate, encryption, session tokens."""

from core.security.encryption import (
    SecretEncryption,
    EncryptedSecret,
    generate_encryption_key,
)
from core.security.token_store import (
    TokenStore,
    StoredSession,
    InMemoryTokenStore,
    FileTokenStore,
    SessionTokens,
)
from core.security.permissions import (
    AuthContext,
    Permission,
    Role,
    effective_permissions,
    has_permission,
    require,
)

__all__ = [
    "SecretEncryption",
    "EncryptedSecret",
    "generate_encryption_key",
    "TokenStore",
    "StoredSession",
    "InMemoryTokenStore",
    "FileTokenStore",
    "SessionTokens",
    "AuthContext",
    "Permission",
    "Role",
    "effective_permissions",
    "has_permission",
    "require",
]
