"""Access-point provider credentials."""

from providers.variants import CryptwareVariant, ProviderVariant, get_variant, register_variant
from providers.vault import CredentialVault

__all__ = [
    "CredentialVault",
    "CryptwareVariant",
    "ProviderVariant",
    "get_variant",
    "register_variant",
]
