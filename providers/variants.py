"""Access-point provider credential variants.

Each provider code maps to the credential fields it needs. Codes without a
registered variant use the default api_key/api_secret pair.
"""

from typing import Dict, FrozenSet, Mapping, Optional, Type

from core.errors import ValidationError


class ProviderVariant:
    """Credential shape for one family of access-point providers."""

    code: str = "default"
    required_fields: FrozenSet[str] = frozenset({"api_key", "api_secret"})

    @classmethod
    def check(cls, credentials: Mapping[str, object]) -> Dict[str, str]:
        """Return cleaned credentials or raise a field-keyed ValidationError."""
        errors: Dict[str, str] = {}
        for name in sorted(set(credentials) - cls.required_fields):
            errors[f"credentials.{name}"] = f"Unknown credential field for {cls.code}"

        cleaned: Dict[str, str] = {}
        for name in sorted(cls.required_fields):
            value = credentials.get(name)
            text = str(value).strip() if value is not None else ""
            if not text:
                errors[f"credentials.{name}"] = "This field is required"
            else:
                cleaned[name] = text

        if errors:
            raise ValidationError(errors, "Invalid provider credentials")
        return cleaned

    @classmethod
    def blank(cls) -> Dict[str, str]:
        return {name: "" for name in sorted(cls.required_fields)}


_VARIANTS: Dict[str, Type[ProviderVariant]] = {}


def register_variant(cls: Type[ProviderVariant]) -> Type[ProviderVariant]:
    _VARIANTS[cls.code] = cls
    return cls


def get_variant(code: Optional[str]) -> Type[ProviderVariant]:
    return _VARIANTS.get((code or "").strip().lower(), ProviderVariant)


@register_variant
class CryptwareVariant(ProviderVariant):
    code = "cryptware"
    required_fields = frozenset({"participant_id", "api_key"})
