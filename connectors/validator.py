"""Connection profile validation.

Structural and semantic checks for a profile against its ERP type, run
before a profile is tested or persisted. Validation is local and
deterministic: no network calls, and "today" comes from an injectable clock.

Errors are field-keyed with dotted paths (``api_credentials.password``,
``server_details.pool_alias``). Normalisations such as forcing
``ssl_verify`` off for plain http are returned as ``adjustments`` alongside
the normalised profile so callers can show them to the operator.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

from pydantic import ValidationError as PydanticValidationError

from connectors.erp_types import ErpVariant, get_erp_type
from core.errors import ProfileValidationError
from core.models.connection import ConnectionProfile, Protocol
from core.observability.logging import get_logger

logger = get_logger(__name__)

MIN_PORT = 1
MAX_PORT = 65535
MIN_FREQUENCY_MINUTES = 1


@dataclass
class ValidationResult:
    """A profile that passed validation, after normalisation."""
    profile: ConnectionProfile
    variant: Type[ErpVariant]
    adjustments: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


def pydantic_field_errors(exc: PydanticValidationError) -> Dict[str, str]:
    """Map pydantic errors onto dotted field keys."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        key = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
        errors.setdefault(key or "profile", err.get("msg", "Invalid value"))
    return errors


class ProfileValidator:
    """Validates connection profiles for their ERP type.

    Usage:
        validator = ProfileValidator()
        result = validator.validate("sage_x3", profile)
        result.adjustments  # e.g. {"server_details.ssl_verify": "..."}
    """

    def __init__(self, clock: Optional[Callable[[], date]] = None):
        self._clock = clock or date.today

    def validate(
        self,
        erp_type: str,
        profile: Union[ConnectionProfile, Mapping[str, Any]],
    ) -> ValidationResult:
        """Validate ``profile`` for ``erp_type``.

        Raises:
            ProfileValidationError: with every field error found
        """
        if not isinstance(profile, ConnectionProfile):
            payload = dict(profile)
            payload.setdefault("erp_type", erp_type)
            try:
                profile = ConnectionProfile.model_validate(payload)
            except PydanticValidationError as e:
                raise ProfileValidationError(pydantic_field_errors(e)) from e

        try:
            variant = get_erp_type(erp_type)
        except KeyError:
            raise ProfileValidationError.single("erp_type", f"Unsupported ERP type: {erp_type}") from None

        errors: Dict[str, str] = {}
        if profile.erp_type and profile.erp_type != variant.code:
            errors["erp_type"] = f"Profile is for {profile.erp_type}, not {variant.code}"

        errors.update(self._check_server(profile))
        errors.update(self._check_credentials(profile))
        errors.update(self._check_schedule(profile))
        for key, message in variant.check(profile).items():
            errors.setdefault(key, message)

        if errors:
            logger.info(
                f"Profile rejected for {variant.code}",
                extra_fields={"fields": sorted(errors)},
            )
            raise ProfileValidationError(errors)

        normalised, adjustments = self._normalise(profile, variant)
        return ValidationResult(profile=normalised, variant=variant, adjustments=adjustments)

    # =========================================================================
    # Rule groups
    # =========================================================================

    def _check_server(self, profile: ConnectionProfile) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        server = profile.server_details
        if not (server.host or "").strip():
            errors["server_details.host"] = "Host is required"
        if server.port is not None and not (MIN_PORT <= server.port <= MAX_PORT):
            errors["server_details.port"] = f"Port must be between {MIN_PORT} and {MAX_PORT}"
        return errors

    def _check_credentials(self, profile: ConnectionProfile) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for name in ("api_credentials", "db_credentials"):
            creds = getattr(profile, name)
            if creds is None:
                continue
            for missing in creds.missing_fields():
                errors[f"{name}.{missing}"] = f"{missing.capitalize()} is required"

        if profile.api_credentials is None and profile.db_credentials is None:
            errors["credentials"] = "Provide API credentials or database credentials"
        return errors

    def _check_schedule(self, profile: ConnectionProfile) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if profile.sync_settings.frequency_minutes < MIN_FREQUENCY_MINUTES:
            errors["sync_settings.frequency_minutes"] = (
                f"Sync frequency must be at least {MIN_FREQUENCY_MINUTES} minute"
            )
        start = profile.invoice_sync_start_date
        if start is not None and start > self._clock():
            errors["invoice_sync_start_date"] = "Invoice sync start date cannot be in the future"
        return errors

    # =========================================================================
    # Normalisation
    # =========================================================================

    def _normalise(self, profile: ConnectionProfile, variant: Type[ErpVariant]):
        adjustments: Dict[str, str] = {}
        server_updates: Dict[str, Any] = {"host": profile.server_details.host.strip()}

        if profile.server_details.protocol is Protocol.HTTP:
            if profile.server_details.ssl_verify is not False:
                adjustments["server_details.ssl_verify"] = (
                    "SSL verification was turned off because the protocol is http"
                )
            server_updates["ssl_verify"] = False
        elif profile.server_details.ssl_verify is None:
            server_updates["ssl_verify"] = True

        if profile.server_details.port is None and variant.default_port is not None:
            server_updates["port"] = variant.default_port
            adjustments["server_details.port"] = f"Using default port {variant.default_port}"

        normalised = profile.model_copy(update={
            "erp_type": variant.code,
            "server_details": profile.server_details.model_copy(update=server_updates),
        })
        return normalised, adjustments
