"""ERP type variants.

Each supported ERP type is a registered variant that declares which
connection paths it offers and where its database name lives. The profile
validator and the connection negotiator dispatch on the variant. Neither one
probes profile fields to guess what an ERP type needs.

Two families:
- ApiPrimaryVariant: API path first; the database name for the fallback
  path lives under ``db_credentials.database``.
- DatabasePrimaryVariant: database path first-class; the database name
  lives under ``server_details.database``.

To add an ERP type, subclass one family and decorate it with
``@register_erp_type``.
"""

from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple, Type

from core.models.connection import ConnectionPath, ConnectionProfile


class DatabaseLocation(str, Enum):
    """Authoritative location of the database name for a type."""
    SERVER_DETAILS = "server_details.database"
    DB_CREDENTIALS = "db_credentials.database"


# =============================================================================
# Variant base classes
# =============================================================================

class ErpVariant:
    """Connection rules for one ERP type."""

    code: ClassVar[str] = ""
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    versions: ClassVar[Tuple[str, ...]] = ()
    default_port: ClassVar[Optional[int]] = None

    supports_api: ClassVar[bool] = True
    supports_database: ClassVar[bool] = True
    requires_pool_alias: ClassVar[bool] = False
    database_location: ClassVar[DatabaseLocation] = DatabaseLocation.DB_CREDENTIALS

    @classmethod
    def connection_methods(cls) -> List[ConnectionPath]:
        """Paths in negotiation order. API is always tried first."""
        methods = []
        if cls.supports_api:
            methods.append(ConnectionPath.API)
        if cls.supports_database:
            methods.append(ConnectionPath.DATABASE)
        return methods

    @classmethod
    def database_name(cls, profile: ConnectionProfile) -> Optional[str]:
        """Database name read from this type's authoritative location."""
        if cls.database_location is DatabaseLocation.SERVER_DETAILS:
            value = profile.server_details.database
        else:
            value = profile.db_credentials.database if profile.db_credentials else None
        return value.strip() if value and value.strip() else None

    @classmethod
    def check(cls, profile: ConnectionProfile) -> Dict[str, str]:
        """Type-specific field errors (dotted keys)."""
        errors: Dict[str, str] = {}

        if profile.api_credentials is not None and not cls.supports_api:
            errors["api_credentials"] = f"{cls.name} does not support API connections"
        if profile.db_credentials is not None and not cls.supports_database:
            errors["db_credentials"] = f"{cls.name} does not support database connections"

        if (
            cls.requires_pool_alias
            and profile.api_credentials is not None
            and not (profile.server_details.pool_alias or "").strip()
        ):
            errors["server_details.pool_alias"] = f"Pool alias is required for {cls.name} API connections"

        errors.update(cls._check_database(profile))
        return errors

    @classmethod
    def _check_database(cls, profile: ConnectionProfile) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if profile.db_credentials is None or not cls.supports_database:
            return errors

        if cls.database_name(profile) is None:
            errors[cls.database_location.value] = f"Database name is required for {cls.name}"

        # Only one location is authoritative; a value in the other is rejected
        if cls.database_location is DatabaseLocation.SERVER_DETAILS:
            stray, stray_key = profile.db_credentials.database, DatabaseLocation.DB_CREDENTIALS.value
        else:
            stray, stray_key = profile.server_details.database, DatabaseLocation.SERVER_DETAILS.value
        if stray and stray.strip():
            errors[stray_key] = f"{cls.name} reads the database name from {cls.database_location.value}"
        return errors

    @classmethod
    def describe(cls) -> Dict[str, object]:
        return {
            "erp_type": cls.code,
            "name": cls.name,
            "description": cls.description,
            "supported_versions": list(cls.versions),
            "connection_methods": [m.value for m in cls.connection_methods()],
            "requires_pool_alias": cls.requires_pool_alias,
            "database_location": cls.database_location.value,
            "default_port": cls.default_port,
        }


class ApiPrimaryVariant(ErpVariant):
    database_location = DatabaseLocation.DB_CREDENTIALS


class DatabasePrimaryVariant(ErpVariant):
    database_location = DatabaseLocation.SERVER_DETAILS


class DatabaseOnlyVariant(DatabasePrimaryVariant):
    supports_api = False

    @classmethod
    def check(cls, profile: ConnectionProfile) -> Dict[str, str]:
        errors = super().check(profile)
        if profile.db_credentials is None:
            errors.setdefault("db_credentials", f"Database credentials are required for {cls.name}")
            errors.setdefault(cls.database_location.value, f"Database name is required for {cls.name}")
        return errors


class ApiOnlyVariant(ApiPrimaryVariant):
    supports_database = False


# =============================================================================
# Registry
# =============================================================================

_erp_type_registry: Dict[str, Type[ErpVariant]] = {}


def register_erp_type(cls: Type[ErpVariant]) -> Type[ErpVariant]:
    """Decorator to register an ERP type variant."""
    _erp_type_registry[cls.code] = cls
    return cls


def get_erp_type(code: str) -> Type[ErpVariant]:
    """Look up a variant by code.

    Raises:
        KeyError: If the ERP type is not registered
    """
    key = (code or "").strip().lower()
    if key not in _erp_type_registry:
        raise KeyError(f"Unknown ERP type: {code}. Available: {sorted(_erp_type_registry)}")
    return _erp_type_registry[key]


def list_erp_types() -> List[str]:
    return list(_erp_type_registry.keys())


def erp_catalogue() -> List[Dict[str, object]]:
    """Supported ERP types with their connection methods."""
    return [variant.describe() for variant in _erp_type_registry.values()]


# =============================================================================
# Supported ERP types
# =============================================================================

@register_erp_type
class Sage300(DatabasePrimaryVariant):
    code = "sage_300"
    name = "Sage 300"
    description = "Sage 300 ERP System"
    versions = ("2022", "2023", "2024")
    default_port = 1433


@register_erp_type
class SageX3(ApiPrimaryVariant):
    code = "sage_x3"
    name = "Sage X3"
    description = "Sage X3 Enterprise Management"
    versions = ("V12", "V11", "V10")
    default_port = 8124
    requires_pool_alias = True


@register_erp_type
class SageEvolution(DatabaseOnlyVariant):
    code = "sage_evolution"
    name = "Sage Evolution"
    description = "Sage Evolution ERP"
    versions = ("Premium", "Standard")
    default_port = 1433


@register_erp_type
class Dynamics365(ApiOnlyVariant):
    code = "dynamics_365"
    name = "Microsoft Dynamics 365"
    description = "Microsoft Dynamics 365 Business Central"
    versions = ("Business Central", "Finance & Operations")
    default_port = 443


@register_erp_type
class DynamicsNav(DatabaseOnlyVariant):
    code = "dynamics_nav"
    name = "Microsoft Dynamics NAV"
    description = "Microsoft Dynamics NAV (on-premises)"
    versions = ("2018", "2017", "2016")
    default_port = 1433


@register_erp_type
class QuickBooks(ApiOnlyVariant):
    code = "quickbooks"
    name = "QuickBooks"
    description = "QuickBooks Desktop & Online"
    versions = ("Desktop 2022", "Desktop 2023", "Online")
    default_port = 443


@register_erp_type
class OracleErp(ApiPrimaryVariant):
    code = "oracle_erp"
    name = "Oracle ERP Cloud"
    description = "Oracle Enterprise Resource Planning"
    versions = ("Cloud", "R12")
    default_port = 443


@register_erp_type
class SapBusinessOne(ApiPrimaryVariant):
    code = "sap_business_one"
    name = "SAP Business One"
    description = "SAP Business One ERP"
    versions = ("10.0", "9.3")
    default_port = 50000


@register_erp_type
class SapS4Hana(ApiOnlyVariant):
    code = "sap_s4hana"
    name = "SAP S/4HANA"
    versions = ("2023", "2022")
    default_port = 443


@register_erp_type
class Xero(ApiOnlyVariant):
    code = "xero"
    name = "Xero"
    versions = ("Online",)
    default_port = 443


@register_erp_type
class ZohoBooks(ApiOnlyVariant):
    code = "zoho_books"
    name = "Zoho Books"
    versions = ("Online",)
    default_port = 443


@register_erp_type
class NetSuite(ApiOnlyVariant):
    code = "netsuite"
    name = "Oracle NetSuite"
    versions = ("2024.1", "2023.2")
    default_port = 443


@register_erp_type
class CustomIntegration(ApiOnlyVariant):
    code = "custom"
    name = "Custom Integration"
    description = "Custom ERP Integration via API"
    versions = ("Any",)
