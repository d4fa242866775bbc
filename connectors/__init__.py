"""ERP connection profiles: type registry, validation, negotiation, lifecycle.

To add a new ERP type:
1. Subclass one of the variant families in ``connectors.erp_types``
2. Register it with the ``@register_erp_type`` decorator
"""

from connectors.erp_types import (
    ApiOnlyVariant,
    ApiPrimaryVariant,
    DatabaseLocation,
    DatabaseOnlyVariant,
    DatabasePrimaryVariant,
    ErpVariant,
    erp_catalogue,
    get_erp_type,
    list_erp_types,
    register_erp_type,
)
from connectors.negotiator import ConnectionNegotiator
from connectors.profiles import ProfileOutcome, ProfileService
from connectors.validator import ProfileValidator, ValidationResult

__all__ = [
    # ERP types
    "ApiOnlyVariant",
    "ApiPrimaryVariant",
    "DatabaseLocation",
    "DatabaseOnlyVariant",
    "DatabasePrimaryVariant",
    "ErpVariant",
    "erp_catalogue",
    "get_erp_type",
    "list_erp_types",
    "register_erp_type",

    # Services
    "ConnectionNegotiator",
    "ProfileOutcome",
    "ProfileService",
    "ProfileValidator",
    "ValidationResult",
]
