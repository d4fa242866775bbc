"""FIRS e-invoice compliance: invoice types, state guards, transitions."""

from compliance.invoice_types import (
    CREDIT_NOTE,
    DEBIT_NOTE,
    STANDARD_INVOICE,
    list_invoice_types,
    requires_previous_irn,
)
from compliance.service import ComplianceService

__all__ = [
    "CREDIT_NOTE",
    "DEBIT_NOTE",
    "STANDARD_INVOICE",
    "list_invoice_types",
    "requires_previous_irn",
    "ComplianceService",
]
