"""FIRS compliance state machine guards.

    none -> pending -> validated -> signed -> approved
    cancelled / rejected: absorbing, reachable from any non-terminal state

Guards are pure: they inspect an invoice snapshot and raise. The service
always passes a freshly fetched snapshot, never one cached from before an
earlier mutation.
"""

from typing import Dict, Iterable, Optional

from compliance import invoice_types
from core.errors import ComplianceGuardError, StateRegressionError, ValidationError
from core.models.invoice import BusinessStatus, FirsStatus, Invoice, PaymentStatus

VALIDATABLE_STATES = frozenset({FirsStatus.NONE, FirsStatus.PENDING})
EDITABLE_STATES = frozenset({FirsStatus.NONE, FirsStatus.PENDING, FirsStatus.VALIDATED})
TERMINAL_STATES = frozenset({FirsStatus.APPROVED, FirsStatus.CANCELLED, FirsStatus.REJECTED})

# Moves the regulator may report when status is refreshed
REPORTABLE_TRANSITIONS: Dict[FirsStatus, frozenset] = {
    FirsStatus.NONE: frozenset({FirsStatus.PENDING}),
    FirsStatus.PENDING: frozenset({FirsStatus.VALIDATED, FirsStatus.REJECTED}),
    FirsStatus.VALIDATED: frozenset({FirsStatus.SIGNED, FirsStatus.REJECTED, FirsStatus.CANCELLED}),
    FirsStatus.SIGNED: frozenset({FirsStatus.APPROVED, FirsStatus.REJECTED, FirsStatus.CANCELLED}),
    FirsStatus.APPROVED: frozenset(),
    FirsStatus.CANCELLED: frozenset(),
    FirsStatus.REJECTED: frozenset(),
}


def _refuse(operation: str, reason: str, invoice: Invoice) -> ComplianceGuardError:
    return ComplianceGuardError(operation, reason, invoice.firs_status.value)


def _check_not_absorbed(operation: str, invoice: Invoice) -> None:
    if invoice.firs_status.is_absorbing:
        raise _refuse(operation, f"invoice is {invoice.firs_status.value}", invoice)


def _check_business_not_cancelled(operation: str, invoice: Invoice) -> None:
    if invoice.business_status is BusinessStatus.CANCELLED:
        raise _refuse(operation, "invoice has been cancelled", invoice)


def guard_validate(invoice: Invoice) -> None:
    _check_not_absorbed("validate", invoice)
    if invoice.firs_status not in VALIDATABLE_STATES:
        raise _refuse("validate", f"invoice is already {invoice.firs_status.value}", invoice)


def guard_sign(invoice: Invoice) -> None:
    _check_not_absorbed("sign", invoice)
    _check_business_not_cancelled("sign", invoice)
    if invoice.firs_status is not FirsStatus.VALIDATED:
        raise _refuse("sign", f"invoice must be validated first (status is {invoice.firs_status.value})", invoice)
    if not (invoice.firs_irn or "").strip():
        raise _refuse("sign", "no IRN has been issued for this invoice", invoice)


def guard_update_firs_fields(
    invoice: Invoice,
    type_code: Optional[str],
    previous_irn: Optional[str],
) -> None:
    """Refuse edits after signing; enforce the type-conditional previous IRN.

    Raises:
        ComplianceGuardError: wrong state or cancelled invoice
        ValidationError: unknown type code, or previous IRN missing/forbidden
    """
    _check_not_absorbed("update FIRS fields", invoice)
    _check_business_not_cancelled("update FIRS fields", invoice)
    if invoice.firs_status not in EDITABLE_STATES:
        raise _refuse("update FIRS fields", f"invoice is already {invoice.firs_status.value}", invoice)

    code = invoice_types.normalise_code(type_code)
    errors: Dict[str, str] = {}
    if code is None:
        errors["firs_invoice_type_code"] = "Invoice type code is required"
    elif not invoice_types.is_known(code):
        errors["firs_invoice_type_code"] = f"Unknown FIRS invoice type code '{code}'"

    has_previous = bool((previous_irn or "").strip())
    if code is not None and invoice_types.requires_previous_irn(code) and not has_previous:
        errors["previous_invoice_irn"] = "Previous invoice IRN is required for credit and debit notes"
    elif code is not None and not invoice_types.requires_previous_irn(code) and has_previous:
        errors["previous_invoice_irn"] = "Previous invoice IRN is only allowed for credit and debit notes"

    if errors:
        raise ValidationError(errors)


def guard_update_payment(invoice: Invoice, status: PaymentStatus) -> None:
    _check_not_absorbed("update payment", invoice)
    if invoice.firs_status is FirsStatus.APPROVED:
        raise _refuse("update payment", "approved invoices are immutable", invoice)
    if invoice.firs_status is not FirsStatus.SIGNED:
        raise _refuse("update payment", "payment status can only change after signing", invoice)
    if status is PaymentStatus.PAID and invoice.business_status is BusinessStatus.PAID:
        raise _refuse("update payment", "invoice is already paid", invoice)
    if invoice.payment_status is status:
        raise _refuse("update payment", f"payment status is already {status.value}", invoice)


def guard_item_classification(invoice: Invoice, item_ids: Iterable[str]) -> None:
    _check_not_absorbed("update item classification", invoice)
    if invoice.firs_status not in EDITABLE_STATES:
        raise _refuse("update item classification", f"invoice is already {invoice.firs_status.value}", invoice)

    errors = {
        f"items.{item_id}": "Unknown invoice item"
        for item_id in item_ids
        if invoice.item(item_id) is None
    }
    if errors:
        raise ValidationError(errors)


def guard_cancel(invoice: Invoice) -> None:
    if invoice.firs_status in TERMINAL_STATES:
        raise _refuse("cancel", f"invoice is already {invoice.firs_status.value}", invoice)


def check_reported_status(invoice: Invoice, reported: FirsStatus) -> bool:
    """Whether a regulator-reported status should be applied.

    Returns False when nothing changes.

    Raises:
        StateRegressionError: the report would move the invoice backwards or
            out of a terminal state
    """
    current = invoice.firs_status
    if reported is current:
        return False
    if reported in REPORTABLE_TRANSITIONS[current]:
        return True
    raise StateRegressionError(invoice.id, current.value, reported.value)
