"""FIRS compliance transitions.

Every transition follows the same sequence:
1. permission check
2. duplicate-submission guard on the invoice. The guard is keyed by
   direction and id and covers every operation on that invoice, status
   refresh included
3. fresh fetch of the invoice
4. state guard against that fresh snapshot (no request on refusal)
5. exactly one request to the platform
"""

from typing import Awaitable, Callable, Dict, Optional, TypeVar

from backend.base import PlatformBackend
from compliance import state_machine
from core.audit.events import AuditEventType, AuditLogger
from core.concurrency import InFlightGuard
from core.errors import (
    BackendError,
    ComplianceError,
    ComplianceGuardError,
    StateRegressionError,
    ValidationError,
)
from core.models.invoice import (
    Invoice,
    InvoiceDirection,
    PaymentStatus,
    ValidationReport,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from core.security.permissions import AuthContext, Permission, require

logger = get_logger(__name__)

T = TypeVar("T")


class ComplianceService:
    """Advances invoices through the FIRS pipeline.

    Usage:
        service = ComplianceService(backend)
        report = await service.validate(ctx, "inv-1", InvoiceDirection.RECEIVABLE)
        invoice = await service.sign(ctx, "inv-1", InvoiceDirection.RECEIVABLE)
    """

    def __init__(self, backend: PlatformBackend, audit: Optional[AuditLogger] = None):
        self._backend = backend
        self._audit = audit or AuditLogger()
        self._guard = InFlightGuard()

    async def get_invoice(self, ctx: AuthContext, invoice_id: str,
                          direction: InvoiceDirection = InvoiceDirection.RECEIVABLE) -> Invoice:
        require(ctx, Permission.INVOICES_VIEW)
        return await self._backend.get_invoice(invoice_id, direction)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def validate(self, ctx: AuthContext, invoice_id: str,
                       direction: InvoiceDirection = InvoiceDirection.RECEIVABLE) -> ValidationReport:
        """Validate with the regulator. The IRN is issued on success.

        Raises:
            ComplianceError: the regulator rejected the invoice; state is unchanged
        """
        async def call(invoice: Invoice) -> ValidationReport:
            report = await self._backend.validate_invoice(invoice.id, direction)
            if not report.valid:
                raise ComplianceError(report)
            if not report.irn:
                refreshed = await self._backend.get_invoice(invoice.id, direction)
                report = report.model_copy(update={"irn": refreshed.firs_irn})
            return report

        return await self._transition(
            ctx, Permission.FIRS_VALIDATE, "validate", invoice_id, direction,
            state_machine.guard_validate, call,
            AuditEventType.INVOICE_VALIDATED, "Invoice validated",
        )

    async def sign(self, ctx: AuthContext, invoice_id: str,
                   direction: InvoiceDirection = InvoiceDirection.RECEIVABLE) -> Invoice:
        return await self._transition(
            ctx, Permission.FIRS_SUBMIT, "sign", invoice_id, direction,
            state_machine.guard_sign,
            lambda invoice: self._backend.sign_invoice(invoice.id, direction),
            AuditEventType.INVOICE_SIGNED, "Invoice signed",
        )

    async def update_firs_fields(
        self,
        ctx: AuthContext,
        invoice_id: str,
        type_code: str,
        note: Optional[str] = None,
        previous_irn: Optional[str] = None,
        direction: InvoiceDirection = InvoiceDirection.RECEIVABLE,
    ) -> Invoice:
        fields = {
            "firs_invoice_type_code": (type_code or "").strip(),
            "firs_note": note,
            "previous_invoice_irn": (previous_irn or "").strip() or None,
        }
        return await self._transition(
            ctx, Permission.INVOICES_UPDATE, "update_firs_fields", invoice_id, direction,
            lambda invoice: state_machine.guard_update_firs_fields(invoice, type_code, previous_irn),
            lambda invoice: self._backend.update_firs_fields(invoice.id, direction, fields),
            AuditEventType.FIRS_FIELDS_UPDATED, f"FIRS fields updated (type {fields['firs_invoice_type_code']})",
        )

    async def update_payment(
        self,
        ctx: AuthContext,
        invoice_id: str,
        status: PaymentStatus,
        direction: InvoiceDirection = InvoiceDirection.RECEIVABLE,
    ) -> Invoice:
        status = PaymentStatus(status)
        return await self._transition(
            ctx, Permission.INVOICES_UPDATE, "update_payment", invoice_id, direction,
            lambda invoice: state_machine.guard_update_payment(invoice, status),
            lambda invoice: self._backend.update_payment_status(invoice.id, direction, status),
            AuditEventType.PAYMENT_STATUS_UPDATED, f"Payment status set to {status.value}",
        )

    async def update_item_classification(
        self,
        ctx: AuthContext,
        invoice_id: str,
        item_id: str,
        code: str,
        direction: InvoiceDirection = InvoiceDirection.RECEIVABLE,
    ) -> Invoice:
        return await self.update_item_classifications(ctx, invoice_id, {item_id: code}, direction)

    async def update_item_classifications(
        self,
        ctx: AuthContext,
        invoice_id: str,
        codes: Dict[str, str],
        direction: InvoiceDirection = InvoiceDirection.RECEIVABLE,
    ) -> Invoice:
        """Set HSN/service classification codes for several items in one request."""
        blank = {f"items.{item_id}": "Classification code is required"
                 for item_id, code in codes.items() if not (code or "").strip()}
        if not codes:
            blank["items"] = "No items to update"
        if blank:
            raise ValidationError(blank)
        cleaned = {item_id: code.strip() for item_id, code in codes.items()}

        return await self._transition(
            ctx, Permission.INVOICES_UPDATE, "update_item_classification", invoice_id, direction,
            lambda invoice: state_machine.guard_item_classification(invoice, cleaned.keys()),
            lambda invoice: self._backend.update_item_classifications(invoice.id, direction, cleaned),
            AuditEventType.ITEM_CLASSIFICATION_UPDATED, f"Classified {len(cleaned)} item(s)",
        )

    async def cancel(self, ctx: AuthContext, invoice_id: str, reason: str,
                     direction: InvoiceDirection = InvoiceDirection.RECEIVABLE) -> Invoice:
        if not (reason or "").strip():
            raise ValidationError.single("reason", "A cancellation reason is required")
        return await self._transition(
            ctx, Permission.FIRS_SUBMIT, "cancel", invoice_id, direction,
            state_machine.guard_cancel,
            lambda invoice: self._backend.cancel_invoice(invoice.id, direction, reason.strip()),
            AuditEventType.INVOICE_CANCELLED, f"Invoice cancelled: {reason.strip()}",
        )

    async def refresh_status(self, ctx: AuthContext, invoice_id: str,
                             direction: InvoiceDirection = InvoiceDirection.RECEIVABLE) -> Invoice:
        """Pull the regulator's status for the invoice's IRN and apply it.

        Raises:
            StateRegressionError: the reported status would move the invoice backwards
        """
        def check(invoice: Invoice) -> None:
            if not invoice.firs_irn:
                raise ComplianceGuardError("refresh status", "invoice has no IRN", invoice.firs_status.value)

        async def call(invoice: Invoice) -> Invoice:
            reported = await self._backend.get_firs_status(invoice.firs_irn)
            try:
                changed = state_machine.check_reported_status(invoice, reported)
            except StateRegressionError:
                logger.error(
                    f"Regulator reported {reported.value} for invoice in {invoice.firs_status.value}",
                    extra_fields={"irn": invoice.firs_irn},
                )
                raise
            if not changed:
                return invoice
            return await self._backend.record_firs_status(invoice.id, direction, reported)

        return await self._transition(
            ctx, Permission.FIRS_VIEW, "refresh_status", invoice_id, direction, check, call,
            AuditEventType.INVOICE_STATUS_REFRESHED, "FIRS status refreshed",
        )

    # =========================================================================
    # Shared sequence
    # =========================================================================

    async def _transition(
        self,
        ctx: AuthContext,
        permission: Permission,
        operation: str,
        invoice_id: str,
        direction: InvoiceDirection,
        check: Callable[[Invoice], None],
        call: Callable[[Invoice], Awaitable[T]],
        audit_type: AuditEventType,
        audit_message: str,
    ) -> T:
        require(ctx, permission)
        metrics = get_metrics()

        async with self._guard.hold(f"invoice:{direction.value}:{invoice_id}"):
            with with_correlation(tenant_id=self._backend.tenant_id, invoice_id=invoice_id, operation=operation):
                invoice = await self._backend.get_invoice(invoice_id, direction)
                try:
                    check(invoice)
                except (ComplianceGuardError, ValidationError) as e:
                    metrics.record_compliance_transition(operation, "refused")
                    logger.info(f"{operation} refused: {e}")
                    raise

                try:
                    result = await call(invoice)
                except ComplianceError as e:
                    metrics.record_compliance_transition(operation, "failed")
                    self._audit.log_warning(
                        AuditEventType.INVOICE_VALIDATION_FAILED,
                        e.summary(),
                        tenant_id=self._backend.tenant_id,
                        invoice_id=invoice_id,
                        details=e.report.model_dump(),
                        actor=ctx.user_id or "system",
                    )
                    raise
                except (BackendError, StateRegressionError):
                    metrics.record_compliance_transition(operation, "failed")
                    raise

                metrics.record_compliance_transition(operation, "succeeded")
                self._audit.log_info(
                    audit_type,
                    audit_message,
                    tenant_id=self._backend.tenant_id,
                    invoice_id=invoice_id,
                    details={"previous_status": invoice.firs_status.value},
                    actor=ctx.user_id or "system",
                )
                logger.info(f"{operation} succeeded")
                return result
