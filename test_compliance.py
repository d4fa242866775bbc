"""
FIRS compliance tests.

Every transition re-fetches the invoice, is guarded against the state
machine, and sends at most one request to the platform. Refused transitions
never reach the platform.
"""

import asyncio

import pytest


@pytest.fixture(autouse=True)
def fresh_metrics():
    from core.observability.metrics import MetricsCollector
    MetricsCollector.reset()
    yield
    MetricsCollector.reset()


@pytest.fixture
def admin():
    from core.security.permissions import AuthContext, Role
    return AuthContext(roles=(Role.COMPANY_ADMIN,), tenant_id="tenant-1", user_id="ada")


@pytest.fixture
def viewer():
    from core.security.permissions import AuthContext, Role
    return AuthContext(roles=(Role.COMPANY_USER,), tenant_id="tenant-1", user_id="bo")


@pytest.fixture
def audit_backend():
    from core.audit.events import InMemoryAuditBackend
    return InMemoryAuditBackend()


@pytest.fixture
def backend():
    from backend.in_memory import InMemoryPlatformBackend
    from core.models import Invoice, InvoiceItem

    backend = InMemoryPlatformBackend()
    backend.add_invoice(Invoice(
        id="inv-1",
        invoice_number="INV-001",
        items=[
            InvoiceItem(id="line-1", description="Cement", quantity=10, unit_price=5500),
            InvoiceItem(id="line-2", description="Haulage", quantity=1, unit_price=20000),
        ],
    ))
    return backend


@pytest.fixture
def service(backend, audit_backend):
    from compliance.service import ComplianceService
    from core.audit.events import AuditLogger
    return ComplianceService(backend, audit=AuditLogger([audit_backend]))


def stored(backend, invoice_id="inv-1"):
    from core.models import InvoiceDirection
    return backend.invoices[(InvoiceDirection.RECEIVABLE, invoice_id)]


def set_status(backend, status, **updates):
    invoice = stored(backend)
    backend.add_invoice(invoice.model_copy(update={"firs_status": status, **updates}))


class TestValidate:

    def test_success_issues_irn(self, service, backend, admin):
        from core.models import FirsStatus

        report = asyncio.run(service.validate(admin, "inv-1"))

        assert report.valid
        assert report.irn.startswith("IRN-INV-001-")
        assert stored(backend).firs_status is FirsStatus.VALIDATED
        assert stored(backend).firs_irn == report.irn

    def test_rejection_leaves_state_unchanged(self, service, backend, admin, audit_backend):
        from core.errors import ComplianceError
        from core.models import FirsStatus

        backend.validation_errors["inv-1"] = [
            "Buyer TIN is missing",
            "Item line-1 has no classification code",
            "Item line-2 has no classification code",
            "Tax total does not match line totals",
        ]

        with pytest.raises(ComplianceError) as exc_info:
            asyncio.run(service.validate(admin, "inv-1"))

        error = exc_info.value
        assert len(error.errors) == 4
        assert error.summary(limit=2).endswith("(+2 more)")
        assert error.to_dict()["data"]["valid"] is False
        assert stored(backend).firs_status is FirsStatus.NONE
        assert audit_backend.query(event_type="INVOICE_VALIDATION_FAILED")

    def test_already_validated_is_refused_without_request(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import FirsStatus

        set_status(backend, FirsStatus.VALIDATED, firs_irn="IRN-1")

        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.validate(admin, "inv-1"))
        assert "validate_invoice" not in backend.call_names()

    def test_pending_invoice_can_be_validated(self, service, backend, admin):
        from core.models import FirsStatus

        set_status(backend, FirsStatus.PENDING)
        report = asyncio.run(service.validate(admin, "inv-1"))
        assert report.valid


class TestSign:

    def test_sign_requires_validation(self, service, backend, admin):
        from core.errors import ComplianceGuardError

        with pytest.raises(ComplianceGuardError) as exc_info:
            asyncio.run(service.sign(admin, "inv-1"))

        assert "validated first" in exc_info.value.message
        assert "sign_invoice" not in backend.call_names()

    def test_validate_then_sign(self, service, backend, admin):
        from core.models import FirsStatus, PaymentStatus

        async def run():
            await service.validate(admin, "inv-1")
            return await service.sign(admin, "inv-1")

        invoice = asyncio.run(run())

        assert invoice.firs_status is FirsStatus.SIGNED
        assert invoice.payment_status is PaymentStatus.PENDING
        assert backend.call_names().count("sign_invoice") == 1

    def test_guard_uses_fresh_snapshot(self, service, backend, admin):
        from core.models import FirsStatus

        async def run():
            await service.validate(admin, "inv-1")
            # Cancelled elsewhere after validation
            set_status(backend, FirsStatus.CANCELLED)
            return await service.sign(admin, "inv-1")

        from core.errors import ComplianceGuardError
        with pytest.raises(ComplianceGuardError):
            asyncio.run(run())
        assert "sign_invoice" not in backend.call_names()

    def test_duplicate_submission_is_refused(self, service, backend, admin):
        from core.errors import DuplicateSubmissionError
        from core.models import FirsStatus, Invoice

        set_status(backend, FirsStatus.VALIDATED, firs_irn="IRN-9")
        backend.latency = 0.01

        async def run():
            return await asyncio.gather(
                service.sign(admin, "inv-1"),
                service.sign(admin, "inv-1"),
                return_exceptions=True,
            )

        first, second = asyncio.run(run())

        assert isinstance(first, Invoice)
        assert isinstance(second, DuplicateSubmissionError)
        assert backend.call_names().count("sign_invoice") == 1

    def test_payable_and_receivable_with_same_id_are_independent(self, service, backend, admin):
        from core.models import FirsStatus, Invoice, InvoiceDirection

        set_status(backend, FirsStatus.VALIDATED, firs_irn="IRN-9")
        backend.add_invoice(Invoice(
            id="inv-1",
            direction=InvoiceDirection.PAYABLE,
            firs_status=FirsStatus.VALIDATED,
            firs_irn="IRN-10",
        ))
        backend.latency = 0.01

        async def run():
            return await asyncio.gather(
                service.sign(admin, "inv-1"),
                service.sign(admin, "inv-1", InvoiceDirection.PAYABLE),
            )

        receivable, payable = asyncio.run(run())

        assert receivable.firs_status is FirsStatus.SIGNED
        assert payable.firs_status is FirsStatus.SIGNED
        assert backend.call_names().count("sign_invoice") == 2

    def test_status_refresh_refused_during_payment_update(self, service, backend, admin):
        from core.errors import DuplicateSubmissionError
        from core.models import FirsStatus, Invoice, PaymentStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-9")
        backend.latency = 0.01

        async def run():
            return await asyncio.gather(
                service.update_payment(admin, "inv-1", PaymentStatus.PAID),
                service.refresh_status(admin, "inv-1"),
                return_exceptions=True,
            )

        paid, refreshed = asyncio.run(run())

        assert isinstance(paid, Invoice)
        assert isinstance(refreshed, DuplicateSubmissionError)
        assert "get_firs_status" not in backend.call_names()

    def test_permission_checked_before_any_request(self, service, backend, viewer):
        from core.errors import PermissionDenied

        with pytest.raises(PermissionDenied):
            asyncio.run(service.sign(viewer, "inv-1"))
        assert backend.calls == []


class TestFirsFields:

    def test_credit_note_requires_previous_irn(self, service, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_firs_fields(admin, "inv-1", "381"))

        assert "previous_invoice_irn" in exc_info.value.field_errors
        assert "update_firs_fields" not in backend.call_names()

    def test_credit_note_with_previous_irn(self, service, backend, admin):
        invoice = asyncio.run(
            service.update_firs_fields(admin, "inv-1", " 381 ", note="Returned goods", previous_irn="IRN-OLD-1")
        )

        assert invoice.firs_invoice_type_code == "381"
        assert invoice.previous_invoice_irn == "IRN-OLD-1"
        assert invoice.firs_note == "Returned goods"

    def test_standard_invoice_must_not_reference_previous(self, service, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_firs_fields(admin, "inv-1", "380", previous_irn="IRN-OLD-1"))
        assert "previous_invoice_irn" in exc_info.value.field_errors

    def test_unknown_type_code(self, service, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_firs_fields(admin, "inv-1", "999"))
        assert "firs_invoice_type_code" in exc_info.value.field_errors

    def test_fields_frozen_after_signing(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import FirsStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-1")
        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.update_firs_fields(admin, "inv-1", "380"))


class TestPayment:

    def test_payment_before_signing_refused(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import PaymentStatus

        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.update_payment(admin, "inv-1", PaymentStatus.PAID))
        assert "update_payment_status" not in backend.call_names()

    def test_paid_after_signing(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import BusinessStatus, FirsStatus, PaymentStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-1", payment_status=PaymentStatus.PENDING)

        invoice = asyncio.run(service.update_payment(admin, "inv-1", PaymentStatus.PAID))
        assert invoice.payment_status is PaymentStatus.PAID
        assert invoice.business_status is BusinessStatus.PAID

        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.update_payment(admin, "inv-1", PaymentStatus.PAID))

    def test_approved_invoice_is_immutable(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import FirsStatus, PaymentStatus

        set_status(backend, FirsStatus.APPROVED, firs_irn="IRN-1")
        with pytest.raises(ComplianceGuardError) as exc_info:
            asyncio.run(service.update_payment(admin, "inv-1", PaymentStatus.PAID))
        assert "immutable" in exc_info.value.message


class TestItemClassification:

    def test_blank_code_rejected_locally(self, service, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_item_classification(admin, "inv-1", "line-1", "  "))

        assert "items.line-1" in exc_info.value.field_errors
        assert backend.calls == []

    def test_unknown_item_rejected(self, service, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_item_classifications(admin, "inv-1", {"line-9": "2523.29"}))
        assert "items.line-9" in exc_info.value.field_errors
        assert "update_item_classifications" not in backend.call_names()

    def test_batch_update(self, service, admin):
        invoice = asyncio.run(
            service.update_item_classifications(admin, "inv-1", {"line-1": "2523.29", "line-2": " 9965 "})
        )

        assert invoice.item("line-1").classification_code == "2523.29"
        assert invoice.item("line-2").classification_code == "9965"

    def test_empty_batch_rejected(self, service, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.update_item_classifications(admin, "inv-1", {}))
        assert "items" in exc_info.value.field_errors


class TestCancel:

    def test_reason_required(self, service, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(service.cancel(admin, "inv-1", "   "))
        assert "reason" in exc_info.value.field_errors
        assert backend.calls == []

    def test_cancel_is_absorbing(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.models import FirsStatus

        set_status(backend, FirsStatus.VALIDATED, firs_irn="IRN-1")

        invoice = asyncio.run(service.cancel(admin, "inv-1", "Duplicate of INV-000"))
        assert invoice.firs_status is FirsStatus.CANCELLED
        assert invoice.firs_note == "Duplicate of INV-000"

        for attempt in (
            service.cancel(admin, "inv-1", "again"),
            service.validate(admin, "inv-1"),
            service.sign(admin, "inv-1"),
        ):
            with pytest.raises(ComplianceGuardError):
                asyncio.run(attempt)


class TestRefreshStatus:

    def test_forward_move_is_applied(self, service, backend, admin):
        from core.models import FirsStatus

        set_status(backend, FirsStatus.VALIDATED, firs_irn="IRN-1")
        backend.regulator_status["IRN-1"] = FirsStatus.SIGNED

        invoice = asyncio.run(service.refresh_status(admin, "inv-1"))

        assert invoice.firs_status is FirsStatus.SIGNED
        assert "record_firs_status" in backend.call_names()

    def test_unchanged_status_writes_nothing(self, service, backend, admin):
        from core.models import FirsStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-1")
        backend.regulator_status["IRN-1"] = FirsStatus.SIGNED

        invoice = asyncio.run(service.refresh_status(admin, "inv-1"))

        assert invoice.firs_status is FirsStatus.SIGNED
        assert "record_firs_status" not in backend.call_names()

    def test_regression_is_refused(self, service, backend, admin):
        from core.errors import StateRegressionError
        from core.models import FirsStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-1")
        backend.regulator_status["IRN-1"] = FirsStatus.VALIDATED

        with pytest.raises(StateRegressionError):
            asyncio.run(service.refresh_status(admin, "inv-1"))
        assert stored(backend).firs_status is FirsStatus.SIGNED
        assert "record_firs_status" not in backend.call_names()

    def test_requires_irn(self, service, admin):
        from core.errors import ComplianceGuardError

        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.refresh_status(admin, "inv-1"))

    def test_viewer_may_refresh(self, service, backend, viewer):
        from core.models import FirsStatus

        set_status(backend, FirsStatus.SIGNED, firs_irn="IRN-1")
        backend.regulator_status["IRN-1"] = FirsStatus.APPROVED

        invoice = asyncio.run(service.refresh_status(viewer, "inv-1"))
        assert invoice.firs_status is FirsStatus.APPROVED


class TestMetricsAndAudit:

    def test_outcomes_are_counted(self, service, backend, admin):
        from core.errors import ComplianceGuardError
        from core.observability.metrics import get_metrics

        asyncio.run(service.validate(admin, "inv-1"))
        with pytest.raises(ComplianceGuardError):
            asyncio.run(service.validate(admin, "inv-1"))

        compliance = get_metrics().get_summary()["compliance"]
        assert compliance["validate"]["succeeded"] == 1
        assert compliance["validate"]["refused"] == 1

    def test_successful_transition_is_audited_with_actor(self, service, admin, audit_backend):
        asyncio.run(service.validate(admin, "inv-1"))

        events = audit_backend.query(event_type="INVOICE_VALIDATED")
        assert len(events) == 1
        assert events[0].actor == "ada"
        assert events[0].invoice_id == "inv-1"
        assert events[0].details["previous_status"] == "none"


class TestInvoiceTypes:

    def test_notes_require_previous_irn(self):
        from compliance import CREDIT_NOTE, DEBIT_NOTE, STANDARD_INVOICE, requires_previous_irn

        assert requires_previous_irn(CREDIT_NOTE)
        assert requires_previous_irn(DEBIT_NOTE)
        assert not requires_previous_irn(STANDARD_INVOICE)

    def test_catalogue_lists_codes(self):
        from compliance import list_invoice_types

        codes = {entry["code"] for entry in list_invoice_types()}
        assert {"380", "381", "383"} <= codes
