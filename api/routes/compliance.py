"""FIRS compliance endpoints.

Invoices are addressed as /invoices/{ar|ap}/{invoice_id}. A refused
transition returns 409 and never reaches the platform.
"""

from enum import Enum
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import TenantServices, get_auth_context, get_services
from compliance.invoice_types import list_invoice_types
from core.models.invoice import Invoice, InvoiceDirection, PaymentStatus, ValidationReport
from core.security.permissions import AuthContext


router = APIRouter()


class Segment(str, Enum):
    AR = "ar"
    AP = "ap"

    @property
    def direction(self) -> InvoiceDirection:
        return InvoiceDirection.RECEIVABLE if self is Segment.AR else InvoiceDirection.PAYABLE


class FirsFieldsRequest(BaseModel):
    firs_invoice_type_code: str
    firs_note: Optional[str] = None
    previous_invoice_irn: Optional[str] = None


class PaymentRequest(BaseModel):
    payment_status: PaymentStatus


class ItemClassificationRequest(BaseModel):
    """Classification codes keyed by invoice item id."""
    items: Dict[str, str] = Field(default_factory=dict)


class CancelRequest(BaseModel):
    reason: str = ""


@router.get("/firs/invoice-types")
async def invoice_types() -> List[Dict[str, object]]:
    return list_invoice_types()


@router.get("/{segment}/{invoice_id}", response_model=Invoice)
async def get_invoice(
    segment: Segment,
    invoice_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.get_invoice(ctx, invoice_id, segment.direction)


@router.post("/{segment}/{invoice_id}/validate", response_model=ValidationReport)
async def validate_invoice(
    segment: Segment,
    invoice_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> ValidationReport:
    """Validate with the regulator; a rejection is a 422 carrying the report."""
    return await services.compliance.validate(ctx, invoice_id, segment.direction)


@router.post("/{segment}/{invoice_id}/sign", response_model=Invoice)
async def sign_invoice(
    segment: Segment,
    invoice_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.sign(ctx, invoice_id, segment.direction)


@router.patch("/{segment}/{invoice_id}/firs-fields", response_model=Invoice)
async def update_firs_fields(
    segment: Segment,
    invoice_id: str,
    request: FirsFieldsRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.update_firs_fields(
        ctx,
        invoice_id,
        request.firs_invoice_type_code,
        note=request.firs_note,
        previous_irn=request.previous_invoice_irn,
        direction=segment.direction,
    )


@router.post("/{segment}/{invoice_id}/payment", response_model=Invoice)
async def update_payment(
    segment: Segment,
    invoice_id: str,
    request: PaymentRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.update_payment(
        ctx, invoice_id, request.payment_status, segment.direction
    )


@router.patch("/{segment}/{invoice_id}/items/hsn-codes", response_model=Invoice)
async def update_item_classifications(
    segment: Segment,
    invoice_id: str,
    request: ItemClassificationRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.update_item_classifications(
        ctx, invoice_id, request.items, segment.direction
    )


@router.post("/{segment}/{invoice_id}/cancel", response_model=Invoice)
async def cancel_invoice(
    segment: Segment,
    invoice_id: str,
    request: CancelRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.cancel(ctx, invoice_id, request.reason, segment.direction)


@router.post("/{segment}/{invoice_id}/refresh-status", response_model=Invoice)
async def refresh_status(
    segment: Segment,
    invoice_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Invoice:
    return await services.compliance.refresh_status(ctx, invoice_id, segment.direction)
