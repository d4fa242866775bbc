"""Invoice models as seen by the FIRS compliance pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from core.models.base import PlatformBase


class InvoiceDirection(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"

    @property
    def route_segment(self) -> str:
        """URL segment the platform uses for this direction."""
        return "ar" if self is InvoiceDirection.RECEIVABLE else "ap"


class FirsStatus(str, Enum):
    """Regulatory lifecycle of an invoice."""
    NONE = "none"
    PENDING = "pending"
    VALIDATED = "validated"
    SIGNED = "signed"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_absorbing(self) -> bool:
        return self in (FirsStatus.CANCELLED, FirsStatus.REJECTED)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"


class BusinessStatus(str, Enum):
    """Commercial status maintained by the canonical store."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceItem(PlatformBase):
    id: str
    description: Optional[str] = None
    quantity: float = 1
    unit_price: float = 0
    classification_code: Optional[str] = Field(None, description="HSN / service classification code")


class Invoice(PlatformBase):
    """An invoice and its FIRS compliance fields."""
    id: str
    invoice_number: Optional[str] = None
    direction: InvoiceDirection = InvoiceDirection.RECEIVABLE
    business_status: BusinessStatus = BusinessStatus.DRAFT
    firs_status: FirsStatus = FirsStatus.NONE
    firs_irn: Optional[str] = None
    firs_invoice_type_code: Optional[str] = None
    firs_note: Optional[str] = None
    previous_invoice_irn: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    items: List[InvoiceItem] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def item(self, item_id: str) -> Optional[InvoiceItem]:
        return next((it for it in self.items if it.id == item_id), None)


class ValidationReport(PlatformBase):
    """Structured FIRS validation outcome."""
    valid: bool = False
    irn: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
