"""Audit models for tracking orchestration and compliance actions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    BLOCK = "BLOCK"


class AuditEvent(BaseModel):
    """An audit event for tracking system actions.

    Covers profile changes, connection tests, sync submissions, compliance
    transitions, provider changes and credential reads.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (PROFILE_CREATED, INVOICE_SIGNED, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    profile_id: Optional[str] = Field(None, description="Associated ERP connection profile")
    job_id: Optional[str] = Field(None, description="Associated sync job")
    invoice_id: Optional[str] = Field(None, description="Associated invoice")
    provider_id: Optional[str] = Field(None, description="Associated access-point provider")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
