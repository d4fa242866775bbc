"""Core data models shared by the orchestration components.

Profiles and connection tests, sync jobs, invoices and access-point
providers, plus the audit event model.
"""

from core.models.base import PlatformBase, DateValue

from core.models.connection import (
    ConnectionPath,
    ConnectionProfile,
    ConnectionTestResult,
    Credentials,
    DbCredentials,
    Protocol,
    ReadPermissions,
    ServerDetails,
    StoredProfile,
    SyncSettings,
)

from core.models.sync import (
    DATE_BOUNDED_ENTITIES,
    DEPENDENCY_ORDER,
    EntityType,
    JobStatus,
    SyncJob,
    SyncJobSpec,
    SyncMode,
    SyncPlan,
    SyncStatus,
)

from core.models.invoice import (
    BusinessStatus,
    FirsStatus,
    Invoice,
    InvoiceDirection,
    InvoiceItem,
    PaymentStatus,
    ValidationReport,
)

from core.models.provider import AccessPointProvider, ActiveProvider

from core.models.refs import AuditEvent, AuditSeverity

__all__ = [
    # Base
    "PlatformBase",
    "DateValue",

    # Connection
    "ConnectionPath",
    "ConnectionProfile",
    "ConnectionTestResult",
    "Credentials",
    "DbCredentials",
    "Protocol",
    "ReadPermissions",
    "ServerDetails",
    "StoredProfile",
    "SyncSettings",

    # Sync
    "DATE_BOUNDED_ENTITIES",
    "DEPENDENCY_ORDER",
    "EntityType",
    "JobStatus",
    "SyncJob",
    "SyncJobSpec",
    "SyncMode",
    "SyncPlan",
    "SyncStatus",

    # Invoice
    "BusinessStatus",
    "FirsStatus",
    "Invoice",
    "InvoiceDirection",
    "InvoiceItem",
    "PaymentStatus",
    "ValidationReport",

    # Providers
    "AccessPointProvider",
    "ActiveProvider",

    # Audit
    "AuditEvent",
    "AuditSeverity",
]
