"""Audit event logging and persistence.

Provides structured audit logging for profile changes, connection tests,
sync submissions, compliance transitions and credential access. Supports
multiple persistence backends.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.refs import AuditEvent, AuditSeverity
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Connection profiles
    PROFILE_CREATED = "PROFILE_CREATED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    PROFILE_DEACTIVATED = "PROFILE_DEACTIVATED"
    PROFILE_DELETED = "PROFILE_DELETED"
    CONNECTION_TESTED = "CONNECTION_TESTED"

    # Sync
    SYNC_SUBMITTED = "SYNC_SUBMITTED"
    SYNC_COMPLETED = "SYNC_COMPLETED"
    SYNC_FAILED = "SYNC_FAILED"

    # Compliance
    INVOICE_VALIDATED = "INVOICE_VALIDATED"
    INVOICE_VALIDATION_FAILED = "INVOICE_VALIDATION_FAILED"
    INVOICE_SIGNED = "INVOICE_SIGNED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    INVOICE_STATUS_REFRESHED = "INVOICE_STATUS_REFRESHED"
    FIRS_FIELDS_UPDATED = "FIRS_FIELDS_UPDATED"
    PAYMENT_STATUS_UPDATED = "PAYMENT_STATUS_UPDATED"
    ITEM_CLASSIFICATION_UPDATED = "ITEM_CLASSIFICATION_UPDATED"

    # Access-point providers
    PROVIDER_ACTIVATED = "PROVIDER_ACTIVATED"
    PROVIDER_CREDENTIALS_ROTATED = "PROVIDER_CREDENTIALS_ROTATED"
    PROVIDER_DEACTIVATED = "PROVIDER_DEACTIVATED"
    PROVIDER_PROFILE_RESYNCED = "PROVIDER_PROFILE_RESYNCED"
    CREDENTIALS_UNMASKED = "CREDENTIALS_UNMASKED"
    CREDENTIALS_UNMASK_FAILED = "CREDENTIALS_UNMASK_FAILED"

    # Authorisation
    PERMISSION_DENIED = "PERMISSION_DENIED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    tenant_id: Optional[str] = None,
    profile_id: Optional[str] = None,
    job_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        tenant_id: Owning tenant
        profile_id: Associated connection profile
        job_id: Associated sync job
        invoice_id: Associated invoice
        provider_id: Associated access-point provider
        details: Additional structured details
        actor: Who/what performed the action

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.utcnow(),
        event_type=event_type.value,
        severity=severity,
        tenant_id=tenant_id,
        profile_id=profile_id,
        job_id=job_id,
        invoice_id=invoice_id,
        provider_id=provider_id,
        message=message,
        details=details or {},
        actor=actor,
    )


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    tenant_id: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if tenant_id and event.tenant_id != tenant_id:
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.

    Stores one file per day in YYYY-MM-DD.json format.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, date: datetime) -> Path:
        return self.base_path / f"{date.strftime('%Y-%m-%d')}.json"

    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)

        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)

        events.append(event.model_dump(mode="json"))

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2)

    def query(
        self,
        event_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from JSON files."""
        results = []

        if start_time is None:
            start_time = datetime(2020, 1, 1)
        if end_time is None:
            end_time = datetime.utcnow()

        current = datetime(start_time.year, start_time.month, start_time.day)
        while current <= end_time and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)

                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, tenant_id, start_time, end_time):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break

            current += timedelta(days=1)

        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, tenant_id, start_time, end_time):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))
        audit.log_info(
            AuditEventType.PROVIDER_ACTIVATED,
            "Activated access-point provider hoptool",
            tenant_id="T-001",
        )
    """

    def __init__(self, backends: Optional[List[AuditBackend]] = None):
        self._backends: List[AuditBackend] = list(backends or [])

    def add_backend(self, backend: AuditBackend) -> None:
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except OSError as e:
                # Audit persistence failures must not fail the audited operation
                logger.error(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"event_type": event.event_type},
                )

    def log_info(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        self.log(create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs))

    def log_warning(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        self.log(create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs))

    def log_error(self, event_type: AuditEventType, message: str, **kwargs) -> None:
        self.log(create_audit_event(event_type, message, AuditSeverity.ERROR, **kwargs))

    def query(
        self,
        event_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from the first backend."""
        if not self._backends:
            return []
        return self._backends[0].query(event_type, tenant_id, start_time, end_time, limit)
