"""Abstract platform backend interface.

The orchestration core never talks to storage, ERPs or the regulator
directly. It goes through this interface, which the platform API implements
(``backend.http_client``) and which ``backend.in_memory`` fakes for local
development and tests.

A backend instance is scoped to one tenant.

All methods return NORMALIZED models from ``core.models``. Implementations
raise ``NotFoundError`` for unknown ids, ``PermissionDenied`` for a
backend 403 and ``BackendError`` for anything else.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from core.models import (
    AccessPointProvider,
    ActiveProvider,
    ConnectionPath,
    ConnectionProfile,
    ConnectionTestResult,
    EntityType,
    FirsStatus,
    Invoice,
    InvoiceDirection,
    PaymentStatus,
    StoredProfile,
    SyncJob,
    SyncJobSpec,
    SyncStatus,
    ValidationReport,
)


class PlatformBackend(ABC):
    """Backend collaborator for one tenant."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id

    async def close(self) -> None:
        """Release transport resources."""
        return None

    # =========================================================================
    # Connection Profiles
    # =========================================================================

    @abstractmethod
    async def create_profile(self, profile: ConnectionProfile) -> StoredProfile:
        pass

    @abstractmethod
    async def get_profile(self, profile_id: str) -> StoredProfile:
        pass

    @abstractmethod
    async def list_profiles(self) -> List[StoredProfile]:
        pass

    @abstractmethod
    async def update_profile(self, profile_id: str, profile: ConnectionProfile) -> StoredProfile:
        pass

    @abstractmethod
    async def delete_profile(self, profile_id: str) -> None:
        """Hard delete. The platform refuses while jobs are pending."""
        pass

    # =========================================================================
    # Connection Tests
    # =========================================================================

    @abstractmethod
    async def test_connection(
        self,
        profile: ConnectionProfile,
        path: ConnectionPath,
        profile_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        """Test one path. ``profile_id`` is None for a pre-create test."""
        pass

    # =========================================================================
    # Sync
    # =========================================================================

    @abstractmethod
    async def submit_sync_job(self, profile_id: str, spec: SyncJobSpec) -> SyncJob:
        pass

    @abstractmethod
    async def get_sync_job(self, job_id: str) -> SyncJob:
        pass

    @abstractmethod
    async def get_sync_status(self, profile_id: str) -> SyncStatus:
        pass

    @abstractmethod
    async def record_watermark(self, profile_id: str, entity_type: EntityType, at: datetime) -> None:
        pass

    # =========================================================================
    # Access-Point Providers
    # =========================================================================

    @abstractmethod
    async def list_providers(self) -> List[AccessPointProvider]:
        pass

    @abstractmethod
    async def get_active_provider(self, unmask: bool = False) -> Optional[ActiveProvider]:
        pass

    @abstractmethod
    async def activate_provider(
        self,
        provider_id: str,
        credentials: Optional[Dict[str, str]] = None,
    ) -> AccessPointProvider:
        """Activate ``provider_id`` and deactivate any other in one call."""
        pass

    @abstractmethod
    async def update_provider_credentials(
        self,
        provider_id: str,
        credentials: Dict[str, str],
    ) -> AccessPointProvider:
        pass

    @abstractmethod
    async def deactivate_provider(self) -> None:
        pass

    @abstractmethod
    async def resync_provider_profile(self) -> Dict[str, object]:
        pass

    # =========================================================================
    # Compliance
    # =========================================================================

    @abstractmethod
    async def get_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        pass

    @abstractmethod
    async def validate_invoice(self, invoice_id: str, direction: InvoiceDirection) -> ValidationReport:
        """Validate with the regulator. On success the IRN is issued."""
        pass

    @abstractmethod
    async def sign_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        pass

    @abstractmethod
    async def update_payment_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: PaymentStatus,
    ) -> Invoice:
        pass

    @abstractmethod
    async def update_firs_fields(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        fields: Dict[str, Optional[str]],
    ) -> Invoice:
        pass

    @abstractmethod
    async def update_item_classifications(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        codes: Dict[str, str],
    ) -> Invoice:
        """Set classification codes keyed by item id."""
        pass

    @abstractmethod
    async def cancel_invoice(self, invoice_id: str, direction: InvoiceDirection, reason: str) -> Invoice:
        pass

    @abstractmethod
    async def get_firs_status(self, irn: str) -> FirsStatus:
        """Status the regulator currently reports for ``irn``."""
        pass

    @abstractmethod
    async def record_firs_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: FirsStatus,
    ) -> Invoice:
        """Persist a regulator-reported status on the invoice."""
        pass
