"""In-memory platform backend for local development and tests.

Simulates the platform closely enough to drive every orchestration path:

- connection tests answer through a pluggable ``probe``
- sync jobs advance one step per poll (queued, then each step, then terminal)
  unless a scripted sequence of snapshots is registered for the job
- invoices move through the FIRS states the platform would apply
- exactly one access-point provider is active after an activation

Every call is appended to ``calls`` so tests can assert what was sent.
"""

import asyncio
import itertools
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from backend.base import PlatformBackend
from core.errors import BackendError, NotFoundError
from core.models import (
    AccessPointProvider,
    ActiveProvider,
    BusinessStatus,
    ConnectionPath,
    ConnectionProfile,
    ConnectionTestResult,
    EntityType,
    FirsStatus,
    Invoice,
    InvoiceDirection,
    JobStatus,
    PaymentStatus,
    StoredProfile,
    SyncJob,
    SyncJobSpec,
    SyncStatus,
    ValidationReport,
)

ProbeResult = Union[bool, ConnectionTestResult]
Probe = Callable[[ConnectionProfile, ConnectionPath], Union[ProbeResult, Awaitable[ProbeResult]]]

DEFAULT_JOB_STEPS = ["fetching", "transforming", "saving"]
MASK = "********"


def _always_connects(profile: ConnectionProfile, path: ConnectionPath) -> bool:
    return True


def default_providers() -> List[AccessPointProvider]:
    return [
        AccessPointProvider(id="app-cryptware", code="cryptware", name="Cryptware"),
        AccessPointProvider(id="app-interswitch", code="interswitch", name="Interswitch"),
        AccessPointProvider(id="app-etranzact", code="etranzact", name="eTranzact"),
    ]


class InMemoryPlatformBackend(PlatformBackend):
    """Platform simulation held in process memory."""

    def __init__(
        self,
        tenant_id: str = "tenant-1",
        probe: Optional[Probe] = None,
        providers: Optional[Iterable[AccessPointProvider]] = None,
        job_steps: Optional[List[str]] = None,
        latency: float = 0.0,
    ):
        super().__init__(tenant_id)
        self.probe = probe or _always_connects
        self.job_steps = list(job_steps or DEFAULT_JOB_STEPS)
        self.latency = latency
        self.calls: List[Tuple[Any, ...]] = []

        self._ids = itertools.count(1)
        self.profiles: Dict[str, StoredProfile] = {}
        self.jobs: Dict[str, SyncJob] = {}
        self.job_scripts: Dict[str, List[SyncJob]] = {}
        self.failing_entities: Dict[EntityType, str] = {}
        self.watermarks: Dict[str, Dict[EntityType, datetime]] = {}

        self.providers: Dict[str, AccessPointProvider] = {
            p.id: p for p in (providers if providers is not None else default_providers())
        }
        self.provider_credentials: Dict[str, Dict[str, str]] = {}
        self.activated_at: Optional[datetime] = None
        self.fail_unmask = False
        self.leave_previous_active = False

        self.invoices: Dict[Tuple[InvoiceDirection, str], Invoice] = {}
        self.validation_errors: Dict[str, List[str]] = {}
        self.regulator_status: Dict[str, FirsStatus] = {}

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        # Every backend call is a suspension point
        await asyncio.sleep(self.latency)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    # =========================================================================
    # Connection Profiles
    # =========================================================================

    def _profile(self, profile_id: str) -> StoredProfile:
        try:
            return self.profiles[profile_id]
        except KeyError:
            raise NotFoundError(f"ERP setting {profile_id} not found") from None

    async def create_profile(self, profile: ConnectionProfile) -> StoredProfile:
        await self._call("create_profile", profile.erp_type)
        stored = StoredProfile(
            id=self._next_id("erp"),
            tenant_id=self.tenant_id,
            **profile.model_dump(),
        )
        self.profiles[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_profile(self, profile_id: str) -> StoredProfile:
        await self._call("get_profile", profile_id)
        return self._profile(profile_id).model_copy(deep=True)

    async def list_profiles(self) -> List[StoredProfile]:
        await self._call("list_profiles")
        return [p.model_copy(deep=True) for p in self.profiles.values()]

    async def update_profile(self, profile_id: str, profile: ConnectionProfile) -> StoredProfile:
        await self._call("update_profile", profile_id)
        current = self._profile(profile_id)
        updated = StoredProfile(
            id=current.id,
            tenant_id=current.tenant_id,
            last_test=current.last_test,
            created_at=current.created_at,
            updated_at=datetime.utcnow(),
            **profile.model_dump(),
        )
        self.profiles[profile_id] = updated
        return updated.model_copy(deep=True)

    async def delete_profile(self, profile_id: str) -> None:
        await self._call("delete_profile", profile_id)
        self._profile(profile_id)
        if self._pending_jobs(profile_id):
            raise BackendError("Cannot delete an ERP setting with pending sync jobs", 409)
        del self.profiles[profile_id]

    # =========================================================================
    # Connection Tests
    # =========================================================================

    async def test_connection(
        self,
        profile: ConnectionProfile,
        path: ConnectionPath,
        profile_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        await self._call("test_connection", path.value, profile_id)
        outcome = self.probe(profile, path)
        if asyncio.iscoroutine(outcome) or isinstance(outcome, asyncio.Future):
            outcome = await outcome

        if isinstance(outcome, ConnectionTestResult):
            result = outcome
        else:
            result = ConnectionTestResult(
                success=bool(outcome),
                path_tested=path,
                message="Connection successful" if outcome else "Connection refused",
            )

        if profile_id in self.profiles:
            stored = self.profiles[profile_id]
            self.profiles[profile_id] = stored.model_copy(update={"last_test": result})
        return result

    # =========================================================================
    # Sync
    # =========================================================================

    def add_job(self, job: SyncJob, script: Optional[List[SyncJob]] = None) -> None:
        """Seed a job; ``script`` is returned one snapshot per poll, the last repeating."""
        self.jobs[job.id] = job
        if script:
            self.job_scripts[job.id] = list(script)

    def _pending_jobs(self, profile_id: str) -> List[SyncJob]:
        return [j for j in self.jobs.values() if j.profile_id == profile_id and not j.is_terminal]

    async def submit_sync_job(self, profile_id: str, spec: SyncJobSpec) -> SyncJob:
        await self._call("submit_sync_job", profile_id, spec.entity_type.value)
        self._profile(profile_id)
        job = SyncJob(
            id=self._next_id("job"),
            profile_id=profile_id,
            entity_type=spec.entity_type,
            mode=spec.mode,
            status=JobStatus.QUEUED,
            total_steps=len(self.job_steps),
            steps=list(self.job_steps),
        )
        self.jobs[job.id] = job
        return job.model_copy(deep=True)

    async def get_sync_job(self, job_id: str) -> SyncJob:
        await self._call("get_sync_job", job_id)
        if job_id not in self.jobs:
            raise NotFoundError(f"Sync job {job_id} not found")

        script = self.job_scripts.get(job_id)
        if script:
            snapshot = script.pop(0) if len(script) > 1 else script[0]
            self.jobs[job_id] = snapshot
            return snapshot.model_copy(deep=True)

        job = self._advance(self.jobs[job_id])
        self.jobs[job_id] = job
        return job.model_copy(deep=True)

    def _advance(self, job: SyncJob) -> SyncJob:
        if job.is_terminal:
            return job
        now = datetime.utcnow()
        if job.status is JobStatus.QUEUED:
            return job.model_copy(update={
                "status": JobStatus.PROCESSING,
                "current_step": self.job_steps[0] if self.job_steps else None,
                "started_at": now,
            })

        index = self.job_steps.index(job.current_step) if job.current_step in self.job_steps else len(self.job_steps)
        if index + 1 < len(self.job_steps):
            return job.model_copy(update={"current_step": self.job_steps[index + 1]})

        error = self.failing_entities.get(job.entity_type)
        if error is not None:
            return job.model_copy(update={
                "status": JobStatus.FAILED,
                "error_message": error,
                "completed_at": now,
            })
        return job.model_copy(update={
            "status": JobStatus.COMPLETED,
            "current_step": None,
            "progress_percentage": 100.0,
            "records_synced": 10,
            "completed_at": now,
        })

    async def get_sync_status(self, profile_id: str) -> SyncStatus:
        await self._call("get_sync_status", profile_id)
        pending = self._pending_jobs(profile_id)
        return SyncStatus(
            profile_id=profile_id,
            has_pending_jobs=bool(pending),
            pending_jobs_count=len(pending),
            watermarks=dict(self.watermarks.get(profile_id, {})),
        )

    async def record_watermark(self, profile_id: str, entity_type: EntityType, at: datetime) -> None:
        await self._call("record_watermark", profile_id, entity_type.value)
        self.watermarks.setdefault(profile_id, {})[entity_type] = at

    # =========================================================================
    # Access-Point Providers
    # =========================================================================

    def _provider(self, provider_id: str) -> AccessPointProvider:
        try:
            return self.providers[provider_id]
        except KeyError:
            raise NotFoundError(f"Access-point provider {provider_id} not found") from None

    async def list_providers(self) -> List[AccessPointProvider]:
        await self._call("list_providers")
        return [p.model_copy() for p in self.providers.values()]

    async def get_active_provider(self, unmask: bool = False) -> Optional[ActiveProvider]:
        await self._call("get_active_provider", unmask)
        active = next((p for p in self.providers.values() if p.is_active), None)
        if active is None:
            return None
        if unmask and self.fail_unmask:
            raise BackendError("Credential service unavailable", 503)

        stored = self.provider_credentials.get(active.id, {})
        credentials = dict(stored) if unmask else {name: MASK for name in stored}
        return ActiveProvider(
            provider=active.model_copy(),
            credentials=credentials,
            masked=not unmask,
            activated_at=self.activated_at,
        )

    async def activate_provider(
        self,
        provider_id: str,
        credentials: Optional[Dict[str, str]] = None,
    ) -> AccessPointProvider:
        await self._call("activate_provider", provider_id)
        target = self._provider(provider_id)
        if credentials:
            self.provider_credentials[provider_id] = dict(credentials)
        elif not target.has_credentials and provider_id not in self.provider_credentials:
            raise BackendError("Credentials are required for this provider", 422)

        if not self.leave_previous_active:
            for other_id, other in self.providers.items():
                if other_id != provider_id and other.is_active:
                    self.providers[other_id] = other.model_copy(update={"is_active": False})

        activated = target.model_copy(update={"is_active": True, "has_credentials": True})
        self.providers[provider_id] = activated
        self.activated_at = datetime.utcnow()
        return activated.model_copy()

    async def update_provider_credentials(
        self,
        provider_id: str,
        credentials: Dict[str, str],
    ) -> AccessPointProvider:
        await self._call("update_provider_credentials", provider_id)
        provider = self._provider(provider_id)
        self.provider_credentials[provider_id] = dict(credentials)
        updated = provider.model_copy(update={"has_credentials": True})
        self.providers[provider_id] = updated
        return updated.model_copy()

    async def deactivate_provider(self) -> None:
        await self._call("deactivate_provider")
        for provider_id, provider in self.providers.items():
            if provider.is_active:
                self.providers[provider_id] = provider.model_copy(update={"is_active": False})

    async def resync_provider_profile(self) -> Dict[str, object]:
        await self._call("resync_provider_profile")
        active = next((p for p in self.providers.values() if p.is_active), None)
        if active is None:
            raise BackendError("No active access-point provider", 409)
        return {"provider": active.code, "synced_at": datetime.utcnow().isoformat()}

    # =========================================================================
    # Compliance
    # =========================================================================

    def add_invoice(self, invoice: Invoice) -> Invoice:
        self.invoices[(invoice.direction, invoice.id)] = invoice
        return invoice

    def _invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        try:
            return self.invoices[(direction, invoice_id)]
        except KeyError:
            raise NotFoundError(f"Invoice {invoice_id} not found") from None

    def _save(self, invoice: Invoice, **updates: Any) -> Invoice:
        updates["updated_at"] = datetime.utcnow()
        saved = invoice.model_copy(update=updates)
        self.invoices[(saved.direction, saved.id)] = saved
        return saved.model_copy(deep=True)

    async def get_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        await self._call("get_invoice", invoice_id)
        return self._invoice(invoice_id, direction).model_copy(deep=True)

    async def validate_invoice(self, invoice_id: str, direction: InvoiceDirection) -> ValidationReport:
        await self._call("validate_invoice", invoice_id)
        invoice = self._invoice(invoice_id, direction)
        errors = self.validation_errors.get(invoice_id)
        if errors:
            return ValidationReport(
                valid=False,
                errors=list(errors),
                suggestions=["Correct the listed fields and validate again"],
            )

        irn = f"IRN-{invoice.invoice_number or invoice.id}-{next(self._ids):04d}"
        self._save(invoice, firs_status=FirsStatus.VALIDATED, firs_irn=irn)
        self.regulator_status[irn] = FirsStatus.VALIDATED
        warnings = [] if invoice.firs_invoice_type_code else ["Invoice type code not set; 380 assumed"]
        return ValidationReport(valid=True, irn=irn, warnings=warnings)

    async def sign_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        await self._call("sign_invoice", invoice_id)
        invoice = self._invoice(invoice_id, direction)
        if invoice.firs_status is not FirsStatus.VALIDATED or not invoice.firs_irn:
            raise BackendError("Invoice must be validated before signing", 409)
        self.regulator_status[invoice.firs_irn] = FirsStatus.SIGNED
        return self._save(invoice, firs_status=FirsStatus.SIGNED, payment_status=PaymentStatus.PENDING)

    async def update_payment_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: PaymentStatus,
    ) -> Invoice:
        await self._call("update_payment_status", invoice_id, status.value)
        invoice = self._invoice(invoice_id, direction)
        updates: Dict[str, Any] = {"payment_status": status}
        if status is PaymentStatus.PAID:
            updates["business_status"] = BusinessStatus.PAID
        return self._save(invoice, **updates)

    async def update_firs_fields(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        fields: Dict[str, Optional[str]],
    ) -> Invoice:
        await self._call("update_firs_fields", invoice_id)
        invoice = self._invoice(invoice_id, direction)
        allowed = {"firs_invoice_type_code", "firs_note", "previous_invoice_irn"}
        return self._save(invoice, **{k: v for k, v in fields.items() if k in allowed})

    async def update_item_classifications(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        codes: Dict[str, str],
    ) -> Invoice:
        await self._call("update_item_classifications", invoice_id, tuple(sorted(codes)))
        invoice = self._invoice(invoice_id, direction)
        unknown: Set[str] = set(codes) - {item.id for item in invoice.items}
        if unknown:
            raise NotFoundError(f"Invoice items not found: {', '.join(sorted(unknown))}")
        items = [
            item.model_copy(update={"classification_code": codes[item.id]}) if item.id in codes else item
            for item in invoice.items
        ]
        return self._save(invoice, items=items)

    async def cancel_invoice(self, invoice_id: str, direction: InvoiceDirection, reason: str) -> Invoice:
        await self._call("cancel_invoice", invoice_id)
        invoice = self._invoice(invoice_id, direction)
        if invoice.firs_irn:
            self.regulator_status[invoice.firs_irn] = FirsStatus.CANCELLED
        return self._save(invoice, firs_status=FirsStatus.CANCELLED, firs_note=reason)

    async def get_firs_status(self, irn: str) -> FirsStatus:
        await self._call("get_firs_status", irn)
        if irn not in self.regulator_status:
            raise NotFoundError(f"IRN {irn} not known to the regulator")
        return self.regulator_status[irn]

    async def record_firs_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: FirsStatus,
    ) -> Invoice:
        await self._call("record_firs_status", invoice_id, status.value)
        return self._save(self._invoice(invoice_id, direction), firs_status=status)
