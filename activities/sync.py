"""Sync activities for the Temporal sync workflow.

Each activity builds a tenant-scoped backend through the configured factory,
does one unit of work and closes the backend.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, List, Optional

from temporalio import activity

from backend.base import PlatformBackend
from backend.http_client import HttpPlatformBackend
from core.models.sync import EntityType, JobStatus, SyncJob, SyncMode
from core.security.permissions import AuthContext
from sync.monitor import display_percentage
from sync.service import SyncService

BackendFactory = Callable[[str], PlatformBackend]


def build_platform_backend(tenant_id: str) -> PlatformBackend:
    return HttpPlatformBackend.from_settings(tenant_id)


_backend_factory: BackendFactory = build_platform_backend


def configure_backend_factory(factory: Optional[BackendFactory]) -> None:
    """Override how activities reach the platform (None restores the default)."""
    global _backend_factory
    _backend_factory = factory or build_platform_backend


# =============================================================================
# Inputs / Outputs
# =============================================================================

@dataclass
class SubmitSyncInput:
    """Input for submit_sync_plan.

    Attributes:
        scope: "all", or a list of entity type values
        date_from/date_to: ISO dates, optional
    """
    tenant_id: str
    profile_id: str
    scope: List[str] = field(default_factory=lambda: ["all"])
    mode: str = SyncMode.FULL.value
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    user_id: Optional[str] = None


@dataclass
class SubmitSyncOutput:
    job_ids: List[str]
    entity_order: List[str]
    advisories: List[str] = field(default_factory=list)


@dataclass
class PollJobInput:
    tenant_id: str
    job_id: str


@dataclass
class JobSnapshot:
    """Serialisable view of one SyncJob poll."""
    job_id: str
    profile_id: str
    entity_type: str
    status: str
    progress_percentage: float
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    records_synced: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    @classmethod
    def from_job(cls, job: SyncJob) -> "JobSnapshot":
        return cls(
            job_id=job.id,
            profile_id=job.profile_id,
            entity_type=job.entity_type.value,
            status=job.status.value,
            progress_percentage=display_percentage(job),
            current_step=job.current_step,
            error_message=job.error_message,
            records_synced=job.records_synced,
            started_at=job.started_at.isoformat() if job.started_at else None,
            completed_at=job.completed_at.isoformat() if job.completed_at else None,
        )

    def to_job(self) -> SyncJob:
        return SyncJob(
            id=self.job_id,
            profile_id=self.profile_id,
            entity_type=EntityType(self.entity_type),
            status=JobStatus(self.status),
            current_step=self.current_step,
            progress_percentage=self.progress_percentage,
            error_message=self.error_message,
            records_synced=self.records_synced,
            started_at=datetime.fromisoformat(self.started_at) if self.started_at else None,
            completed_at=datetime.fromisoformat(self.completed_at) if self.completed_at else None,
        )


@dataclass
class RecordOutcomeInput:
    tenant_id: str
    snapshot: JobSnapshot


def _parse_scope(scope: List[str]):
    if len(scope) == 1:
        return scope[0]
    return scope


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def submit_sync_plan(input: SubmitSyncInput) -> SubmitSyncOutput:
    """Plan the sync and submit each job in dependency order."""
    activity.logger.info(f"Submitting sync for profile={input.profile_id} scope={input.scope}")

    backend = _backend_factory(input.tenant_id)
    try:
        service = SyncService(backend)
        ctx = AuthContext.from_strings(input.roles, tenant_id=input.tenant_id, user_id=input.user_id)
        submission = await service.sync(
            ctx,
            input.profile_id,
            _parse_scope(input.scope),
            mode=SyncMode(input.mode),
            date_from=date.fromisoformat(input.date_from) if input.date_from else None,
            date_to=date.fromisoformat(input.date_to) if input.date_to else None,
        )
    finally:
        await backend.close()

    return SubmitSyncOutput(
        job_ids=[job.id for job in submission.jobs],
        entity_order=[e.value for e in submission.plan.entity_order],
        advisories=list(submission.advisories),
    )


@activity.defn
async def poll_sync_job(input: PollJobInput) -> JobSnapshot:
    backend = _backend_factory(input.tenant_id)
    try:
        job = await backend.get_sync_job(input.job_id)
    finally:
        await backend.close()
    return JobSnapshot.from_job(job)


@activity.defn
async def record_sync_outcome(input: RecordOutcomeInput) -> None:
    """Advance the watermark for a completed job; audit a failed one."""
    activity.logger.info(f"Recording outcome of job {input.snapshot.job_id}: {input.snapshot.status}")

    backend = _backend_factory(input.tenant_id)
    try:
        await SyncService(backend).record_outcome(input.snapshot.to_job())
    finally:
        await backend.close()
