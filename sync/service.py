"""Sync orchestration: authorise, plan, submit in order, monitor, advance watermarks.

Watermark policy: an entity's watermark advances only when its job
completes. A failed job leaves the previous watermark in place, so the next
incremental pull covers the failed window again. The watermark recorded is
the job's start time, which keeps records changed while the job ran inside
the next window.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from backend.base import PlatformBackend
from core.audit.events import AuditEventType, AuditLogger
from core.concurrency import InFlightGuard
from core.models.sync import JobStatus, SyncJob, SyncMode, SyncPlan, SyncStatus
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from core.security.permissions import AuthContext, Permission, require
from sync.monitor import CompletionCallback, SyncJobMonitor
from sync.planner import Scope, SyncPlanner

logger = get_logger(__name__)


@dataclass
class SyncSubmission:
    """Jobs submitted for one sync request."""
    plan: SyncPlan
    jobs: List[SyncJob] = field(default_factory=list)

    @property
    def advisories(self) -> List[str]:
        return self.plan.advisories


class SyncService:
    """Entry point for operator-triggered syncs."""

    def __init__(
        self,
        backend: PlatformBackend,
        monitor: Optional[SyncJobMonitor] = None,
        planner: Optional[SyncPlanner] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._backend = backend
        self.monitor = monitor or SyncJobMonitor(backend)
        self.planner = planner or SyncPlanner()
        self._audit = audit or AuditLogger()
        self._guard = InFlightGuard()

    async def sync(
        self,
        ctx: AuthContext,
        profile_id: str,
        scope: Scope,
        mode: SyncMode = SyncMode.FULL,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> SyncSubmission:
        """Plan and submit jobs, each submission awaited before the next."""
        require(ctx, Permission.ERP_SYNC)

        async with self._guard.hold(f"sync:{profile_id}"):
            with with_correlation(tenant_id=self._backend.tenant_id, profile_id=profile_id, operation="sync"):
                profile = await self._backend.get_profile(profile_id)
                status = await self._backend.get_sync_status(profile_id)
                plan = self.planner.plan(
                    profile,
                    scope,
                    mode=mode,
                    date_from=date_from,
                    date_to=date_to,
                    watermarks=status.watermarks,
                    profile_id=profile_id,
                )

                submitted: List[SyncJob] = []
                for spec in plan.jobs:
                    job = await self._backend.submit_sync_job(profile_id, spec)
                    submitted.append(job)
                    get_metrics().record_sync_job_submitted(spec.entity_type.value)
                    self._audit.log_info(
                        AuditEventType.SYNC_SUBMITTED,
                        f"Submitted {spec.mode.value} {spec.entity_type.value} sync",
                        tenant_id=self._backend.tenant_id,
                        profile_id=profile_id,
                        job_id=job.id,
                        actor=ctx.user_id or "system",
                    )

                for advisory in plan.advisories:
                    logger.warning(advisory)
                logger.info(
                    f"Submitted {len(submitted)} sync job(s)",
                    extra_fields={"job_ids": [job.id for job in submitted]},
                )
                return SyncSubmission(plan=plan, jobs=submitted)

    async def status(self, ctx: AuthContext, profile_id: str) -> SyncStatus:
        require(ctx, Permission.ERP_VIEW)
        return await self._backend.get_sync_status(profile_id)

    async def get_job(self, ctx: AuthContext, job_id: str) -> SyncJob:
        require(ctx, Permission.ERP_VIEW)
        return await self._backend.get_sync_job(job_id)

    async def wait_for_jobs(
        self,
        jobs: List[SyncJob],
        on_complete: Optional[CompletionCallback] = None,
    ) -> List[SyncJob]:
        """Monitor submitted jobs concurrently and advance watermarks for completed ones."""
        finals = await self.monitor.watch_many([job.id for job in jobs], on_complete=on_complete)
        for final in finals:
            await self.record_outcome(final)
        return finals

    async def record_outcome(self, job: SyncJob) -> None:
        if job.status is JobStatus.COMPLETED:
            at = job.started_at or job.completed_at or datetime.utcnow()
            await self._backend.record_watermark(job.profile_id, job.entity_type, at)
            self._audit.log_info(
                AuditEventType.SYNC_COMPLETED,
                f"{job.entity_type.value} sync completed ({job.records_synced} records)",
                tenant_id=self._backend.tenant_id,
                profile_id=job.profile_id,
                job_id=job.id,
            )
        elif job.status is JobStatus.FAILED:
            self._audit.log_error(
                AuditEventType.SYNC_FAILED,
                job.error_message or f"{job.entity_type.value} sync failed",
                tenant_id=self._backend.tenant_id,
                profile_id=job.profile_id,
                job_id=job.id,
            )
