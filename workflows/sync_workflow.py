"""
ERP Sync Workflow

Drives one operator-triggered sync end to end:
SUBMIT (ordered, one job at a time) → MONITOR (all jobs concurrently) → RECORD OUTCOMES

Job failures are terminal and reported verbatim; they are never retried by the
workflow. Submission itself retries only on transport errors.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync import (
        JobSnapshot,
        PollJobInput,
        RecordOutcomeInput,
        SubmitSyncInput,
        poll_sync_job,
        record_sync_outcome,
        submit_sync_plan,
    )
    from core.models.sync import JobStatus
    from sync.monitor import is_stale_transition


# =============================================================================
# Workflow Input/Output
# =============================================================================

@dataclass
class SyncWorkflowInput:
    """Input for the sync workflow"""
    tenant_id: str
    profile_id: str
    scope: List[str] = field(default_factory=lambda: ["all"])
    mode: str = "full"
    date_from: Optional[str] = None
    date_to: Optional[str] = None

    # Caller identity, re-checked by the submit activity
    roles: List[str] = field(default_factory=list)
    user_id: Optional[str] = None

    poll_interval_seconds: float = 3.0


@dataclass
class SyncWorkflowOutput:
    """Output from the sync workflow"""
    profile_id: str
    status: str
    job_ids: List[str] = field(default_factory=list)
    entity_order: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    advisories: List[str] = field(default_factory=list)
    error_message: Optional[str] = None


# Errors that will not heal on retry
NON_RETRYABLE_ERRORS = [
    "ValidationError",
    "ProfileValidationError",
    "PermissionDenied",
    "DuplicateSubmissionError",
    "NotFoundError",
]


# =============================================================================
# Sync Workflow
# =============================================================================

@workflow.defn
class SyncWorkflow:
    """
    Ordered sync submission followed by concurrent job monitoring.

    Queries:
        progress: {job_id: displayed percentage}
    """

    def __init__(self):
        self._progress: Dict[str, float] = {}

    @workflow.query
    def progress(self) -> Dict[str, float]:
        return dict(self._progress)

    @workflow.run
    async def run(self, input: SyncWorkflowInput) -> SyncWorkflowOutput:
        workflow.logger.info(f"Starting sync workflow for profile {input.profile_id}")

        api_activity_options = {
            "start_to_close_timeout": timedelta(minutes=2),
            "retry_policy": RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=2),
                maximum_interval=timedelta(minutes=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }

        submitted = await workflow.execute_activity(
            submit_sync_plan,
            SubmitSyncInput(
                tenant_id=input.tenant_id,
                profile_id=input.profile_id,
                scope=input.scope,
                mode=input.mode,
                date_from=input.date_from,
                date_to=input.date_to,
                roles=input.roles,
                user_id=input.user_id,
            ),
            **api_activity_options,
        )

        result = SyncWorkflowOutput(
            profile_id=input.profile_id,
            status="RUNNING",
            job_ids=list(submitted.job_ids),
            entity_order=list(submitted.entity_order),
            advisories=list(submitted.advisories),
        )

        finals = await asyncio.gather(*(
            self._watch(input, job_id, api_activity_options) for job_id in submitted.job_ids
        ))

        for final in finals:
            await workflow.execute_activity(
                record_sync_outcome,
                RecordOutcomeInput(tenant_id=input.tenant_id, snapshot=final),
                **api_activity_options,
            )
            if final.status == JobStatus.COMPLETED.value:
                result.completed.append(final.job_id)
            else:
                result.failed[final.job_id] = final.error_message or f"{final.entity_type} sync failed"

        result.status = "FAILED" if result.failed else "COMPLETED"
        if result.failed:
            result.error_message = "; ".join(result.failed.values())
        workflow.logger.info(
            f"Sync workflow finished: {len(result.completed)} completed, {len(result.failed)} failed"
        )
        return result

    async def _watch(self, input: SyncWorkflowInput, job_id: str, options: dict) -> JobSnapshot:
        """Poll one job until terminal, discarding stale snapshots."""
        previous: Optional[JobStatus] = None
        while True:
            snapshot = await workflow.execute_activity(
                poll_sync_job,
                PollJobInput(tenant_id=input.tenant_id, job_id=job_id),
                **options,
            )
            status = JobStatus(snapshot.status)
            if not is_stale_transition(previous, status):
                previous = status
                self._progress[job_id] = snapshot.progress_percentage
                if status.is_terminal:
                    return snapshot
            await asyncio.sleep(input.poll_interval_seconds)
