"""Activity definitions module."""

from activities.sync import (
    submit_sync_plan,
    poll_sync_job,
    record_sync_outcome,
    configure_backend_factory,
    SubmitSyncInput,
    SubmitSyncOutput,
    PollJobInput,
    JobSnapshot,
    RecordOutcomeInput,
)

__all__ = [
    "submit_sync_plan",
    "poll_sync_job",
    "record_sync_outcome",
    "configure_backend_factory",
    "SubmitSyncInput",
    "SubmitSyncOutput",
    "PollJobInput",
    "JobSnapshot",
    "RecordOutcomeInput",
]
