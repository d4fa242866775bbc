"""Sync job monitoring.

Polls out-of-band sync jobs until they are terminal.

- Snapshots that move a job backwards (processing -> queued, or out of a
  terminal state) are stale and discarded.
- The displayed percentage never reaches 100 while a step is still running.
- The completion notification fires once per job id, on the first observed
  move from a non-terminal to a terminal state. The ledger that enforces this
  outlives individual observers, so closing a watch and re-observing the job
  later does not re-notify, and a job already terminal when first seen never
  notifies.
- Closing a watch never cancels the job itself.
- Polls for one job are serialised; different jobs poll concurrently.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from backend.base import PlatformBackend
from core.concurrency import KeyedLocks
from core.errors import JobError
from core.models.sync import DEPENDENCY_ORDER, JobStatus, SyncJob
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
MAX_RUNNING_PERCENTAGE = 99.0

CompletionCallback = Callable[[SyncJob, Optional[JobError]], Union[None, Awaitable[None]]]


# =============================================================================
# Progress & transitions
# =============================================================================

def display_percentage(job: SyncJob) -> float:
    """Percentage to show for a snapshot.

    Uses the server's figure when present, otherwise the position of
    ``current_step`` among the job's steps. Held below 100 while a step is
    running. A completed job always shows 100.
    """
    if job.status is JobStatus.COMPLETED:
        return 100.0

    pct = job.progress_percentage
    if pct is None:
        steps = job.steps or [entity.value for entity in DEPENDENCY_ORDER]
        total = job.total_steps or len(steps)
        if job.current_step in steps and total:
            pct = 100.0 * steps.index(job.current_step) / total
        else:
            pct = 0.0

    pct = max(0.0, min(float(pct), 100.0))
    if job.current_step is not None:
        pct = min(pct, MAX_RUNNING_PERCENTAGE)
    return pct


def is_stale_transition(previous: Optional[JobStatus], current: JobStatus) -> bool:
    """True when ``current`` cannot follow ``previous``."""
    if previous is None or previous == current:
        return False
    if previous.is_terminal:
        return True
    return previous is JobStatus.PROCESSING and current is JobStatus.QUEUED


# =============================================================================
# Notification ledger
# =============================================================================

@dataclass
class LedgerEntry:
    last_status: Optional[JobStatus] = None
    seen_non_terminal: bool = False
    notified: bool = False
    last_snapshot: Optional[SyncJob] = None


class NotificationLedger:
    """Per-job observation history shared by every observer."""

    def __init__(self):
        self._entries: Dict[str, LedgerEntry] = {}

    def entry(self, job_id: str) -> LedgerEntry:
        if job_id not in self._entries:
            self._entries[job_id] = LedgerEntry()
        return self._entries[job_id]

    def was_notified(self, job_id: str) -> bool:
        entry = self._entries.get(job_id)
        return bool(entry and entry.notified)

    def accept(self, snapshot: SyncJob) -> "tuple[bool, bool]":
        """Record ``snapshot``.

        Returns (accepted, notify). ``accepted`` is False for a stale snapshot.
        """
        entry = self.entry(snapshot.id)
        if is_stale_transition(entry.last_status, snapshot.status):
            return False, False

        notify = False
        if snapshot.is_terminal:
            if entry.seen_non_terminal and not entry.notified:
                notify = True
                entry.notified = True
        else:
            entry.seen_non_terminal = True

        entry.last_status = snapshot.status
        entry.last_snapshot = snapshot
        return True, notify


# =============================================================================
# Observer
# =============================================================================

class ObserverState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    TERMINAL = "terminal"
    DETACHED = "detached"


class JobObserver:
    """One watch on one job.

    ``snapshots()`` yields accepted snapshots (percentage already clamped)
    and ends at the terminal one. Closing the iterator early detaches the
    observer and leaves the job running.
    """

    def __init__(self, monitor: "SyncJobMonitor", job_id: str,
                 on_complete: Optional[CompletionCallback] = None):
        self.monitor = monitor
        self.job_id = job_id
        self.on_complete = on_complete
        self.state = ObserverState.IDLE
        self.final: Optional[SyncJob] = None

    async def snapshots(self) -> AsyncIterator[SyncJob]:
        if self.state is not ObserverState.IDLE:
            raise RuntimeError(f"Observer for {self.job_id} already {self.state.value}")

        self.state = ObserverState.POLLING
        try:
            with with_correlation(job_id=self.job_id):
                while True:
                    snapshot, notify = await self.monitor._poll_once(self.job_id)
                    if snapshot is not None:
                        shown = snapshot.model_copy(update={"progress_percentage": display_percentage(snapshot)})
                        if snapshot.is_terminal:
                            self.state = ObserverState.TERMINAL
                            self.final = shown
                            if notify:
                                await self._notify(shown)
                            yield shown
                            return
                        yield shown
                    await asyncio.sleep(self.monitor.poll_interval)
        finally:
            if self.state is not ObserverState.TERMINAL:
                self.state = ObserverState.DETACHED
                logger.debug(f"Observer detached from job {self.job_id}")

    async def _notify(self, job: SyncJob) -> None:
        error = JobError(job.id, job.error_message) if job.status is JobStatus.FAILED else None
        logger.info(
            f"Sync job {job.id} {job.status.value}",
            extra_fields={"entity_type": job.entity_type.value, "error": job.error_message},
        )
        if self.on_complete is None:
            return
        result = self.on_complete(job, error)
        if inspect.isawaitable(result):
            await result


class SyncJobMonitor:
    """Polls sync jobs and detects completion exactly once.

    Usage:
        monitor = SyncJobMonitor(backend, poll_interval=3)
        async for snapshot in monitor.observe(job_id, on_complete=notify):
            render(snapshot.progress_percentage)
    """

    def __init__(
        self,
        backend: PlatformBackend,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        ledger: Optional[NotificationLedger] = None,
    ):
        self._backend = backend
        self.poll_interval = poll_interval
        self.ledger = ledger or NotificationLedger()
        self._locks = KeyedLocks()

    def open(self, job_id: str, on_complete: Optional[CompletionCallback] = None) -> JobObserver:
        return JobObserver(self, job_id, on_complete)

    def observe(self, job_id: str, on_complete: Optional[CompletionCallback] = None) -> AsyncIterator[SyncJob]:
        return self.open(job_id, on_complete).snapshots()

    async def wait(self, job_id: str, on_complete: Optional[CompletionCallback] = None,
                   raise_on_failure: bool = False) -> SyncJob:
        """Observe until terminal and return the final snapshot.

        Raises:
            JobError: job failed and ``raise_on_failure`` is set
        """
        observer = self.open(job_id, on_complete)
        async for _ in observer.snapshots():
            pass
        final = observer.final
        if raise_on_failure and final is not None and final.status is JobStatus.FAILED:
            raise JobError(final.id, final.error_message)
        return final

    async def watch_many(self, job_ids: Iterable[str],
                         on_complete: Optional[CompletionCallback] = None) -> List[SyncJob]:
        """Observe several jobs concurrently; results follow ``job_ids`` order."""
        return list(await asyncio.gather(*(self.wait(job_id, on_complete) for job_id in job_ids)))

    async def _poll_once(self, job_id: str):
        async with self._locks.get(job_id):
            snapshot = await self._backend.get_sync_job(job_id)
            previous = self.ledger.entry(job_id).last_status
            accepted, notify = self.ledger.accept(snapshot)

        if not accepted:
            get_metrics().record_stale_snapshot()
            logger.debug(
                f"Discarded stale snapshot for job {job_id}",
                extra_fields={"previous": previous.value if previous else None, "received": snapshot.status.value},
            )
            return None, False

        if snapshot.is_terminal and (previous is None or not previous.is_terminal):
            get_metrics().record_sync_job_finished(snapshot.entity_type.value, snapshot.status.value)
        return snapshot, notify
