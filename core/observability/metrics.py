"""
Metrics Collection for ERP Integration & Compliance

Collects and exposes metrics for:
- Connection tests (by path and outcome)
- Sync jobs (submitted, completed, failed, by entity)
- Compliance transitions (by operation and outcome)
- Access-point provider changes
- Backend call latency (average, p95)

Metrics are kept in-memory for the lifetime of the process.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class ConnectionTestMetrics:
    """Connection test outcomes keyed by path."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    coalesced: int = 0

    by_path: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"succeeded": 0, "failed": 0})
    )


@dataclass
class SyncJobMetrics:
    """Sync job lifecycle counters."""
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    stale_snapshots: int = 0

    by_entity: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"submitted": 0, "completed": 0, "failed": 0})
    )


@dataclass
class TimingMetrics:
    """Latency samples by stage."""
    max_samples: int = 1000
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str):
        samples = self.by_stage[stage]
        samples.append(duration_ms)
        if len(samples) > self.max_samples:
            self.by_stage[stage] = samples[-self.max_samples:]

    def get_average(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_connection_test("api", success=True)
        metrics.record_sync_job_finished("invoices", "completed")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.connection_tests = ConnectionTestMetrics()
        self.sync_jobs = SyncJobMetrics()
        self.compliance: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"succeeded": 0, "refused": 0, "failed": 0}
        )
        self.provider_changes: Dict[str, int] = defaultdict(int)
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (tests)."""
        with cls._lock:
            cls._instance = None

    # =========================================================================
    # Connection Tests
    # =========================================================================

    def record_connection_test(self, path: str, success: bool):
        with self._lock:
            self.connection_tests.attempted += 1
            outcome = "succeeded" if success else "failed"
            if success:
                self.connection_tests.succeeded += 1
            else:
                self.connection_tests.failed += 1
            self.connection_tests.by_path[path][outcome] += 1

    def record_connection_test_coalesced(self):
        with self._lock:
            self.connection_tests.coalesced += 1

    # =========================================================================
    # Sync Jobs
    # =========================================================================

    def record_sync_job_submitted(self, entity_type: str):
        with self._lock:
            self.sync_jobs.submitted += 1
            self.sync_jobs.by_entity[entity_type]["submitted"] += 1

    def record_sync_job_finished(self, entity_type: str, status: str):
        """Record a terminal job; status is 'completed' or 'failed'."""
        with self._lock:
            if status == "completed":
                self.sync_jobs.completed += 1
            else:
                self.sync_jobs.failed += 1
            self.sync_jobs.by_entity[entity_type][status] += 1

    def record_stale_snapshot(self):
        with self._lock:
            self.sync_jobs.stale_snapshots += 1

    # =========================================================================
    # Compliance & Providers
    # =========================================================================

    def record_compliance_transition(self, operation: str, outcome: str):
        """outcome is one of 'succeeded', 'refused', 'failed'."""
        with self._lock:
            self.compliance[operation][outcome] += 1

    def record_provider_change(self, action: str):
        with self._lock:
            self.provider_changes[action] += 1

    # =========================================================================
    # Timing
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, [])),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "connection_tests": {
                    "attempted": self.connection_tests.attempted,
                    "succeeded": self.connection_tests.succeeded,
                    "failed": self.connection_tests.failed,
                    "coalesced": self.connection_tests.coalesced,
                    "by_path": {k: dict(v) for k, v in self.connection_tests.by_path.items()},
                },
                "sync_jobs": {
                    "submitted": self.sync_jobs.submitted,
                    "completed": self.sync_jobs.completed,
                    "failed": self.sync_jobs.failed,
                    "stale_snapshots": self.sync_jobs.stale_snapshots,
                    "by_entity": {k: dict(v) for k, v in self.sync_jobs.by_entity.items()},
                },
                "compliance": {k: dict(v) for k, v in self.compliance.items()},
                "provider_changes": dict(self.provider_changes),
                "timings": {
                    stage: {
                        "average_ms": self.timings.get_average(stage),
                        "p95_ms": self.timings.get_p95(stage),
                    }
                    for stage in self.timings.by_stage.keys()
                },
            }


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_connection_test(path: str, success: bool):
    get_metrics().record_connection_test(path, success)


def record_sync_job_submitted(entity_type: str):
    get_metrics().record_sync_job_submitted(entity_type)


def record_sync_job_finished(entity_type: str, status: str):
    get_metrics().record_sync_job_finished(entity_type, status)


def record_compliance_transition(operation: str, outcome: str):
    get_metrics().record_compliance_transition(operation, outcome)


def record_provider_change(action: str):
    get_metrics().record_provider_change(action)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
