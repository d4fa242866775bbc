"""
Observability Module

Provides:
- Structured logging with correlation IDs
- In-process metrics (connection tests, sync jobs, compliance transitions)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_connection_test,
    record_sync_job_submitted,
    record_sync_job_finished,
    record_compliance_transition,
    record_provider_change,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_connection_test",
    "record_sync_job_submitted",
    "record_sync_job_finished",
    "record_compliance_transition",
    "record_provider_change",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
