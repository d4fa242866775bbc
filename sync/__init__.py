"""Bulk ERP synchronisation: dependency planning, job monitoring, submission."""

from sync.planner import SCOPE_ALL, SyncPlanner, resolve_scope
from sync.monitor import NotificationLedger, ObserverState, SyncJobMonitor, display_percentage
from sync.service import SyncService, SyncSubmission

__all__ = [
    "SCOPE_ALL",
    "SyncPlanner",
    "resolve_scope",
    "NotificationLedger",
    "ObserverState",
    "SyncJobMonitor",
    "display_percentage",
    "SyncService",
    "SyncSubmission",
]
