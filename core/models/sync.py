"""Sync job models: planner output, server-side job snapshots, profile status."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from core.models.base import PlatformBase


class EntityType(str, Enum):
    """Entity types pulled from an ERP."""
    VENDORS = "vendors"
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    INVOICES = "invoices"
    TAX_CATEGORIES = "tax_categories"

    @property
    def accepts_date_bounds(self) -> bool:
        return self in DATE_BOUNDED_ENTITIES


# Canonical dependency order; invoices reference vendors, customers and products.
DEPENDENCY_ORDER: List[EntityType] = [
    EntityType.VENDORS,
    EntityType.CUSTOMERS,
    EntityType.PRODUCTS,
    EntityType.INVOICES,
]

DATE_BOUNDED_ENTITIES = frozenset({
    EntityType.VENDORS,
    EntityType.CUSTOMERS,
    EntityType.INVOICES,
})


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SyncJobSpec(PlatformBase):
    """One job the planner wants submitted."""
    entity_type: EntityType
    mode: SyncMode = SyncMode.FULL
    since: Optional[datetime] = Field(None, description="Watermark for incremental pulls")
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class SyncPlan(PlatformBase):
    """Ordered job specs plus advisories for the caller."""
    profile_id: str
    jobs: List[SyncJobSpec] = Field(default_factory=list)
    advisories: List[str] = Field(default_factory=list)

    @property
    def entity_order(self) -> List[EntityType]:
        return [job.entity_type for job in self.jobs]


class SyncJob(PlatformBase):
    """Snapshot of an out-of-band sync job."""
    id: str
    profile_id: str
    entity_type: EntityType
    mode: SyncMode = SyncMode.FULL
    status: JobStatus = JobStatus.QUEUED
    current_step: Optional[str] = None
    total_steps: Optional[int] = None
    steps: List[str] = Field(default_factory=list, description="Ordered step names, when known")
    progress_percentage: Optional[float] = None
    error_message: Optional[str] = None
    records_synced: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class SyncStatus(PlatformBase):
    """Pending-job counters and watermarks for one profile."""
    profile_id: str
    has_pending_jobs: bool = False
    pending_jobs_count: int = 0
    watermarks: Dict[EntityType, datetime] = Field(default_factory=dict)
