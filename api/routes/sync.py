"""Sync endpoints: submit a dependency-ordered sync, read job and profile status."""

from datetime import date
from typing import List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import TenantServices, get_auth_context, get_services
from core.models.sync import SyncJob, SyncMode, SyncStatus
from core.security.permissions import AuthContext
from sync.monitor import display_percentage


router = APIRouter()


class SyncRequest(BaseModel):
    """Sync request.

    scope is "all" or one entity type, or a list of entity types.
    """
    scope: Union[str, List[str]] = "all"
    mode: SyncMode = SyncMode.FULL
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class SyncResponse(BaseModel):
    profile_id: str
    entity_order: List[str]
    jobs: List[SyncJob]
    advisories: List[str] = Field(default_factory=list)


class JobResponse(BaseModel):
    job: SyncJob
    display_percentage: float


@router.post("/{profile_id}/sync", response_model=SyncResponse, status_code=202)
async def start_sync(
    profile_id: str,
    request: SyncRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> SyncResponse:
    """Submit one job per entity, in dependency order. Jobs run out of band."""
    submission = await services.sync.sync(
        ctx,
        profile_id,
        request.scope,
        mode=request.mode,
        date_from=request.date_from,
        date_to=request.date_to,
    )
    return SyncResponse(
        profile_id=profile_id,
        entity_order=[entity.value for entity in submission.plan.entity_order],
        jobs=submission.jobs,
        advisories=submission.advisories,
    )


@router.get("/{profile_id}/sync-status", response_model=SyncStatus)
async def sync_status(
    profile_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> SyncStatus:
    return await services.sync.status(ctx, profile_id)


@router.get("/sync-jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> JobResponse:
    job = await services.sync.get_job(ctx, job_id)
    return JobResponse(job=job, display_percentage=display_percentage(job))
