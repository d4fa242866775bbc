"""Access-point provider endpoints."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import TenantServices, get_auth_context, get_services
from core.models.provider import AccessPointProvider, ActiveProvider
from core.security.permissions import AuthContext


router = APIRouter()


class ActivateRequest(BaseModel):
    provider_id: str
    credentials: Optional[Dict[str, str]] = None


class CredentialsRequest(BaseModel):
    credentials: Dict[str, str] = Field(default_factory=dict)


@router.get("/available", response_model=List[AccessPointProvider])
async def list_available(
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> List[AccessPointProvider]:
    return await services.vault.list_available(ctx)


@router.get("/active", response_model=Optional[ActiveProvider])
async def get_active(
    unmask: bool = False,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Optional[ActiveProvider]:
    """Active provider; ?unmask=true reveals credentials and is audited."""
    return await services.vault.get_active(ctx, unmask=unmask)


@router.post("/activate", response_model=AccessPointProvider)
async def activate(
    request: ActivateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> AccessPointProvider:
    return await services.vault.activate(ctx, request.provider_id, request.credentials)


@router.put("/{provider_id}/credentials", response_model=AccessPointProvider)
async def rotate_credentials(
    provider_id: str,
    request: CredentialsRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> AccessPointProvider:
    return await services.vault.rotate(ctx, provider_id, request.credentials)


@router.post("/deactivate", status_code=204)
async def deactivate(
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> None:
    await services.vault.deactivate(ctx)


@router.post("/resync-firs-profile")
async def resync_profile(
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> Dict[str, object]:
    return await services.vault.resync_profile(ctx)
