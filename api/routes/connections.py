"""ERP connection profile endpoints.

Create runs a pre-create connection test; nothing is stored unless it passes.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import TenantServices, get_auth_context, get_services
from connectors.erp_types import erp_catalogue
from connectors.profiles import ProfileOutcome
from core.models.connection import ConnectionPath, ConnectionTestResult, StoredProfile
from core.security.permissions import AuthContext


router = APIRouter()


class ProfileRequest(BaseModel):
    """Profile payload as the settings screen submits it."""
    erp_type: str = Field(..., description="ERP type code, e.g. sage_x3")
    profile: Dict[str, Any] = Field(default_factory=dict)


class ProfileResponse(BaseModel):
    profile: StoredProfile
    test: Optional[ConnectionTestResult] = None
    adjustments: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_outcome(cls, outcome: ProfileOutcome) -> "ProfileResponse":
        return cls(profile=outcome.profile, test=outcome.test, adjustments=outcome.adjustments)


@router.get("/types")
async def list_types() -> List[Dict[str, object]]:
    """Supported ERP types with their connection methods and database location."""
    return erp_catalogue()


@router.get("", response_model=List[StoredProfile])
async def list_profiles(
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> List[StoredProfile]:
    return await services.profiles.list(ctx)


@router.post("", response_model=ProfileResponse, status_code=201)
async def create_profile(
    request: ProfileRequest,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> ProfileResponse:
    outcome = await services.profiles.create(ctx, request.erp_type, request.profile)
    return ProfileResponse.from_outcome(outcome)


@router.post("/test", response_model=ConnectionTestResult)
async def test_draft_profile(
    request: ProfileRequest,
    path: Optional[ConnectionPath] = None,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> ConnectionTestResult:
    """Test settings before saving them."""
    return await services.profiles.test_draft(ctx, request.erp_type, request.profile, path=path)


@router.get("/{profile_id}", response_model=StoredProfile)
async def get_profile(
    profile_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> StoredProfile:
    return await services.profiles.get(ctx, profile_id)


@router.put("/{profile_id}", response_model=ProfileResponse)
async def update_profile(
    profile_id: str,
    profile: Dict[str, Any],
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> ProfileResponse:
    outcome = await services.profiles.update(ctx, profile_id, profile)
    return ProfileResponse.from_outcome(outcome)


@router.post("/{profile_id}/deactivate", response_model=StoredProfile)
async def deactivate_profile(
    profile_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> StoredProfile:
    return await services.profiles.deactivate(ctx, profile_id)


@router.delete("/{profile_id}", status_code=204)
async def delete_profile(
    profile_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> None:
    """Refused with 409 while the profile has pending sync jobs."""
    await services.profiles.delete(ctx, profile_id)


@router.post("/{profile_id}/test", response_model=ConnectionTestResult)
async def test_profile(
    profile_id: str,
    path: Optional[ConnectionPath] = None,
    ctx: AuthContext = Depends(get_auth_context),
    services: TenantServices = Depends(get_services),
) -> ConnectionTestResult:
    """Test a stored profile; a failed test is a 200 with success=false."""
    return await services.profiles.test(ctx, profile_id, path=path)
