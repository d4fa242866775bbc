"""ERP connection profile lifecycle.

create:  validate -> pre-create connection test -> persist active
update:  validate -> persist
delete:  refused while the profile has pending sync jobs
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from backend.base import PlatformBackend
from connectors.negotiator import ConnectionNegotiator
from connectors.validator import ProfileValidator
from core.audit.events import AuditEventType, AuditLogger
from core.concurrency import InFlightGuard
from core.errors import PendingJobsError
from core.models.connection import (
    ConnectionPath,
    ConnectionProfile,
    ConnectionTestResult,
    StoredProfile,
)
from core.observability.logging import get_logger, with_correlation
from core.security.permissions import AuthContext, Permission, require

logger = get_logger(__name__)

ProfilePayload = Union[ConnectionProfile, Mapping[str, Any]]


@dataclass
class ProfileOutcome:
    """A persisted profile with the test and normalisation that preceded it."""
    profile: StoredProfile
    test: Optional[ConnectionTestResult] = None
    adjustments: Dict[str, str] = field(default_factory=dict)


class ProfileService:
    """Operator-facing profile operations, gated by the caller's permissions."""

    def __init__(
        self,
        backend: PlatformBackend,
        validator: Optional[ProfileValidator] = None,
        negotiator: Optional[ConnectionNegotiator] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._backend = backend
        self.validator = validator or ProfileValidator()
        self.negotiator = negotiator or ConnectionNegotiator(backend)
        self._audit = audit or AuditLogger()
        self._guard = InFlightGuard()

    async def get(self, ctx: AuthContext, profile_id: str) -> StoredProfile:
        require(ctx, Permission.ERP_VIEW)
        return await self._backend.get_profile(profile_id)

    async def list(self, ctx: AuthContext) -> List[StoredProfile]:
        require(ctx, Permission.ERP_VIEW)
        return await self._backend.list_profiles()

    async def create(self, ctx: AuthContext, erp_type: str, payload: ProfilePayload) -> ProfileOutcome:
        """Validate, test and persist a new profile.

        Raises:
            ProfileValidationError: field errors in the payload
            ConnectionTestError: the pre-create test failed; nothing is persisted
        """
        require(ctx, Permission.ERP_CREATE)
        validated = self.validator.validate(erp_type, payload)
        profile = validated.profile.model_copy(update={"is_active": True})

        async with self._guard.hold(f"profile:draft:{profile.erp_type}:{profile.server_details.host}"):
            with with_correlation(tenant_id=self._backend.tenant_id, operation="create_profile"):
                result = await self.negotiator.test(profile)
                self._audit_test(ctx, None, result)
                result.raise_for_failure()

                stored = await self._backend.create_profile(profile)
                self._audit.log_info(
                    AuditEventType.PROFILE_CREATED,
                    f"Created {stored.erp_type} connection profile",
                    tenant_id=self._backend.tenant_id,
                    profile_id=stored.id,
                    details={"path": result.path_tested.value, "adjustments": validated.adjustments},
                    actor=ctx.user_id or "system",
                )
                logger.info(f"Created profile {stored.id} via {result.path_tested.value}")
                return ProfileOutcome(profile=stored, test=result, adjustments=validated.adjustments)

    async def update(self, ctx: AuthContext, profile_id: str, payload: ProfilePayload) -> ProfileOutcome:
        require(ctx, Permission.ERP_UPDATE)
        async with self._guard.hold(f"profile:{profile_id}"):
            with with_correlation(tenant_id=self._backend.tenant_id, profile_id=profile_id, operation="update_profile"):
                current = await self._backend.get_profile(profile_id)
                validated = self.validator.validate(current.erp_type, payload)
                profile = validated.profile.model_copy(update={"is_active": current.is_active})
                stored = await self._backend.update_profile(profile_id, profile)
                self._audit.log_info(
                    AuditEventType.PROFILE_UPDATED,
                    f"Updated {stored.erp_type} connection profile",
                    tenant_id=self._backend.tenant_id,
                    profile_id=profile_id,
                    details={"adjustments": validated.adjustments},
                    actor=ctx.user_id or "system",
                )
                return ProfileOutcome(profile=stored, adjustments=validated.adjustments)

    async def test(
        self,
        ctx: AuthContext,
        profile_id: str,
        path: Optional[ConnectionPath] = None,
    ) -> ConnectionTestResult:
        """Test a stored profile. Failures are returned, not raised."""
        require(ctx, Permission.ERP_VIEW)
        stored = await self._backend.get_profile(profile_id)
        result = await self.negotiator.test(stored.to_profile(), path=path, profile_id=profile_id)
        self._audit_test(ctx, profile_id, result)
        return result

    async def test_draft(
        self,
        ctx: AuthContext,
        erp_type: str,
        payload: ProfilePayload,
        path: Optional[ConnectionPath] = None,
    ) -> ConnectionTestResult:
        """Test unsaved settings. Concurrent identical drafts share one test."""
        require(ctx, Permission.ERP_CREATE)
        validated = self.validator.validate(erp_type, payload)
        result = await self.negotiator.test(validated.profile, path=path)
        self._audit_test(ctx, None, result)
        return result

    async def deactivate(self, ctx: AuthContext, profile_id: str) -> StoredProfile:
        require(ctx, Permission.ERP_UPDATE)
        async with self._guard.hold(f"profile:{profile_id}"):
            current = await self._backend.get_profile(profile_id)
            if not current.is_active:
                return current
            stored = await self._backend.update_profile(
                profile_id, current.to_profile().model_copy(update={"is_active": False})
            )
            self._audit.log_info(
                AuditEventType.PROFILE_DEACTIVATED,
                f"Deactivated {stored.erp_type} connection profile",
                tenant_id=self._backend.tenant_id,
                profile_id=profile_id,
                actor=ctx.user_id or "system",
            )
            return stored

    async def delete(self, ctx: AuthContext, profile_id: str) -> None:
        """Hard delete.

        Raises:
            PendingJobsError: sync jobs for the profile are not yet terminal
        """
        require(ctx, Permission.ERP_DELETE)
        async with self._guard.hold(f"profile:{profile_id}"):
            with with_correlation(tenant_id=self._backend.tenant_id, profile_id=profile_id, operation="delete_profile"):
                status = await self._backend.get_sync_status(profile_id)
                if status.has_pending_jobs:
                    logger.warning(f"Delete refused, {status.pending_jobs_count} job(s) pending")
                    raise PendingJobsError(profile_id, status.pending_jobs_count)

                await self._backend.delete_profile(profile_id)
                self._audit.log_warning(
                    AuditEventType.PROFILE_DELETED,
                    "Deleted connection profile",
                    tenant_id=self._backend.tenant_id,
                    profile_id=profile_id,
                    actor=ctx.user_id or "system",
                )

    def _audit_test(self, ctx: AuthContext, profile_id: Optional[str], result: ConnectionTestResult) -> None:
        log = self._audit.log_info if result.success else self._audit.log_warning
        log(
            AuditEventType.CONNECTION_TESTED,
            result.message,
            tenant_id=self._backend.tenant_id,
            profile_id=profile_id,
            details={"path": result.path_tested.value, "success": result.success},
            actor=ctx.user_id or "system",
        )
