"""Credential vault for the tenant's access-point provider.

Exactly one provider is active per tenant. Mutations (activate, rotate,
deactivate) run under a per-tenant lock and re-read the active provider
before changing anything.
"""

from typing import Dict, List, Mapping, Optional

from backend.base import PlatformBackend
from core.audit.events import AuditEventType, AuditLogger
from core.concurrency import KeyedLocks
from core.errors import BackendError, NotFoundError, ProviderStateError, ValidationError
from core.models.provider import AccessPointProvider, ActiveProvider
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from core.security.permissions import AuthContext, Permission, require
from providers.variants import get_variant

logger = get_logger(__name__)


class CredentialVault:
    """Tenant-scoped access-point provider management.

    Usage:
        vault = CredentialVault(backend)
        await vault.activate(ctx, "prov-2", {"participant_id": "p", "api_key": "k"})
        active = await vault.get_active(ctx, unmask=True)
    """

    def __init__(self, backend: PlatformBackend, audit: Optional[AuditLogger] = None,
                 locks: Optional[KeyedLocks] = None):
        self._backend = backend
        self._audit = audit or AuditLogger()
        self._locks = locks or KeyedLocks()

    @property
    def tenant_id(self) -> str:
        return self._backend.tenant_id

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_available(self, ctx: AuthContext) -> List[AccessPointProvider]:
        require(ctx, Permission.FIRS_VIEW)
        return await self._backend.list_providers()

    async def get_active(self, ctx: AuthContext, unmask: bool = False) -> Optional[ActiveProvider]:
        """Active provider, masked by default.

        An unmasked read is audited. If it fails the credential fields come
        back empty rather than masked.
        """
        if not unmask:
            require(ctx, Permission.FIRS_VIEW)
            return await self._backend.get_active_provider(unmask=False)

        require(ctx, Permission.FIRS_CONFIGURE)
        try:
            active = await self._backend.get_active_provider(unmask=True)
        except BackendError as e:
            logger.warning(f"Unmasked credential read failed: {e.message}")
            self._audit.log_warning(
                AuditEventType.CREDENTIALS_UNMASK_FAILED,
                "Unmasked credential read failed",
                tenant_id=self.tenant_id,
                details={"error": e.message},
                actor=ctx.user_id or "system",
            )
            masked = await self._backend.get_active_provider(unmask=False)
            if masked is None:
                return None
            return masked.model_copy(update={
                "credentials": get_variant(masked.provider.code).blank(),
                "masked": False,
            })

        if active is not None:
            self._audit.log_info(
                AuditEventType.CREDENTIALS_UNMASKED,
                f"Credentials for {active.provider.code} revealed",
                tenant_id=self.tenant_id,
                provider_id=active.provider.id,
                actor=ctx.user_id or "system",
            )
        return active

    # =========================================================================
    # Mutations
    # =========================================================================

    async def activate(
        self,
        ctx: AuthContext,
        provider_id: str,
        credentials: Optional[Mapping[str, object]] = None,
    ) -> AccessPointProvider:
        """Make ``provider_id`` the single active provider.

        Raises:
            ValidationError: credentials missing or malformed for the provider
            ProviderStateError: the platform did not end with exactly one active
        """
        require(ctx, Permission.FIRS_CONFIGURE)
        async with self._locks.get(f"provider:{self.tenant_id}"):
            with with_correlation(tenant_id=self.tenant_id, provider_id=provider_id, operation="activate"):
                provider = await self._find(provider_id)
                previous = await self._backend.get_active_provider(unmask=False)

                cleaned = None
                if credentials:
                    cleaned = get_variant(provider.code).check(credentials)
                elif not provider.has_credentials:
                    raise ValidationError.single(
                        "credentials", f"Credentials are required to activate {provider.name}"
                    )

                activated = await self._backend.activate_provider(provider_id, cleaned)
                await self._verify_single_active(provider_id)

                get_metrics().record_provider_change("activate")
                self._audit.log_info(
                    AuditEventType.PROVIDER_ACTIVATED,
                    f"Activated access-point provider {provider.name}",
                    tenant_id=self.tenant_id,
                    provider_id=provider_id,
                    details={
                        "previous_provider_id": previous.provider.id if previous else None,
                        "credentials_replaced": cleaned is not None,
                    },
                    actor=ctx.user_id or "system",
                )
                logger.info(f"Activated provider {provider.code}")
                return activated

    async def rotate(
        self,
        ctx: AuthContext,
        provider_id: str,
        credentials: Mapping[str, object],
    ) -> AccessPointProvider:
        """Replace credentials of the currently active provider."""
        require(ctx, Permission.FIRS_CONFIGURE)
        async with self._locks.get(f"provider:{self.tenant_id}"):
            with with_correlation(tenant_id=self.tenant_id, provider_id=provider_id, operation="rotate"):
                active = await self._backend.get_active_provider(unmask=False)
                if active is None or active.provider.id != provider_id:
                    raise ProviderStateError(
                        "Credentials can only be rotated for the active provider",
                        {"provider_id": provider_id},
                    )

                cleaned = get_variant(active.provider.code).check(credentials)
                updated = await self._backend.update_provider_credentials(provider_id, cleaned)

                get_metrics().record_provider_change("rotate")
                self._audit.log_info(
                    AuditEventType.PROVIDER_CREDENTIALS_ROTATED,
                    f"Rotated credentials for {active.provider.name}",
                    tenant_id=self.tenant_id,
                    provider_id=provider_id,
                    details={"fields": sorted(cleaned)},
                    actor=ctx.user_id or "system",
                )
                return updated

    async def deactivate(self, ctx: AuthContext) -> None:
        require(ctx, Permission.FIRS_CONFIGURE)
        async with self._locks.get(f"provider:{self.tenant_id}"):
            with with_correlation(tenant_id=self.tenant_id, operation="deactivate"):
                active = await self._backend.get_active_provider(unmask=False)
                if active is None:
                    raise ProviderStateError("No access-point provider is active")

                await self._backend.deactivate_provider()

                get_metrics().record_provider_change("deactivate")
                self._audit.log_info(
                    AuditEventType.PROVIDER_DEACTIVATED,
                    f"Deactivated access-point provider {active.provider.name}",
                    tenant_id=self.tenant_id,
                    provider_id=active.provider.id,
                    actor=ctx.user_id or "system",
                )

    async def resync_profile(self, ctx: AuthContext) -> Dict[str, object]:
        """Ask the active provider to re-sync the tenant's FIRS profile."""
        require(ctx, Permission.FIRS_CONFIGURE)
        active = await self._backend.get_active_provider(unmask=False)
        if active is None:
            raise ProviderStateError("Activate an access-point provider before re-syncing")

        with with_correlation(tenant_id=self.tenant_id, provider_id=active.provider.id, operation="resync"):
            result = await self._backend.resync_provider_profile()
            self._audit.log_info(
                AuditEventType.PROVIDER_PROFILE_RESYNCED,
                f"Re-synced FIRS profile via {active.provider.name}",
                tenant_id=self.tenant_id,
                provider_id=active.provider.id,
                actor=ctx.user_id or "system",
            )
            return result

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _find(self, provider_id: str) -> AccessPointProvider:
        for provider in await self._backend.list_providers():
            if provider.id == provider_id:
                return provider
        raise NotFoundError(f"Access-point provider {provider_id} not found")

    async def _verify_single_active(self, expected_id: str) -> None:
        active = [p for p in await self._backend.list_providers() if p.is_active]
        if len(active) != 1 or active[0].id != expected_id:
            logger.error(
                "Provider activation left an inconsistent state",
                extra_fields={"active_ids": [p.id for p in active]},
            )
            raise ProviderStateError(
                f"Expected exactly one active provider ({expected_id}), found {len(active)}",
                {"active_ids": [p.id for p in active]},
            )
