"""Request dependencies: caller identity and tenant-scoped services.

Authentication is issued elsewhere. The gateway in front of this API forwards
the caller's tenant, user id and roles as headers; the Permission Gate then
decides every operation from those roles.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request

from backend.base import PlatformBackend
from compliance.service import ComplianceService
from connectors.profiles import ProfileService
from core.audit.events import AuditLogger
from core.security.permissions import AuthContext
from providers.vault import CredentialVault
from sync.monitor import SyncJobMonitor
from sync.service import SyncService

BackendFactory = Callable[[str], PlatformBackend]


@dataclass
class TenantServices:
    """Every orchestration service for one tenant, sharing one backend."""
    backend: PlatformBackend
    profiles: ProfileService
    sync: SyncService
    compliance: ComplianceService
    vault: CredentialVault


class ServiceRegistry:
    """Builds tenant services once and reuses them across requests.

    Reuse matters: duplicate-submission guards, per-job poll locks and the
    notification ledger live on the service instances.
    """

    def __init__(self, backend_factory: BackendFactory, audit: Optional[AuditLogger] = None,
                 poll_interval: float = 3.0):
        self._factory = backend_factory
        self._audit = audit or AuditLogger()
        self._poll_interval = poll_interval
        self._tenants: Dict[str, TenantServices] = {}

    def for_tenant(self, tenant_id: str) -> TenantServices:
        services = self._tenants.get(tenant_id)
        if services is None:
            backend = self._factory(tenant_id)
            services = TenantServices(
                backend=backend,
                profiles=ProfileService(backend, audit=self._audit),
                sync=SyncService(
                    backend,
                    monitor=SyncJobMonitor(backend, poll_interval=self._poll_interval),
                    audit=self._audit,
                ),
                compliance=ComplianceService(backend, audit=self._audit),
                vault=CredentialVault(backend, audit=self._audit),
            )
            self._tenants[tenant_id] = services
        return services

    @property
    def tenant_count(self) -> int:
        return len(self._tenants)

    async def close(self) -> None:
        for services in self._tenants.values():
            await services.backend.close()
        self._tenants.clear()


def get_auth_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_roles: str = Header(""),
) -> AuthContext:
    """Caller identity from the gateway headers."""
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing X-Tenant-Id header")
    roles = [role for role in x_roles.split(",") if role.strip()]
    return AuthContext.from_strings(roles, tenant_id=x_tenant_id, user_id=x_user_id)


def get_services(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> TenantServices:
    registry: ServiceRegistry = request.app.state.registry
    return registry.for_tenant(ctx.tenant_id)
