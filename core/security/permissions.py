"""Role-based permission gate.

Effective permissions are the union of each assigned role's permissions.
``super_admin`` is expanded to the full permission enum when the role table
is built, so no wildcard value ever reaches a check. Every decision is
recomputed from the ``AuthContext`` passed in; nothing is cached across
calls.

The gate is advisory: the platform re-authorises every request, and a 403
from it surfaces as ``PermissionDenied`` as well.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from core.errors import PermissionDenied


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    COMPANY_ADMIN = "company_admin"
    COMPANY_USER = "company_user"
    COMPANY = "company"


class Permission(str, Enum):
    # Dashboard
    DASHBOARD_VIEW = "dashboard.view"
    DASHBOARD_MANAGE = "dashboard.manage"

    # Invoices
    INVOICES_VIEW = "invoices.view"
    INVOICES_CREATE = "invoices.create"
    INVOICES_UPDATE = "invoices.update"
    INVOICES_DELETE = "invoices.delete"
    INVOICES_APPROVE = "invoices.approve"

    # Parties
    PARTIES_VIEW = "parties.view"
    PARTIES_CREATE = "parties.create"
    PARTIES_UPDATE = "parties.update"
    PARTIES_DELETE = "parties.delete"

    # Products
    PRODUCTS_VIEW = "products.view"
    PRODUCTS_CREATE = "products.create"
    PRODUCTS_UPDATE = "products.update"
    PRODUCTS_DELETE = "products.delete"

    # ERP integration
    ERP_VIEW = "erp.view"
    ERP_CREATE = "erp.create"
    ERP_UPDATE = "erp.update"
    ERP_DELETE = "erp.delete"
    ERP_SYNC = "erp.sync"

    # FIRS compliance
    FIRS_VIEW = "firs.view"
    FIRS_CONFIGURE = "firs.configure"
    FIRS_GENERATE_IRN = "firs.generate_irn"
    FIRS_VALIDATE = "firs.validate"
    FIRS_SUBMIT = "firs.submit"

    # Settings
    SETTINGS_VIEW = "settings.view"
    SETTINGS_MANAGE = "settings.manage"

    # Users
    USERS_VIEW = "users.view"
    USERS_CREATE = "users.create"
    USERS_UPDATE = "users.update"
    USERS_DELETE = "users.delete"

    # Reports
    REPORTS_VIEW = "reports.view"
    REPORTS_EXPORT = "reports.export"

    # Platform services (super admin only)
    SERVICES_MANAGE = "services.manage"


ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

_COMPANY_ADMIN_PERMISSIONS: FrozenSet[Permission] = ALL_PERMISSIONS - {Permission.SERVICES_MANAGE}

_COMPANY_USER_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.DASHBOARD_VIEW,
    Permission.INVOICES_VIEW,
    Permission.PARTIES_VIEW,
    Permission.PRODUCTS_VIEW,
    Permission.ERP_VIEW,
    Permission.FIRS_VIEW,
    Permission.REPORTS_VIEW,
})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.SUPER_ADMIN: ALL_PERMISSIONS,
    Role.COMPANY_ADMIN: _COMPANY_ADMIN_PERMISSIONS,
    Role.COMPANY: _COMPANY_ADMIN_PERMISSIONS,
    Role.COMPANY_USER: _COMPANY_USER_PERMISSIONS,
}

WRITE_ROLES: FrozenSet[Role] = frozenset({Role.SUPER_ADMIN, Role.COMPANY_ADMIN, Role.COMPANY})


def parse_roles(values: Iterable[str]) -> Tuple[Role, ...]:
    """Known roles from raw strings; unknown values contribute nothing."""
    known = {role.value: role for role in Role}
    roles = []
    for value in values:
        role = known.get(str(value).strip())
        if role is not None and role not in roles:
            roles.append(role)
    return tuple(roles)


@dataclass(frozen=True)
class AuthContext:
    """Caller identity for a single authorisation decision."""
    roles: Tuple[Role, ...] = ()
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    unknown_roles: Tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def from_strings(cls, roles: Iterable[str], tenant_id: Optional[str] = None,
                     user_id: Optional[str] = None) -> "AuthContext":
        raw = [str(r).strip() for r in roles if str(r).strip()]
        parsed = parse_roles(raw)
        unknown = tuple(r for r in raw if r not in {p.value for p in parsed})
        return cls(roles=parsed, tenant_id=tenant_id, user_id=user_id, unknown_roles=unknown)


def effective_permissions(ctx: AuthContext) -> FrozenSet[Permission]:
    granted = set()
    for role in ctx.roles:
        granted |= ROLE_PERMISSIONS.get(role, frozenset())
    return frozenset(granted)


# =============================================================================
# Role checks
# =============================================================================

def has_role(ctx: AuthContext, role: Role) -> bool:
    return role in ctx.roles


def has_any_role(ctx: AuthContext, roles: Iterable[Role]) -> bool:
    return any(role in ctx.roles for role in roles)


def has_all_roles(ctx: AuthContext, roles: Iterable[Role]) -> bool:
    return all(role in ctx.roles for role in roles)


def is_super_admin(ctx: AuthContext) -> bool:
    return has_role(ctx, Role.SUPER_ADMIN)


def is_company_admin(ctx: AuthContext) -> bool:
    return has_any_role(ctx, (Role.COMPANY_ADMIN, Role.COMPANY))


def is_company_user(ctx: AuthContext) -> bool:
    return has_role(ctx, Role.COMPANY_USER)


# =============================================================================
# Permission checks
# =============================================================================

def has_permission(ctx: AuthContext, permission: Permission) -> bool:
    return permission in effective_permissions(ctx)


def has_any_permission(ctx: AuthContext, permissions: Iterable[Permission]) -> bool:
    granted = effective_permissions(ctx)
    return any(p in granted for p in permissions)


def has_all_permissions(ctx: AuthContext, permissions: Iterable[Permission]) -> bool:
    granted = effective_permissions(ctx)
    return all(p in granted for p in permissions)


def can_write(ctx: AuthContext) -> bool:
    return has_any_role(ctx, WRITE_ROLES)


def can_manage_settings(ctx: AuthContext) -> bool:
    return has_permission(ctx, Permission.SETTINGS_MANAGE)


def can_manage_erp(ctx: AuthContext) -> bool:
    return has_any_permission(ctx, (Permission.ERP_CREATE, Permission.ERP_UPDATE, Permission.ERP_DELETE))


def can_manage_firs(ctx: AuthContext) -> bool:
    return has_permission(ctx, Permission.FIRS_CONFIGURE)


def can_manage_users(ctx: AuthContext) -> bool:
    return has_any_permission(ctx, (Permission.USERS_CREATE, Permission.USERS_UPDATE, Permission.USERS_DELETE))


def guard(
    ctx: AuthContext,
    allowed_roles: Iterable[Role] = (),
    allowed_permissions: Iterable[Permission] = (),
    require_all: bool = False,
) -> bool:
    """Combined role/permission check.

    With ``require_all`` every listed role and permission must be held;
    otherwise holding any one listed role or permission is enough. An empty
    guard allows everything.
    """
    roles = list(allowed_roles)
    permissions = list(allowed_permissions)
    if not roles and not permissions:
        return True

    if require_all:
        return has_all_roles(ctx, roles) and has_all_permissions(ctx, permissions)

    return (bool(roles) and has_any_role(ctx, roles)) or (
        bool(permissions) and has_any_permission(ctx, permissions)
    )


def require(ctx: AuthContext, permission: Permission) -> None:
    """Raise PermissionDenied unless ``ctx`` holds ``permission``."""
    if not has_permission(ctx, permission):
        raise PermissionDenied(
            f"Missing permission '{permission.value}'",
            permission=permission.value,
        )
