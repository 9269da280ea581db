"""Permission guard.

Decides whether a principal may perform an operation that requires a
permission key, at tenant or plant scope.  The decision order is:

1. no principal → 401; no tenant → 400;
2. global ``superadmin`` → allow;
3. plant scope resolves the effective role from the plant override,
   falling back to the global role;
4. an empty effective role → 403;
5. a matching grant in ``rbac_role_permissions`` → allow;
6. break-glass: ``admin_empresa`` at tenant scope asking for one of
   :data:`BREAK_GLASS_PERMISSIONS` while the tenant has no grants at all
   → allow;
7. otherwise → 403 carrying the permission key.

When the RBAC tables have not been migrated the guard falls back to the
legacy rule (``superadmin`` and ``admin_empresa`` only).  Every other
store failure, including a timeout, is reported as an internal error and
never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from cmms_core.errors import (
    ForbiddenError,
    InternalError,
    InvalidInputError,
    NotProvisionedError,
    StoreError,
    UnauthenticatedError,
)
from cmms_core.rbac.engine import RbacEngine, normalize_role
from cmms_core.timeouts import with_timeout

logger = logging.getLogger(__name__)

BREAK_GLASS_PERMISSIONS: frozenset[str] = frozenset({"setup:run", "admin:rbac", "admin:users", "admin:plants"})

SUPERADMIN_ROLE = "superadmin"
TENANT_ADMIN_ROLE = "admin_empresa"


class Scope(str, Enum):
    """Granularity at which a permission is evaluated."""

    TENANT = "tenant"
    PLANT = "plant"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    user_id: str
    role: str
    tenant_id: str | None = None
    email: str | None = None

    @property
    def normalized_role(self) -> str:
        return normalize_role(self.role)

    @property
    def is_superadmin(self) -> bool:
        return self.normalized_role == SUPERADMIN_ROLE


class PermissionGuard:
    """Evaluate permission requirements against an :class:`RbacEngine`.

    Parameters
    ----------
    engine:
        Lookup engine bound to the request's session.
    timeout_seconds:
        Budget for each store call.
    """

    def __init__(self, engine: RbacEngine, *, timeout_seconds: float = 5.0) -> None:
        self._engine = engine
        self._timeout = timeout_seconds

    async def check(
        self,
        principal: Principal | None,
        permission_key: str,
        scope: Scope = Scope.PLANT,
        *,
        tenant_id: str | None = None,
        plant_id: str | None = None,
    ) -> None:
        """Return normally when allowed; raise a :class:`CMMSError` otherwise."""
        if principal is None:
            raise UnauthenticatedError("Not authenticated")

        tenant_id = tenant_id or principal.tenant_id
        if not tenant_id:
            raise InvalidInputError("Tenant ID is required")

        global_role = principal.normalized_role
        if global_role == SUPERADMIN_ROLE:
            return

        try:
            await self._check_grants(principal, global_role, permission_key, scope, tenant_id, plant_id)
        except NotProvisionedError as exc:
            logger.warning("RBAC not provisioned (%s); applying legacy role check", exc.relation)
            if global_role in (SUPERADMIN_ROLE, TENANT_ADMIN_ROLE):
                return
            raise ForbiddenError(
                "Insufficient permission (RBAC not yet applied)",
                permission=permission_key,
            ) from exc
        except (StoreError, SQLAlchemyError) as exc:
            logger.error(
                "Permission check failed: tenant=%s user=%s permission=%s",
                tenant_id,
                principal.user_id,
                permission_key,
                exc_info=True,
            )
            raise InternalError("Failed to validate permissions") from exc

    async def _check_grants(
        self,
        principal: Principal,
        global_role: str,
        permission_key: str,
        scope: Scope,
        tenant_id: str,
        plant_id: str | None,
    ) -> None:
        role_key = principal.role.strip() if principal.role else ""
        if scope is Scope.PLANT:
            if not plant_id:
                raise InvalidInputError("Plant ID is required")
            override = await with_timeout(
                self._engine.get_user_role_for_plant(principal.user_id, plant_id),
                self._timeout,
                "plant role lookup",
            )
            if override:
                role_key = override

        effective_role = normalize_role(role_key)
        if not effective_role:
            raise ForbiddenError("No role assigned", permission=permission_key)

        allowed = await with_timeout(
            self._engine.role_has_permission(tenant_id, effective_role, permission_key),
            self._timeout,
            "permission lookup",
        )
        if allowed:
            return

        if (
            scope is Scope.TENANT
            and global_role == TENANT_ADMIN_ROLE
            and permission_key in BREAK_GLASS_PERMISSIONS
        ):
            has_any = await with_timeout(
                self._engine.tenant_has_any_permissions(tenant_id),
                self._timeout,
                "tenant grant check",
            )
            if not has_any:
                logger.warning(
                    "Break-glass access: tenant=%s user=%s permission=%s",
                    tenant_id,
                    principal.user_id,
                    permission_key,
                )
                return

        raise ForbiddenError("Insufficient permission", permission=permission_key)

    @staticmethod
    async def require_role(principal: Principal | None, *roles: str) -> None:
        """Plain role gate used by operator-only surfaces."""
        if principal is None:
            raise UnauthenticatedError("Not authenticated")
        if principal.normalized_role not in {normalize_role(r) for r in roles}:
            raise ForbiddenError("Insufficient role")
