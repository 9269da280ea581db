"""Permission guard dependencies.

Usage in routers::

    from cmms_api.middleware.permissions import require_permission

    @router.get("/plants/{plant_id}/workflows")
    async def list_workflows(
        plant_id: str,
        principal: Principal = Depends(require_permission("workorders:read", Scope.PLANT)),
    ) -> ...:
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from cmms_core.rbac.engine import RbacEngine
from cmms_core.rbac.guard import PermissionGuard, Principal, Scope
from fastapi import Depends, Request

from cmms_api.dependencies import (
    CoreSettingsDep,
    SchemaStateDep,
    SessionDep,
    get_current_principal,
)

logger = logging.getLogger(__name__)


def require_permission(permission_key: str, scope: Scope = Scope.PLANT) -> Callable[..., Awaitable[Principal]]:
    """Return a FastAPI dependency that enforces *permission_key* at *scope*.

    The plant is taken from the ``plant_id`` path parameter, else from the
    ``x-plant-id`` header captured by the tenant middleware.  Returns the
    principal so handlers can use it directly.
    """

    async def _guard(
        request: Request,
        session: SessionDep,
        schema: SchemaStateDep,
        core_settings: CoreSettingsDep,
    ) -> Principal:
        principal = getattr(request.state, "principal", None)
        plant_id = request.path_params.get("plant_id") or getattr(request.state, "plant_id", None)
        guard = PermissionGuard(
            RbacEngine(session, schema),
            timeout_seconds=core_settings.store_timeout_seconds,
        )
        await guard.check(
            principal,
            permission_key,
            scope,
            tenant_id=getattr(request.state, "tenant_id", None),
            plant_id=plant_id,
        )
        return principal

    return _guard


async def require_superadmin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Dependency admitting only the platform ``superadmin`` role."""
    await PermissionGuard.require_role(principal, "superadmin")
    return principal
