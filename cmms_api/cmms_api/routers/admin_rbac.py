"""RBAC administration: permission catalog and per-role grant sets.

Every endpoint requires ``admin:rbac`` at tenant scope, so a tenant's
``admin_empresa`` can reach them through break-glass while the tenant has
no grants yet.
"""

from __future__ import annotations

import logging

from cmms_core.errors import InvalidInputError
from cmms_core.rbac.engine import RbacEngine, normalize_role
from cmms_core.rbac.guard import Principal, Scope
from cmms_core.state.repository import PermissionCatalogRepository
from fastapi import APIRouter, Depends, Request

from cmms_api.dependencies import SchemaStateDep, SessionDep, TenantDep, get_client_ip
from cmms_api.middleware.permissions import require_permission
from cmms_api.schemas import PermissionResponse, RolePermissionsResponse, RolePermissionsUpdate
from cmms_api.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

_admin_rbac = require_permission("admin:rbac", Scope.TENANT)


@router.get("/permissions", response_model=list[PermissionResponse])
async def list_permissions(
    session: SessionDep,
    _principal: Principal = Depends(_admin_rbac),
) -> list[PermissionResponse]:
    rows = await PermissionCatalogRepository(session).list_all()
    return [PermissionResponse.model_validate(row) for row in rows]


@router.get("/roles/{role_key}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_key: str,
    session: SessionDep,
    schema: SchemaStateDep,
    tenant: TenantDep,
    _principal: Principal = Depends(_admin_rbac),
) -> RolePermissionsResponse:
    normalized = normalize_role(role_key)
    if not normalized:
        raise InvalidInputError("Role key is required")
    permissions = await RbacEngine(session, schema).permissions_for_role(tenant.id, normalized)
    return RolePermissionsResponse(role_key=normalized, permissions=permissions)


@router.put("/roles/{role_key}/permissions", response_model=RolePermissionsResponse)
async def replace_role_permissions(
    role_key: str,
    body: RolePermissionsUpdate,
    request: Request,
    session: SessionDep,
    schema: SchemaStateDep,
    tenant: TenantDep,
    principal: Principal = Depends(_admin_rbac),
) -> RolePermissionsResponse:
    """Replace the full permission set of *role_key* within the tenant.

    Unknown permission keys are rejected so a typo cannot silently create
    a grant that nothing checks.
    """
    normalized = normalize_role(role_key)
    if not normalized:
        raise InvalidInputError("Role key is required")
    if normalized == "superadmin":
        raise InvalidInputError("The superadmin role cannot be configured per tenant")

    engine = RbacEngine(session, schema)
    requested = sorted({key.strip() for key in body.permissions if key and key.strip()})
    unknown = sorted(set(requested) - await engine.catalog_keys())
    if unknown:
        raise InvalidInputError(f"Unknown permission(s): {', '.join(unknown)}")

    before = await engine.permissions_for_role(tenant.id, normalized)
    stored = await engine.replace_role_permissions(tenant.id, normalized, requested)

    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(
        AuditAction.RBAC_ROLE_PERMISSIONS_REPLACED,
        "role",
        normalized,
        old_values={"permissions": before},
        new_values={"permissions": stored},
    )
    return RolePermissionsResponse(role_key=normalized, permissions=stored)
