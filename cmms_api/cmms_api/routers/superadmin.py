"""Platform-operator endpoints.

Everything here requires the global ``superadmin`` role and is exempt
from tenant read-only enforcement.  Mutations are recorded in the
superadmin audit log with the caller's IP and user agent.
"""

from __future__ import annotations

import logging
from datetime import datetime

from cmms_core.errors import NotFoundError
from cmms_core.rbac.guard import Principal
from cmms_core.state.repository import AuditRepository, SuperadminAuditRepository, TenantRepository
from fastapi import APIRouter, Depends, Query, Request

from cmms_api.dependencies import SessionDep, SettingsDep, TenantResolverDep, get_client_ip
from cmms_api.middleware.permissions import require_superadmin
from cmms_api.schemas import (
    AuditChainVerificationResponse,
    AuditPurgeRequest,
    AuditPurgeResponse,
    SuperadminAuditEntryResponse,
    TenantResponse,
    TenantUpdate,
)
from cmms_api.services.audit_service import AuditAction, SuperadminAuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/superadmin", tags=["superadmin"])


def _audit(session: SessionDep, request: Request, principal: Principal) -> SuperadminAuditService:
    return SuperadminAuditService(
        session,
        actor_user_id=principal.user_id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/tenants", response_model=list[TenantResponse])
async def list_tenants(
    session: SessionDep,
    include_deleted: bool = Query(default=False),
    _principal: Principal = Depends(require_superadmin),
) -> list[TenantResponse]:
    rows = await TenantRepository(session).list_all(include_deleted=include_deleted)
    return [TenantResponse.model_validate(row) for row in rows]


@router.patch("/tenants/{tenant_id}", response_model=TenantResponse)
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    request: Request,
    session: SessionDep,
    resolver: TenantResolverDep,
    principal: Principal = Depends(require_superadmin),
) -> TenantResponse:
    """Change a tenant's name, read-only or active flag.

    The change is committed and then the resolver cache is cleared, so
    the new flags apply to the next request instead of after the cache TTL.
    """
    repo = TenantRepository(session)
    existing = await repo.get_by_id(tenant_id)
    if existing is None:
        raise NotFoundError("Tenant not found")
    before = {"name": existing.name, "is_read_only": existing.is_read_only, "is_active": existing.is_active}

    row = await repo.update_flags(
        tenant_id,
        name=body.name,
        is_read_only=body.is_read_only,
        is_active=body.is_active,
    )
    after = {"name": row.name, "is_read_only": row.is_read_only, "is_active": row.is_active}
    await _audit(session, request, principal).log(
        AuditAction.TENANT_UPDATED,
        "tenant",
        tenant_id,
        affected_tenant_id=tenant_id,
        before=before,
        after=after,
    )
    # Commit before clearing the cache so a concurrent resolve cannot re-cache the old flags.
    await session.commit()
    resolver.cache.invalidate()
    logger.info("Tenant %s updated by superadmin %s: %s", tenant_id, principal.user_id, after)
    return TenantResponse.model_validate(row)


@router.get("/tenants/{tenant_id}/audit/verify", response_model=AuditChainVerificationResponse)
async def verify_tenant_audit_chain(
    tenant_id: str,
    session: SessionDep,
    limit: int = Query(default=1000, ge=1, le=10000),
    _principal: Principal = Depends(require_superadmin),
) -> AuditChainVerificationResponse:
    """Recompute the tenant's audit hash chain, oldest entry first."""
    if await TenantRepository(session).get_by_id(tenant_id) is None:
        raise NotFoundError("Tenant not found")
    is_valid, entries_checked = await AuditRepository(session, tenant_id=tenant_id).verify_chain(limit=limit)
    return AuditChainVerificationResponse(tenant_id=tenant_id, is_valid=is_valid, entries_checked=entries_checked)


@router.get("/audit", response_model=list[SuperadminAuditEntryResponse])
async def list_audit(
    session: SessionDep,
    since: datetime | None = Query(default=None, alias="from"),
    until: datetime | None = Query(default=None, alias="to"),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    _principal: Principal = Depends(require_superadmin),
) -> list[SuperadminAuditEntryResponse]:
    """Superadmin audit entries, newest first.  ``limit`` is clamped to 1..200."""
    rows = await SuperadminAuditRepository(session).list_entries(
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return [SuperadminAuditEntryResponse.model_validate(row) for row in rows]


@router.post("/audit/purge", response_model=AuditPurgeResponse)
async def purge_audit(
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    body: AuditPurgeRequest | None = None,
    principal: Principal = Depends(require_superadmin),
) -> AuditPurgeResponse:
    """Delete superadmin audit entries older than the retention window.

    A window of zero or less days disables the purge.
    """
    days = body.days if body is not None and body.days is not None else settings.audit_retention_days
    if days <= 0:
        return AuditPurgeResponse(days=days, deleted=0, enabled=False)

    deleted = await SuperadminAuditRepository(session).purge_older_than(days)
    await _audit(session, request, principal).log(
        AuditAction.AUDIT_PURGED,
        "superadmin_audit_log",
        "*",
        days=days,
        deleted=deleted,
    )
    return AuditPurgeResponse(days=days, deleted=deleted, enabled=True)
