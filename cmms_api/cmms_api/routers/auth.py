"""Login and current-principal endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request

from cmms_api.dependencies import (
    PrincipalDep,
    SessionDep,
    TenantDep,
    TokenManagerDep,
    get_client_ip,
)
from cmms_api.schemas import LoginRequest, PrincipalResponse
from cmms_api.services.audit_service import AuditAction, AuditService
from cmms_api.services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    token_manager: TokenManagerDep,
) -> dict[str, Any]:
    """Exchange email and password for a bearer token scoped to the resolved tenant."""
    result = await AuthService(session, token_manager).login(tenant.id, body.email, body.password)
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=result["user"]["id"],
        ip_address=get_client_ip(request),
    ).log(AuditAction.AUTH_SUCCESS, "user", result["user"]["id"])
    result["tenant"] = {"id": tenant.id, "slug": tenant.slug, "is_read_only": tenant.is_read_only}
    return result


@router.get("/me", response_model=PrincipalResponse)
async def me(principal: PrincipalDep, tenant: TenantDep) -> PrincipalResponse:
    return PrincipalResponse(
        user_id=principal.user_id,
        role=principal.normalized_role,
        email=principal.email,
        tenant_id=tenant.id,
        tenant_slug=tenant.slug,
    )
