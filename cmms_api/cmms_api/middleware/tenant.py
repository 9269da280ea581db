"""Tenant resolution and read-only enforcement middleware."""

from __future__ import annotations

import logging

from cmms_core.audit.readonly import check_write_allowed
from cmms_core.errors import CMMSError, ForbiddenError
from cmms_core.rbac.guard import Principal
from cmms_core.tenancy.resolver import TenantInfo, TenantResolver
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cmms_api.errors import error_response

logger = logging.getLogger(__name__)

TENANT_ID_HEADER = "x-tenant-id"
TENANT_SLUG_HEADER = "x-tenant-slug"
PLANT_ID_HEADER = "x-plant-id"

# Infrastructure paths that never need a tenant.
_UNSCOPED_PATHS: frozenset[str] = frozenset({"/api/v1/health", "/docs", "/openapi.json", "/redoc", "/favicon.ico"})


async def resolve_request_tenant(
    resolver: TenantResolver,
    principal: Principal | None,
    *,
    tenant_id: str | None,
    tenant_slug: str | None,
) -> TenantInfo:
    """Resolve the tenant for a request.

    Explicit headers win.  Without headers an authenticated principal is
    pinned to the tenant in its token; anonymous requests get the implicit
    default.  A non-superadmin naming a tenant other than its own is
    rejected.
    """
    explicit = bool((tenant_id or "").strip() or (tenant_slug or "").strip())
    if explicit:
        info = await resolver.resolve(tenant_id=tenant_id, tenant_slug=tenant_slug)
    elif principal is not None and principal.tenant_id:
        info = await resolver.resolve_by_id(principal.tenant_id)
    else:
        info = await resolver.resolve_default()

    if (
        principal is not None
        and not principal.is_superadmin
        and principal.tenant_id
        and principal.tenant_id.lower() != info.id.lower()
    ):
        logger.warning(
            "Cross-tenant access denied: user=%s token_tenant=%s requested=%s",
            principal.user_id,
            principal.tenant_id,
            info.id,
        )
        raise ForbiddenError("Access denied to this tenant")
    return info


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """Populate ``request.state.tenant`` (and its id, slug and read-only flag)."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or request.url.path in _UNSCOPED_PATHS:
            return await call_next(request)

        resolver: TenantResolver = request.app.state.tenant_resolver
        try:
            info = await resolve_request_tenant(
                resolver,
                getattr(request.state, "principal", None),
                tenant_id=request.headers.get(TENANT_ID_HEADER),
                tenant_slug=request.headers.get(TENANT_SLUG_HEADER),
            )
        except CMMSError as exc:
            return error_response(request, exc)

        request.state.tenant = info
        request.state.tenant_id = info.id
        request.state.tenant_slug = info.slug
        request.state.tenant_is_read_only = info.is_read_only
        request.state.plant_id = (request.headers.get(PLANT_ID_HEADER) or "").strip() or None
        return await call_next(request)


class TenantReadOnlyMiddleware(BaseHTTPMiddleware):
    """Reject writes with 423 while the resolved tenant is read-only."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if getattr(request.state, "tenant_id", None) is None:
            return await call_next(request)
        try:
            check_write_allowed(
                request.method,
                request.url.path,
                bool(getattr(request.state, "tenant_is_read_only", False)),
            )
        except CMMSError as exc:
            logger.info(
                "Write blocked for read-only tenant %s: %s %s",
                request.state.tenant_id,
                request.method,
                request.url.path,
            )
            return error_response(request, exc)
        return await call_next(request)
