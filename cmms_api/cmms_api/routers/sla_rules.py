"""SLA rule administration."""

from __future__ import annotations

import logging

from cmms_core.errors import InvalidInputError, NotFoundError
from cmms_core.rbac.guard import Principal, Scope
from cmms_core.sla.engine import ENTITY_TYPES, normalize_priority
from cmms_core.state.repository import SlaRuleRepository
from fastapi import APIRouter, Depends, Query, Request

from cmms_api.dependencies import SessionDep, TenantDep, get_client_ip
from cmms_api.middleware.permissions import require_permission
from cmms_api.schemas import SlaRuleResponse, SlaRuleUpsert
from cmms_api.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/sla-rules", tags=["sla"])

_admin_rbac = require_permission("admin:rbac", Scope.TENANT)


def _entity_type(raw: str | None) -> str:
    value = (raw or "work_order").strip().lower()
    if value not in ENTITY_TYPES:
        raise InvalidInputError(f"Invalid entity_type '{raw}'; expected one of {', '.join(ENTITY_TYPES)}")
    return value


def _serialize(row: object) -> dict:
    return SlaRuleResponse.model_validate(row).model_dump(mode="json")


@router.get("", response_model=list[SlaRuleResponse])
async def list_rules(
    session: SessionDep,
    tenant: TenantDep,
    entity_type: str = Query(default="work_order"),
    _principal: Principal = Depends(_admin_rbac),
) -> list[SlaRuleResponse]:
    rows = await SlaRuleRepository(session, tenant_id=tenant.id).list_rules(_entity_type(entity_type))
    return [SlaRuleResponse.model_validate(row) for row in rows]


@router.put("", response_model=SlaRuleResponse)
async def upsert_rule(
    body: SlaRuleUpsert,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    principal: Principal = Depends(_admin_rbac),
) -> SlaRuleResponse:
    """Create or replace the rule for (entity_type, priority).  Hours are truncated to whole hours."""
    entity_type = _entity_type(body.entity_type)
    priority = normalize_priority(body.priority)
    if priority is None:
        raise InvalidInputError(f"Invalid priority '{body.priority}'")

    response_hours = int(body.response_time_hours)
    resolution_hours = int(body.resolution_time_hours)
    if response_hours < 1 or resolution_hours < 1:
        raise InvalidInputError("SLA hours must be at least 1")

    repo = SlaRuleRepository(session, tenant_id=tenant.id)
    existing = await repo.find_active(entity_type, priority.value)
    before = _serialize(existing) if existing is not None else None
    row = await repo.upsert(
        entity_type=entity_type,
        priority=priority.value,
        response_time_hours=response_hours,
        resolution_time_hours=resolution_hours,
        is_active=body.is_active,
    )

    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(AuditAction.SLA_RULE_UPSERTED, "sla_rule", row.id, old_values=before, new_values=_serialize(row))
    return SlaRuleResponse.model_validate(row)


@router.delete("/{rule_id}", response_model=SlaRuleResponse)
async def deactivate_rule(
    rule_id: str,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    principal: Principal = Depends(_admin_rbac),
) -> SlaRuleResponse:
    """Deactivate a rule; deadlines fall back to the defaults afterwards."""
    row = await SlaRuleRepository(session, tenant_id=tenant.id).deactivate(rule_id)
    if row is None:
        raise NotFoundError("SLA rule not found")

    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(AuditAction.SLA_RULE_DEACTIVATED, "sla_rule", row.id, new_values={"is_active": False})
    return SlaRuleResponse.model_validate(row)
