"""Work-order creation, status transitions and per-order audit trail.

Status changes are validated against the plant's active workflow and the
caller's effective role (plant override, else global role).  Pause and
resume fold into the SLA pause accounting so the effective deadline moves
with the time spent in ``em_pausa``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from cmms_core.errors import InvalidInputError, NotFoundError
from cmms_core.rbac.engine import RbacEngine
from cmms_core.rbac.guard import Principal, Scope
from cmms_core.sla.engine import (
    ENTITY_WORK_ORDER,
    Priority,
    SlaEngine,
    apply_pause,
    apply_resume,
    get_effective_sla_deadline,
    get_work_order_pause_ms,
    get_work_order_status_aging_ms,
    is_sla_overdue,
    normalize_priority,
    should_suppress_sla_alerts_while_paused,
)
from cmms_core.state.repository import AuditRepository, PlantRepository, WorkOrderRepository
from cmms_core.state.tables import WorkOrderTable
from cmms_core.workflow.machine import WorkflowService, WorkOrderStatus, normalize_status, validate_transition
from fastapi import APIRouter, Depends, Query, Request

from cmms_api.dependencies import CoreSettingsDep, SchemaStateDep, SessionDep, TenantDep, get_client_ip
from cmms_api.middleware.permissions import require_permission
from cmms_api.schemas import (
    AuditEntryResponse,
    SlaView,
    WorkOrderCreate,
    WorkOrderResponse,
    WorkOrderStatusUpdate,
)
from cmms_api.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plants/{plant_id}/work-orders", tags=["work-orders"])

_MIN_REASON_LENGTH = 3
_VALID_STATUSES = frozenset(status.value for status in WorkOrderStatus)


def _sla_view(order: WorkOrderTable, now: datetime) -> SlaView:
    return SlaView(
        deadline=order.sla_deadline,
        effective_deadline=get_effective_sla_deadline(order, now),
        paused_ms=get_work_order_pause_ms(order, now),
        is_overdue=is_sla_overdue(order, now),
        alerts_suppressed=should_suppress_sla_alerts_while_paused(order),
        status_aging_ms=get_work_order_status_aging_ms(order, now),
    )


def _to_response(order: WorkOrderTable, now: datetime | None = None) -> WorkOrderResponse:
    now = now or datetime.now(UTC)
    fields = {name: getattr(order, name) for name in WorkOrderResponse.model_fields if name != "sla"}
    return WorkOrderResponse(**fields, sla=_sla_view(order, now))


def _snapshot(order: WorkOrderTable) -> dict[str, Any]:
    return {
        "status": order.status,
        "pause_reason": order.pause_reason,
        "cancel_reason": order.cancel_reason,
        "sla_paused_ms": order.sla_paused_ms,
    }


def _require_reason(value: str | None, field: str) -> str:
    reason = (value or "").strip()
    if len(reason) < _MIN_REASON_LENGTH:
        raise InvalidInputError(f"{field} is required (at least {_MIN_REASON_LENGTH} characters)")
    return reason


def _stamp_lifecycle(order: WorkOrderTable, target: str, now: datetime) -> None:
    """Record when *order* entered *target*.

    Start-of-phase stamps keep their first value; closing stamps always
    reflect the latest entry.
    """
    if target == WorkOrderStatus.EM_ANALISE.value and order.analysis_started_at is None:
        order.analysis_started_at = now
    elif target == WorkOrderStatus.EM_EXECUCAO.value and order.started_at is None:
        order.started_at = now
    elif target == WorkOrderStatus.CONCLUIDA.value and order.completed_at is None:
        order.completed_at = now
    elif target == WorkOrderStatus.FECHADA.value:
        order.closed_at = now
    elif target == WorkOrderStatus.CANCELADA.value:
        order.cancelled_at = now


async def _load(session: SessionDep, tenant_id: str, plant_id: str, work_order_id: str) -> WorkOrderTable:
    order = await WorkOrderRepository(session, tenant_id=tenant_id).get(plant_id, work_order_id)
    if order is None:
        raise NotFoundError("Work order not found")
    return order


@router.post("", response_model=WorkOrderResponse, status_code=201)
async def create_work_order(
    plant_id: str,
    body: WorkOrderCreate,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("workorders:write", Scope.PLANT)),
) -> WorkOrderResponse:
    if await PlantRepository(session, tenant_id=tenant.id).get(plant_id) is None:
        raise NotFoundError("Plant not found")

    priority = normalize_priority(body.priority)
    if priority is None:
        logger.info("Unknown priority '%s' on new work order; using media", body.priority)
        priority = Priority.MEDIA

    now = datetime.now(UTC)
    sla = SlaEngine(session, timeout_seconds=core_settings.store_timeout_seconds)
    deadline = await sla.compute_work_order_sla_deadline(tenant.id, priority, base=now)

    order = await WorkOrderRepository(session, tenant_id=tenant.id).create(
        plant_id=plant_id,
        title=body.title,
        priority=priority.value,
        description=body.description,
        assigned_to=body.assigned_to,
        created_by=principal.user_id,
        sla_deadline=deadline,
        sla_exclude_pause=body.sla_exclude_pause,
        created_at=now,
    )
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(
        AuditAction.WORK_ORDER_CREATED,
        ENTITY_WORK_ORDER,
        order.id,
        new_values={"status": order.status, "priority": order.priority, "sla_deadline": deadline.isoformat()},
    )
    return _to_response(order, now)


@router.get("/{work_order_id}", response_model=WorkOrderResponse)
async def get_work_order(
    plant_id: str,
    work_order_id: str,
    session: SessionDep,
    tenant: TenantDep,
    _principal: Principal = Depends(require_permission("workorders:read", Scope.PLANT)),
) -> WorkOrderResponse:
    return _to_response(await _load(session, tenant.id, plant_id, work_order_id))


@router.patch("/{work_order_id}/status", response_model=WorkOrderResponse)
async def update_status(
    plant_id: str,
    work_order_id: str,
    body: WorkOrderStatusUpdate,
    request: Request,
    session: SessionDep,
    schema: SchemaStateDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("workorders:write", Scope.PLANT)),
) -> WorkOrderResponse:
    """Move a work order to a new status."""
    order = await _load(session, tenant.id, plant_id, work_order_id)

    target = normalize_status(body.status)
    if target not in _VALID_STATUSES:
        raise InvalidInputError(f"Unknown status '{body.status}'")
    current = normalize_status(order.status)
    if current == target:
        return _to_response(order)

    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    config = await service.get_active_config(plant_id)
    actor_role = principal.role
    if not principal.is_superadmin:
        override = await RbacEngine(session, schema).get_user_role_for_plant(principal.user_id, plant_id)
        actor_role = override or principal.role
    validate_transition(config, current, target, actor_role)

    before = _snapshot(order)
    if target == WorkOrderStatus.EM_PAUSA.value:
        order.pause_reason = _require_reason(body.pause_reason, "pause_reason")
    elif target == WorkOrderStatus.CANCELADA.value:
        order.cancel_reason = _require_reason(body.cancel_reason, "cancel_reason")

    now = datetime.now(UTC)
    if current == WorkOrderStatus.EM_PAUSA.value:
        apply_resume(order, now)
    if target == WorkOrderStatus.EM_PAUSA.value:
        apply_pause(order, now)
    _stamp_lifecycle(order, target, now)
    order.status = target
    await WorkOrderRepository(session, tenant_id=tenant.id).save(order)

    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(
        AuditAction.WORK_ORDER_STATUS_CHANGED,
        ENTITY_WORK_ORDER,
        order.id,
        old_values=before,
        new_values=_snapshot(order),
    )
    logger.info("Work order %s moved %s -> %s by %s", order.id, current, target, principal.user_id)
    return _to_response(order, now)


@router.get("/{work_order_id}/audit", response_model=list[AuditEntryResponse])
async def list_work_order_audit(
    plant_id: str,
    work_order_id: str,
    session: SessionDep,
    tenant: TenantDep,
    limit: int = Query(default=25, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _principal: Principal = Depends(require_permission("workorders:read", Scope.PLANT)),
) -> list[AuditEntryResponse]:
    """Audit entries for one work order, newest first."""
    await _load(session, tenant.id, plant_id, work_order_id)
    rows = await AuditRepository(session, tenant_id=tenant.id).query(
        entity_type=ENTITY_WORK_ORDER,
        entity_id=work_order_id,
        limit=limit,
        offset=offset,
    )
    return [AuditEntryResponse.model_validate(row) for row in rows]
