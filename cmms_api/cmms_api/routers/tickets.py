"""Ticket intake."""

from __future__ import annotations

from datetime import UTC, datetime

from cmms_core.errors import NotFoundError
from cmms_core.rbac.guard import Principal, Scope
from cmms_core.sla.engine import ENTITY_TICKET, Priority, SlaEngine, normalize_priority
from cmms_core.state.repository import PlantRepository, TicketRepository
from fastapi import APIRouter, Depends, Request

from cmms_api.dependencies import CoreSettingsDep, SessionDep, TenantDep, get_client_ip
from cmms_api.middleware.permissions import require_permission
from cmms_api.schemas import TicketCreate, TicketResponse
from cmms_api.services.audit_service import AuditAction, AuditService

router = APIRouter(prefix="/plants/{plant_id}/tickets", tags=["tickets"])


@router.post("", response_model=TicketResponse, status_code=201)
async def create_ticket(
    plant_id: str,
    body: TicketCreate,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("tickets:write", Scope.PLANT)),
) -> TicketResponse:
    """Open a ticket with response and resolution deadlines from the tenant's SLA rules."""
    if await PlantRepository(session, tenant_id=tenant.id).get(plant_id) is None:
        raise NotFoundError("Plant not found")

    priority = normalize_priority(body.priority) or Priority.MEDIA
    now = datetime.now(UTC)
    deadlines = await SlaEngine(
        session,
        timeout_seconds=core_settings.store_timeout_seconds,
    ).compute_ticket_sla_deadlines(tenant.id, priority, base=now)

    ticket = await TicketRepository(session, tenant_id=tenant.id).create(
        title=body.title,
        priority=priority.value,
        plant_id=plant_id,
        description=body.description,
        created_by=principal.user_id,
        sla_response_deadline=deadlines.response_deadline,
        sla_resolution_deadline=deadlines.resolution_deadline,
        created_at=now,
    )
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(
        AuditAction.TICKET_CREATED,
        ENTITY_TICKET,
        ticket.id,
        new_values={
            "priority": ticket.priority,
            "sla_response_deadline": deadlines.response_deadline.isoformat(),
            "sla_resolution_deadline": deadlines.resolution_deadline.isoformat(),
        },
    )
    return TicketResponse.model_validate(ticket)
