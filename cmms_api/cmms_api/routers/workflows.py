"""Per-plant work-order workflow configuration."""

from __future__ import annotations

import logging

from cmms_core.errors import NotFoundError
from cmms_core.rbac.guard import Principal, Scope
from cmms_core.state.repository import PlantRepository
from cmms_core.state.tables import WorkOrderWorkflowTable
from cmms_core.workflow.machine import WorkflowService
from fastapi import APIRouter, Depends, Request, Response

from cmms_api.dependencies import CoreSettingsDep, SessionDep, TenantDep, get_client_ip
from cmms_api.middleware.permissions import require_permission
from cmms_api.schemas import ActiveWorkflowResponse, WorkflowCreate, WorkflowResponse, WorkflowUpdate
from cmms_api.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plants/{plant_id}/workflows", tags=["workflows"])


async def _require_plant(session: SessionDep, tenant_id: str, plant_id: str) -> None:
    if await PlantRepository(session, tenant_id=tenant_id).get(plant_id) is None:
        raise NotFoundError("Plant not found")


async def _get_visible(service: WorkflowService, plant_id: str, workflow_id: str) -> WorkOrderWorkflowTable:
    """Workflow *workflow_id* if it belongs to *plant_id* or is tenant-wide."""
    row = await service.get_workflow(workflow_id)
    if row.plant_id is not None and row.plant_id != plant_id:
        raise NotFoundError("Workflow not found")
    return row


def _snapshot(row: WorkOrderWorkflowTable) -> dict:
    return {"name": row.name, "is_default": row.is_default, "plant_id": row.plant_id, "config": row.config}


@router.get("", response_model=list[WorkflowResponse])
async def list_workflows(
    plant_id: str,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    _principal: Principal = Depends(require_permission("workorders:read", Scope.PLANT)),
) -> list[WorkflowResponse]:
    """Plant-scoped rows followed by tenant-wide rows, oldest first."""
    await _require_plant(session, tenant.id, plant_id)
    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    tenant_wide = [row for row in await service.list_workflows() if row.plant_id is None]
    rows = await service.list_workflows(plant_id) + tenant_wide
    return [WorkflowResponse.model_validate(row) for row in rows]


@router.get("/active", response_model=ActiveWorkflowResponse)
async def get_active_workflow(
    plant_id: str,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    _principal: Principal = Depends(require_permission("workorders:read", Scope.PLANT)),
) -> ActiveWorkflowResponse:
    await _require_plant(session, tenant.id, plant_id)
    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    row = await service.resolve_active_workflow(plant_id)
    config = service.get_config_or_default(row)
    return ActiveWorkflowResponse(
        workflow=WorkflowResponse.model_validate(row) if row is not None else None,
        config=config.to_json(),
        is_builtin=row is None,
    )


@router.post("", response_model=WorkflowResponse, status_code=201)
async def create_workflow(
    plant_id: str,
    body: WorkflowCreate,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("admin:plants", Scope.TENANT)),
) -> WorkflowResponse:
    """Create a workflow.  Marking it default clears the other defaults in its scope."""
    await _require_plant(session, tenant.id, plant_id)
    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    row = await service.create_workflow(
        plant_id=None if body.tenant_wide else plant_id,
        name=body.name,
        config=body.config,
        is_default=body.is_default,
        user_id=principal.user_id,
    )
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(AuditAction.WORKFLOW_CREATED, "workflow", row.id, new_values=_snapshot(row))
    return WorkflowResponse.model_validate(row)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    plant_id: str,
    workflow_id: str,
    body: WorkflowUpdate,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("admin:plants", Scope.TENANT)),
) -> WorkflowResponse:
    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    before = _snapshot(await _get_visible(service, plant_id, workflow_id))
    row = await service.update_workflow(
        workflow_id,
        name=body.name,
        config=body.config,
        is_default=body.is_default,
        user_id=principal.user_id,
    )
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(AuditAction.WORKFLOW_UPDATED, "workflow", row.id, old_values=before, new_values=_snapshot(row))
    return WorkflowResponse.model_validate(row)


@router.delete("/{workflow_id}", status_code=204)
async def delete_workflow(
    plant_id: str,
    workflow_id: str,
    request: Request,
    session: SessionDep,
    tenant: TenantDep,
    core_settings: CoreSettingsDep,
    principal: Principal = Depends(require_permission("admin:plants", Scope.TENANT)),
) -> Response:
    service = WorkflowService(session, tenant_id=tenant.id, timeout_seconds=core_settings.store_timeout_seconds)
    before = _snapshot(await _get_visible(service, plant_id, workflow_id))
    await service.delete_workflow(workflow_id)
    await AuditService(
        session,
        tenant_id=tenant.id,
        actor=principal.user_id,
        ip_address=get_client_ip(request),
    ).log(AuditAction.WORKFLOW_DELETED, "workflow", workflow_id, old_values=before)
    return Response(status_code=204)
