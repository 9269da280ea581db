"""Pydantic request and response models for API endpoints.

Response models read straight from ORM rows (``from_attributes``) so that
routers can return repository results without hand-built dictionaries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class PrincipalResponse(BaseModel):
    user_id: str
    role: str
    email: str | None = None
    tenant_id: str
    tenant_slug: str


# ---------------------------------------------------------------------------
# RBAC administration
# ---------------------------------------------------------------------------


class PermissionResponse(BaseModel):
    key: str
    label: str
    group_name: str
    description: str | None = None

    model_config = {"from_attributes": True}


class RolePermissionsResponse(BaseModel):
    role_key: str
    permissions: list[str] = Field(default_factory=list)


class RolePermissionsUpdate(BaseModel):
    permissions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# SLA rules
# ---------------------------------------------------------------------------


class SlaRuleUpsert(BaseModel):
    entity_type: str = "work_order"
    priority: str
    response_time_hours: float = Field(gt=0)
    resolution_time_hours: float = Field(gt=0)
    is_active: bool = True


class SlaRuleResponse(BaseModel):
    id: str
    entity_type: str
    priority: str
    response_time_hours: int
    resolution_time_hours: int
    is_active: bool
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    is_default: bool = False
    config: dict[str, Any]
    # Store as a tenant-wide workflow instead of a plant-scoped one.
    tenant_wide: bool = False


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=256)
    is_default: bool | None = None
    config: dict[str, Any] | None = None


class WorkflowResponse(BaseModel):
    id: str
    plant_id: str | None = None
    name: str
    is_default: bool
    config: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ActiveWorkflowResponse(BaseModel):
    workflow: WorkflowResponse | None = None
    config: dict[str, Any]
    is_builtin: bool


# ---------------------------------------------------------------------------
# Work orders and tickets
# ---------------------------------------------------------------------------


class WorkOrderCreate(BaseModel):
    title: str = Field(min_length=1, max_length=512)
    description: str | None = None
    priority: str = "media"
    assigned_to: str | None = None
    sla_exclude_pause: bool = True


class WorkOrderStatusUpdate(BaseModel):
    status: str = Field(min_length=1)
    pause_reason: str | None = None
    cancel_reason: str | None = None


class SlaView(BaseModel):
    deadline: datetime | None = None
    effective_deadline: datetime | None = None
    paused_ms: int = 0
    is_overdue: bool = False
    alerts_suppressed: bool = False
    status_aging_ms: int | None = None


class WorkOrderResponse(BaseModel):
    id: str
    plant_id: str
    title: str
    description: str | None = None
    status: str
    priority: str
    assigned_to: str | None = None
    pause_reason: str | None = None
    cancel_reason: str | None = None
    created_at: datetime
    analysis_started_at: datetime | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    closed_at: datetime | None = None
    cancelled_at: datetime | None = None
    sla: SlaView

    model_config = {"from_attributes": True}


class TicketCreate(BaseModel):
    title: str = Field(min_length=1, max_length=512)
    description: str | None = None
    priority: str = "media"


class TicketResponse(BaseModel):
    id: str
    plant_id: str | None = None
    title: str
    status: str
    priority: str
    sla_response_deadline: datetime | None = None
    sla_resolution_deadline: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditEntryResponse(BaseModel):
    id: str
    actor: str
    action: str
    entity_type: str
    entity_id: str
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Superadmin
# ---------------------------------------------------------------------------


class TenantResponse(BaseModel):
    id: str
    slug: str
    name: str
    is_read_only: bool
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TenantUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=256)
    is_read_only: bool | None = None
    is_active: bool | None = None


class SuperadminAuditEntryResponse(BaseModel):
    id: str
    actor_user_id: str
    action: str
    entity_type: str
    entity_id: str
    affected_tenant_id: str | None = None
    metadata_json: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditPurgeRequest(BaseModel):
    # Defaults to API_AUDIT_RETENTION_DAYS; zero or less disables the purge.
    days: int | None = None


class AuditChainVerificationResponse(BaseModel):
    tenant_id: str
    is_valid: bool
    entries_checked: int


class AuditPurgeResponse(BaseModel):
    days: int
    deleted: int
    enabled: bool
