"""Work-order workflow state machine.

A workflow is an ordered list of transition rules ``from -> [to, ...]``,
optionally gated by ``allowed_roles``.  Workflows are stored per plant or
tenant-wide; the active one for a plant is resolved in four tiers (plant
default, earliest plant row, tenant-wide default, earliest tenant-wide
row) before falling back to :data:`DEFAULT_CONFIG`.

``approval_roles`` is accepted and persisted but not enforced; there is
no two-step approval protocol yet.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cmms_core.errors import (
    InternalError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    RoleNotPermittedError,
    StoreError,
)
from cmms_core.rbac.engine import normalize_role
from cmms_core.state.repository import WorkflowRepository
from cmms_core.state.tables import WorkOrderWorkflowTable
from cmms_core.timeouts import with_timeout

logger = logging.getLogger(__name__)


class WorkOrderStatus(str, Enum):
    ABERTA = "aberta"
    EM_ANALISE = "em_analise"
    EM_EXECUCAO = "em_execucao"
    EM_PAUSA = "em_pausa"
    CONCLUIDA = "concluida"
    FECHADA = "fechada"
    CANCELADA = "cancelada"


_LEGACY_STATUS_ALIASES: dict[str, str] = {
    "aprovada": WorkOrderStatus.EM_ANALISE.value,
    "planeada": WorkOrderStatus.EM_ANALISE.value,
    "atribuida": WorkOrderStatus.EM_ANALISE.value,
    "em_curso": WorkOrderStatus.EM_EXECUCAO.value,
}


def normalize_status(raw: Any) -> str:
    """Lowercase, trim and map legacy status names onto current ones."""
    value = str(raw or "").strip().lower()
    return _LEGACY_STATUS_ALIASES.get(value, value)


class TransitionRule(BaseModel):
    """One ``from -> to`` rule.  ``to`` accepts a single status or a list."""

    from_status: str = Field(alias="from")
    to: list[str]
    allowed_roles: list[str] = Field(default_factory=list)
    approval_roles: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @field_validator("from_status")
    @classmethod
    def _normalise_from(cls, value: str) -> str:
        value = normalize_status(value)
        if not value:
            raise ValueError("'from' must not be empty")
        return value

    @field_validator("to", mode="before")
    @classmethod
    def _coerce_to(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise ValueError("'to' must be a status or a list of statuses")
        return [normalize_status(item) for item in value if normalize_status(item)]

    @field_validator("allowed_roles", "approval_roles", mode="before")
    @classmethod
    def _coerce_roles(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item) for item in value]


class WorkflowConfig(BaseModel):
    transitions: list[TransitionRule]

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


DEFAULT_CONFIG = WorkflowConfig(
    transitions=[
        TransitionRule(from_status="aberta", to=["em_analise", "cancelada"]),
        TransitionRule(from_status="em_analise", to=["em_execucao", "cancelada"]),
        TransitionRule(from_status="em_execucao", to=["concluida", "em_pausa", "cancelada"]),
        TransitionRule(from_status="em_pausa", to=["em_execucao", "cancelada"]),
        TransitionRule(from_status="concluida", to=["fechada", "cancelada"]),
        TransitionRule(from_status="fechada", to=["aberta", "em_analise"]),
    ]
)


def parse_config(raw: Any) -> WorkflowConfig:
    """Validate a client-supplied config, raising :class:`InvalidInputError`."""
    if isinstance(raw, WorkflowConfig):
        return raw
    try:
        return WorkflowConfig.model_validate(raw)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid workflow config: {exc.errors()[0]['msg']}") from exc


def validate_transition(
    config: WorkflowConfig,
    from_status: str,
    to_status: str,
    actor_role: str | None,
) -> TransitionRule | None:
    """Check ``from_status -> to_status`` against *config* for *actor_role*.

    Returns the first matching rule, or ``None`` for a no-op (same status).
    Raises :class:`InvalidTransitionError` when no rule allows the move and
    :class:`RoleNotPermittedError` when every matching rule restricts
    ``allowed_roles`` and the actor is in none of them.  ``superadmin``
    passes every role gate.
    """
    current = normalize_status(from_status)
    target = normalize_status(to_status)
    if not current or not target:
        raise InvalidTransitionError(current, target)
    if current == target:
        return None

    matching = [rule for rule in config.transitions if rule.from_status == current and target in rule.to]
    if not matching:
        raise InvalidTransitionError(current, target)

    role = normalize_role(actor_role)
    if role == "superadmin":
        return matching[0]
    for rule in matching:
        if not rule.allowed_roles:
            return rule
        if role and role in {normalize_role(r) for r in rule.allowed_roles}:
            return rule

    raise RoleNotPermittedError(
        f"Role '{role or 'none'}' may not move a work order from {current} to {target}",
    )


class WorkflowService:
    """Workflow persistence and active-workflow resolution for one tenant."""

    def __init__(self, session: AsyncSession, *, tenant_id: str, timeout_seconds: float = 5.0) -> None:
        self._repo = WorkflowRepository(session, tenant_id=tenant_id)
        self._tenant_id = tenant_id
        self._timeout = timeout_seconds

    async def list_workflows(self, plant_id: str | None = None) -> list[WorkOrderWorkflowTable]:
        if plant_id is None:
            return await self._repo.list_all()
        return await self._repo.list_scope(plant_id)

    async def resolve_active_workflow(self, plant_id: str) -> WorkOrderWorkflowTable | None:
        """Active row for *plant_id*, or ``None`` when the built-in table applies.

        Store failures surface as :class:`InternalError`.
        """
        try:
            return await with_timeout(self._resolve(plant_id), self._timeout, "workflow resolution")
        except (StoreError, SQLAlchemyError) as exc:
            logger.error("Workflow resolution failed: tenant=%s plant=%s", self._tenant_id, plant_id, exc_info=True)
            raise InternalError("Failed to resolve workflow") from exc

    async def _resolve(self, plant_id: str) -> WorkOrderWorkflowTable | None:
        for scope in (plant_id, None):
            rows = await self._repo.list_scope(scope)
            if rows:
                return next((row for row in rows if row.is_default), rows[0])
        return None

    @staticmethod
    def get_config_or_default(row: WorkOrderWorkflowTable | None) -> WorkflowConfig:
        """Parsed config of *row*; the built-in table when absent or malformed."""
        raw = getattr(row, "config", None)
        if not isinstance(raw, dict) or not isinstance(raw.get("transitions"), list):
            return DEFAULT_CONFIG
        try:
            return WorkflowConfig.model_validate(raw)
        except ValidationError:
            logger.warning("Workflow %s has an invalid config; using the built-in table", row.id, exc_info=True)
            return DEFAULT_CONFIG

    async def get_active_config(self, plant_id: str) -> WorkflowConfig:
        return self.get_config_or_default(await self.resolve_active_workflow(plant_id))

    async def create_workflow(
        self,
        *,
        plant_id: str | None,
        name: str,
        config: Any,
        is_default: bool = False,
        user_id: str | None = None,
    ) -> WorkOrderWorkflowTable:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Workflow name is required")
        parsed = parse_config(config)
        return await self._repo.create(
            plant_id=plant_id,
            name=name,
            config=parsed.to_json(),
            is_default=is_default,
            created_by=user_id,
        )

    async def update_workflow(
        self,
        workflow_id: str,
        *,
        name: str | None = None,
        config: Any = None,
        is_default: bool | None = None,
        user_id: str | None = None,
    ) -> WorkOrderWorkflowTable:
        if name is not None and not name.strip():
            raise InvalidInputError("Workflow name must not be empty")
        parsed = parse_config(config).to_json() if config is not None else None
        row = await self._repo.update(
            workflow_id,
            name=name.strip() if name is not None else None,
            config=parsed,
            is_default=is_default,
            updated_by=user_id,
        )
        if row is None:
            raise NotFoundError("Workflow not found")
        return row

    async def delete_workflow(self, workflow_id: str) -> None:
        if not await self._repo.delete(workflow_id):
            raise NotFoundError("Workflow not found")

    async def get_workflow(self, workflow_id: str) -> WorkOrderWorkflowTable:
        row = await self._repo.get(workflow_id)
        if row is None:
            raise NotFoundError("Workflow not found")
        return row
