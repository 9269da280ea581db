"""Repository classes providing typed access to the CMMS state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``session_scope`` context manager).
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from cmms_core.errors import NotProvisionedError
from cmms_core.state.schema import SchemaState
from cmms_core.state.tables import (
    AuditLogTable,
    PlantTable,
    RbacPermissionTable,
    RolePermissionTable,
    SlaRuleTable,
    SuperadminAuditLogTable,
    TenantTable,
    TicketTable,
    UserPlantTable,
    UserTable,
    WorkOrderTable,
    WorkOrderWorkflowTable,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


async def _dialect_insert_ignore(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``."""
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """Lookups and flag updates for the ``tenants`` table.

    Tenants are cross-cutting, so this repository is not scoped to a
    tenant id.  Soft-deleted rows are invisible to every lookup except
    :meth:`list_all` with ``include_deleted=True``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, tenant_id: str) -> TenantTable | None:
        stmt = select(TenantTable).where(
            TenantTable.id == tenant_id,
            TenantTable.deleted_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> TenantTable | None:
        stmt = select(TenantTable).where(
            TenantTable.slug == slug.strip().lower(),
            TenantTable.deleted_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_earliest(self) -> TenantTable | None:
        """Return the oldest tenant that has not been soft-deleted."""
        stmt = (
            select(TenantTable)
            .where(TenantTable.deleted_at.is_(None))
            .order_by(TenantTable.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, *, include_deleted: bool = False) -> list[TenantTable]:
        stmt = select(TenantTable).order_by(TenantTable.created_at.asc())
        if not include_deleted:
            stmt = stmt.where(TenantTable.deleted_at.is_(None))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        *,
        slug: str,
        name: str,
        tenant_id: str | None = None,
        is_read_only: bool = False,
        created_at: datetime | None = None,
    ) -> TenantTable:
        row = TenantTable(
            id=tenant_id or _new_id(),
            slug=slug.strip().lower(),
            name=name,
            is_read_only=is_read_only,
            is_active=True,
        )
        if created_at is not None:
            row.created_at = created_at
        self._session.add(row)
        await self._session.flush()
        return row

    async def update_flags(
        self,
        tenant_id: str,
        *,
        name: str | None = None,
        is_read_only: bool | None = None,
        is_active: bool | None = None,
    ) -> TenantTable | None:
        """Apply the provided flag changes.  Returns ``None`` if the tenant is absent."""
        row = await self.get_by_id(tenant_id)
        if row is None:
            return None
        if name is not None:
            row.name = name
        if is_read_only is not None:
            row.is_read_only = is_read_only
        if is_active is not None:
            row.is_active = is_active
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def soft_delete(self, tenant_id: str) -> bool:
        row = await self.get_by_id(tenant_id)
        if row is None:
            return False
        row.deleted_at = datetime.now(UTC)
        row.is_active = False
        await self._session.flush()
        return True


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------


class UserRepository:
    """CRUD operations for the ``users`` table, scoped to one tenant."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get_by_id(self, user_id: str) -> UserTable | None:
        stmt = select(UserTable).where(
            UserTable.tenant_id == self._tenant_id,
            UserTable.id == user_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> UserTable | None:
        stmt = select(UserTable).where(
            UserTable.tenant_id == self._tenant_id,
            UserTable.email == email.strip().lower(),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        email: str,
        display_name: str,
        password_hash: str,
        role: str,
        user_id: str | None = None,
    ) -> UserTable:
        row = UserTable(
            id=user_id or _new_id(),
            tenant_id=self._tenant_id,
            email=email.strip().lower(),
            display_name=display_name,
            password_hash=password_hash,
            role=role,
            is_active=True,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def record_login(self, user_id: str) -> None:
        await self._session.execute(
            update(UserTable)
            .where(UserTable.tenant_id == self._tenant_id, UserTable.id == user_id)
            .values(last_login_at=datetime.now(UTC))
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# PlantRepository / UserPlantRoleRepository
# ---------------------------------------------------------------------------


class PlantRepository:
    """CRUD operations for the ``plants`` table."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self, plant_id: str) -> PlantTable | None:
        stmt = select(PlantTable).where(
            PlantTable.tenant_id == self._tenant_id,
            PlantTable.id == plant_id,
            PlantTable.deleted_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, *, name: str, code: str, plant_id: str | None = None) -> PlantTable:
        row = PlantTable(
            id=plant_id or _new_id(),
            tenant_id=self._tenant_id,
            name=name,
            code=code,
        )
        self._session.add(row)
        await self._session.flush()
        return row


class UserPlantRoleRepository:
    """Plant-scoped role overrides stored on ``user_plants``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_role(self, user_id: str, plant_id: str) -> str | None:
        """Return the override role, or ``None`` when the user has none for the plant."""
        stmt = (
            select(UserPlantTable.role)
            .where(UserPlantTable.user_id == user_id, UserPlantTable.plant_id == plant_id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        role = result.scalar_one_or_none()
        return str(role) if role else None

    async def assign(self, user_id: str, plant_id: str, role: str | None) -> None:
        await _dialect_upsert(
            self._session,
            UserPlantTable,
            values={"id": _new_id(), "user_id": user_id, "plant_id": plant_id, "role": role},
            index_elements=["user_id", "plant_id"],
            update_columns=["role"],
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# RBAC repositories
# ---------------------------------------------------------------------------


class RolePermissionRepository:
    """Per-tenant role → permission grants.

    When constructed with a :class:`SchemaState`, every method first checks
    that ``rbac_role_permissions`` exists and raises
    :class:`NotProvisionedError` otherwise.
    """

    _TABLE = RolePermissionTable.__tablename__

    def __init__(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        schema: SchemaState | None = None,
    ) -> None:
        self._session = session
        self._tenant_id = tenant_id
        self._schema = schema

    async def _ensure_provisioned(self) -> None:
        if self._schema is None:
            return
        if not await self._schema.has_table(self._session, self._TABLE):
            raise NotProvisionedError(self._TABLE)

    async def has_permission(self, role_key: str, permission_key: str) -> bool:
        await self._ensure_provisioned()
        stmt = (
            select(RolePermissionTable.permission_key)
            .where(
                RolePermissionTable.tenant_id == self._tenant_id,
                RolePermissionTable.role_key == role_key,
                RolePermissionTable.permission_key == permission_key,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def has_any(self) -> bool:
        """Return ``True`` if the tenant has at least one grant for any role."""
        await self._ensure_provisioned()
        stmt = select(RolePermissionTable.role_key).where(RolePermissionTable.tenant_id == self._tenant_id).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_for_role(self, role_key: str) -> list[str]:
        await self._ensure_provisioned()
        stmt = (
            select(RolePermissionTable.permission_key)
            .where(
                RolePermissionTable.tenant_id == self._tenant_id,
                RolePermissionTable.role_key == role_key,
            )
            .order_by(RolePermissionTable.permission_key.asc())
        )
        result = await self._session.execute(stmt)
        return [str(key) for key in result.scalars().all()]

    async def grant(self, role_key: str, permission_key: str) -> None:
        await self._ensure_provisioned()
        await _dialect_insert_ignore(
            self._session,
            RolePermissionTable,
            values={
                "tenant_id": self._tenant_id,
                "role_key": role_key,
                "permission_key": permission_key,
                "created_at": datetime.now(UTC),
            },
            index_elements=["tenant_id", "role_key", "permission_key"],
        )
        await self._session.flush()

    async def replace_for_role(self, role_key: str, permission_keys: list[str]) -> list[str]:
        """Replace the full grant set of *role_key* within this tenant.

        Returns the de-duplicated, sorted list that was stored.
        """
        await self._ensure_provisioned()
        await self._session.execute(
            delete(RolePermissionTable).where(
                RolePermissionTable.tenant_id == self._tenant_id,
                RolePermissionTable.role_key == role_key,
            )
        )
        stored = sorted({key.strip() for key in permission_keys if key and key.strip()})
        for key in stored:
            await self.grant(role_key, key)
        return stored


class PermissionCatalogRepository:
    """Global catalog of grantable permission keys."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[RbacPermissionTable]:
        stmt = select(RbacPermissionTable).order_by(
            RbacPermissionTable.group_name.asc(),
            RbacPermissionTable.label.asc(),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def ensure(self, key: str, *, label: str, group_name: str, description: str | None = None) -> None:
        await _dialect_upsert(
            self._session,
            RbacPermissionTable,
            values={"key": key, "label": label, "group_name": group_name, "description": description},
            index_elements=["key"],
            update_columns=["label", "group_name", "description"],
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# WorkOrderRepository / TicketRepository
# ---------------------------------------------------------------------------


class WorkOrderRepository:
    """CRUD operations for the ``work_orders`` table."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create(self, *, plant_id: str, title: str, priority: str, **fields: Any) -> WorkOrderTable:
        row = WorkOrderTable(
            id=fields.pop("work_order_id", None) or _new_id(),
            tenant_id=self._tenant_id,
            plant_id=plant_id,
            title=title,
            priority=priority,
            **fields,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, plant_id: str, work_order_id: str) -> WorkOrderTable | None:
        stmt = select(WorkOrderTable).where(
            WorkOrderTable.tenant_id == self._tenant_id,
            WorkOrderTable.plant_id == plant_id,
            WorkOrderTable.id == work_order_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, row: WorkOrderTable) -> WorkOrderTable:
        """Flush pending attribute changes on *row*."""
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row


class TicketRepository:
    """CRUD operations for the ``tickets`` table."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create(self, *, title: str, priority: str, **fields: Any) -> TicketTable:
        row = TicketTable(
            id=fields.pop("ticket_id", None) or _new_id(),
            tenant_id=self._tenant_id,
            title=title,
            priority=priority,
            **fields,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, ticket_id: str) -> TicketTable | None:
        stmt = select(TicketTable).where(
            TicketTable.tenant_id == self._tenant_id,
            TicketTable.id == ticket_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# SlaRuleRepository
# ---------------------------------------------------------------------------


class SlaRuleRepository:
    """Per-tenant SLA rules, unique on (tenant_id, entity_type, priority)."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def find_active(self, entity_type: str, priority: str) -> SlaRuleTable | None:
        stmt = select(SlaRuleTable).where(
            SlaRuleTable.tenant_id == self._tenant_id,
            SlaRuleTable.entity_type == entity_type,
            SlaRuleTable.priority == priority,
            SlaRuleTable.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get(self, rule_id: str) -> SlaRuleTable | None:
        stmt = select(SlaRuleTable).where(
            SlaRuleTable.tenant_id == self._tenant_id,
            SlaRuleTable.id == rule_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_rules(self, entity_type: str) -> list[SlaRuleTable]:
        stmt = (
            select(SlaRuleTable)
            .where(SlaRuleTable.tenant_id == self._tenant_id, SlaRuleTable.entity_type == entity_type)
            .order_by(SlaRuleTable.priority.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(
        self,
        *,
        entity_type: str,
        priority: str,
        response_time_hours: int,
        resolution_time_hours: int,
        is_active: bool = True,
    ) -> SlaRuleTable:
        """Create the rule or update the existing one for the same key in place."""
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "id": _new_id(),
            "tenant_id": self._tenant_id,
            "entity_type": entity_type,
            "priority": priority,
            "response_time_hours": response_time_hours,
            "resolution_time_hours": resolution_time_hours,
            "is_active": is_active,
            "created_at": now,
            "updated_at": now,
        }
        await _dialect_upsert(
            self._session,
            SlaRuleTable,
            values=values,
            index_elements=["tenant_id", "entity_type", "priority"],
            update_columns=["response_time_hours", "resolution_time_hours", "is_active", "updated_at"],
        )
        await self._session.flush()

        stmt = (
            select(SlaRuleTable)
            .where(
                SlaRuleTable.tenant_id == self._tenant_id,
                SlaRuleTable.entity_type == entity_type,
                SlaRuleTable.priority == priority,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def deactivate(self, rule_id: str) -> SlaRuleTable | None:
        row = await self.get(rule_id)
        if row is None:
            return None
        row.is_active = False
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# WorkflowRepository
# ---------------------------------------------------------------------------


class WorkflowRepository:
    """Work-order workflow rows scoped to a plant or tenant-wide (``plant_id`` NULL)."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    def _scope(self, plant_id: str | None) -> Any:
        if plant_id is None:
            return WorkOrderWorkflowTable.plant_id.is_(None)
        return WorkOrderWorkflowTable.plant_id == plant_id

    async def list_scope(self, plant_id: str | None) -> list[WorkOrderWorkflowTable]:
        """Rows of exactly one scope, oldest first."""
        stmt = (
            select(WorkOrderWorkflowTable)
            .where(WorkOrderWorkflowTable.tenant_id == self._tenant_id, self._scope(plant_id))
            .order_by(WorkOrderWorkflowTable.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self) -> list[WorkOrderWorkflowTable]:
        stmt = (
            select(WorkOrderWorkflowTable)
            .where(WorkOrderWorkflowTable.tenant_id == self._tenant_id)
            .order_by(WorkOrderWorkflowTable.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, workflow_id: str) -> WorkOrderWorkflowTable | None:
        stmt = select(WorkOrderWorkflowTable).where(
            WorkOrderWorkflowTable.tenant_id == self._tenant_id,
            WorkOrderWorkflowTable.id == workflow_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def clear_defaults(self, plant_id: str | None, *, updated_by: str | None = None) -> int:
        """Unset ``is_default`` on every row of the scope.  Returns rows touched."""
        result = await self._session.execute(
            update(WorkOrderWorkflowTable)
            .where(
                WorkOrderWorkflowTable.tenant_id == self._tenant_id,
                self._scope(plant_id),
                WorkOrderWorkflowTable.is_default.is_(True),
            )
            .values(is_default=False, updated_at=datetime.now(UTC), updated_by=updated_by)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
        return int(result.rowcount or 0)

    async def create(
        self,
        *,
        plant_id: str | None,
        name: str,
        config: dict[str, Any],
        is_default: bool = False,
        created_by: str | None = None,
        created_at: datetime | None = None,
    ) -> WorkOrderWorkflowTable:
        if is_default:
            await self.clear_defaults(plant_id, updated_by=created_by)
        row = WorkOrderWorkflowTable(
            id=_new_id(),
            tenant_id=self._tenant_id,
            plant_id=plant_id,
            name=name,
            is_default=is_default,
            config=config,
            created_by=created_by,
            updated_by=created_by,
        )
        if created_at is not None:
            row.created_at = created_at
        self._session.add(row)
        await self._session.flush()
        return row

    async def update(
        self,
        workflow_id: str,
        *,
        name: str | None = None,
        config: dict[str, Any] | None = None,
        is_default: bool | None = None,
        updated_by: str | None = None,
    ) -> WorkOrderWorkflowTable | None:
        row = await self.get(workflow_id)
        if row is None:
            return None
        if is_default:
            await self.clear_defaults(row.plant_id, updated_by=updated_by)
        if name is not None:
            row.name = name
        if config is not None:
            row.config = config
        if is_default is not None:
            row.is_default = is_default
        row.updated_by = updated_by
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def delete(self, workflow_id: str) -> bool:
        result = await self._session.execute(
            delete(WorkOrderWorkflowTable).where(
                WorkOrderWorkflowTable.tenant_id == self._tenant_id,
                WorkOrderWorkflowTable.id == workflow_id,
            )
        )
        await self._session.flush()
        return bool(result.rowcount)


# ---------------------------------------------------------------------------
# AuditRepository
# ---------------------------------------------------------------------------


class AuditRepository:
    """Append-only tenant audit log with hash-chaining for tamper evidence.

    Each audit entry is linked to its predecessor via ``previous_hash``, forming
    a per-tenant tamper-evident chain.  ``entry_hash`` is a SHA-256 digest of
    the entry's content fields concatenated with the previous hash, so any
    modification to an existing row will break the chain for all subsequent
    entries.
    """

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    @staticmethod
    def _compute_hash(
        tenant_id: str,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        old_values: dict | None,
        new_values: dict | None,
        previous_hash: str | None,
        created_at: datetime,
    ) -> str:
        """SHA-256 over ``|``-joined content fields; ``None`` hashes as the empty string."""
        parts = [
            tenant_id,
            actor,
            action,
            entity_type,
            entity_id,
            json.dumps(old_values, sort_keys=True, default=str) if old_values else "",
            json.dumps(new_values, sort_keys=True, default=str) if new_values else "",
            previous_hash or "",
            created_at.isoformat(),
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    async def get_latest_hash(self) -> str | None:
        stmt = (
            select(AuditLogTable.entry_hash)
            .where(AuditLogTable.tenant_id == self._tenant_id)
            .order_by(AuditLogTable.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def log(
        self,
        *,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        old_values: dict | None = None,
        new_values: dict | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Write an audit entry chained to the tenant's latest entry.  Returns the entry ID."""
        entry_id = uuid.uuid4().hex
        now = datetime.now(UTC)

        # Serialise chain writers per tenant on PostgreSQL; SQLite is single-writer.
        bind = self._session.get_bind()
        dialect_name = getattr(getattr(bind, "dialect", None), "name", "")
        if "postgresql" in str(dialect_name):
            lock_id = int(hashlib.sha256(f"audit_chain_{self._tenant_id}".encode()).hexdigest()[:8], 16) & 0x7FFFFFFF
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": lock_id},
            )

        previous_hash = await self.get_latest_hash()
        entry_hash = self._compute_hash(
            tenant_id=self._tenant_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            previous_hash=previous_hash,
            created_at=now,
        )

        row = AuditLogTable(
            id=entry_id,
            tenant_id=self._tenant_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Audit: tenant=%s actor=%s action=%s entity=%s/%s",
            self._tenant_id,
            actor,
            action,
            entity_type,
            entity_id,
        )
        return entry_id

    async def query(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 25,
        offset: int = 0,
    ) -> list[AuditLogTable]:
        """Filtered entries, most recent first."""
        stmt = select(AuditLogTable).where(AuditLogTable.tenant_id == self._tenant_id)
        if entity_type is not None:
            stmt = stmt.where(AuditLogTable.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLogTable.entity_id == entity_id)
        if since is not None:
            stmt = stmt.where(AuditLogTable.created_at >= since)
        if until is not None:
            stmt = stmt.where(AuditLogTable.created_at <= until)

        stmt = stmt.order_by(AuditLogTable.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def verify_chain(self, *, limit: int = 1000) -> tuple[bool, int]:
        """Recompute hashes oldest-first.  Returns ``(is_valid, entries_checked)``."""
        stmt = (
            select(AuditLogTable)
            .where(AuditLogTable.tenant_id == self._tenant_id)
            .order_by(AuditLogTable.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        entries = list(result.scalars().all())

        checked = 0
        previous_hash: str | None = None
        for entry in entries:
            if entry.previous_hash != previous_hash:
                logger.warning("Audit chain break at entry %s", entry.id)
                return (False, checked)

            expected_hash = self._compute_hash(
                tenant_id=entry.tenant_id,
                actor=entry.actor,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                old_values=entry.old_values,
                new_values=entry.new_values,
                previous_hash=entry.previous_hash,
                created_at=entry.created_at,
            )
            if entry.entry_hash != expected_hash:
                logger.warning("Audit hash mismatch at entry %s", entry.id)
                return (False, checked)

            previous_hash = entry.entry_hash
            checked += 1

        return (True, checked)


# ---------------------------------------------------------------------------
# SuperadminAuditRepository
# ---------------------------------------------------------------------------

_MAX_SUPERADMIN_AUDIT_PAGE = 200


class SuperadminAuditRepository:
    """Platform-operator audit trail.  Cross-tenant by nature."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log(
        self,
        *,
        actor_user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        affected_tenant_id: str | None = None,
        metadata: dict | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        entry_id = uuid.uuid4().hex
        self._session.add(
            SuperadminAuditLogTable(
                id=entry_id,
                actor_user_id=actor_user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                affected_tenant_id=affected_tenant_id,
                metadata_json=metadata,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=datetime.now(UTC),
            )
        )
        await self._session.flush()
        return entry_id

    async def list_entries(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[SuperadminAuditLogTable]:
        """Entries within the optional time window, newest first.

        ``limit`` is clamped to ``1..200`` and ``offset`` to ``>= 0``.
        """
        limit = min(max(int(limit), 1), _MAX_SUPERADMIN_AUDIT_PAGE)
        offset = max(int(offset), 0)

        stmt = select(SuperadminAuditLogTable)
        if since is not None:
            stmt = stmt.where(SuperadminAuditLogTable.created_at >= since)
        if until is not None:
            stmt = stmt.where(SuperadminAuditLogTable.created_at <= until)
        stmt = stmt.order_by(SuperadminAuditLogTable.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def purge_older_than(self, days: int, *, now: datetime | None = None) -> int:
        """Delete entries older than *days*.  Returns the number removed."""
        cutoff = (now or datetime.now(UTC)) - timedelta(days=days)
        result = await self._session.execute(
            delete(SuperadminAuditLogTable).where(SuperadminAuditLogTable.created_at < cutoff)
        )
        await self._session.flush()
        deleted = int(result.rowcount or 0)
        logger.info("Purged %d superadmin audit entries older than %d day(s)", deleted, days)
        return deleted
