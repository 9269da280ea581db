"""SQLAlchemy 2.0 ORM table definitions for the CMMS state store.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style
introduced in SQLAlchemy 2.0.  The ``Base`` declarative base is exported for
use by Alembic migrations and the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: uses JSONB on PostgreSQL for GIN indexing and
# query operators, falls back to plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite stores timestamps without an offset; naive values read back are
    tagged as UTC so SLA arithmetic never mixes naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all CMMS tables."""


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """Customer organisations.  Soft-deleted only (``deleted_at``)."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    is_read_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=None)

    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenants_slug"),
        Index("ix_tenants_created", "created_at"),
    )


# ---------------------------------------------------------------------------
# Users and plants
# ---------------------------------------------------------------------------


class UserTable(Base):
    """Platform user accounts.

    Users belong to exactly one tenant.  ``role`` is a free-form string that
    is normalised at read time.  Passwords are stored as bcrypt hashes.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="tecnico")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        Index("ix_users_tenant", "tenant_id"),
    )


class PlantTable(Base):
    """Physical sites within a tenant; the scoping unit for role overrides."""

    __tablename__ = "plants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=None)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_plants_tenant_code"),
        Index("ix_plants_tenant", "tenant_id"),
    )


class UserPlantTable(Base):
    """User membership of a plant, with an optional plant-scoped role override."""

    __tablename__ = "user_plants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plant_id: Mapped[str] = mapped_column(String(36), ForeignKey("plants.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "plant_id", name="uq_user_plants_user_plant"),)


# ---------------------------------------------------------------------------
# RBAC
# ---------------------------------------------------------------------------


class RbacPermissionTable(Base):
    """Global catalog of permission keys that can be granted to roles."""

    __tablename__ = "rbac_permissions"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    label: Mapped[str] = mapped_column(String(256), nullable=False)
    group_name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class RolePermissionTable(Base):
    """Per-tenant grant of a permission to a role key."""

    __tablename__ = "rbac_role_permissions"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    role_key: Mapped[str] = mapped_column(String(64), nullable=False)
    permission_key: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("tenant_id", "role_key", "permission_key"),
        Index("ix_rbac_role_permissions_tenant_role", "tenant_id", "role_key"),
    )


# ---------------------------------------------------------------------------
# Work orders and tickets
# ---------------------------------------------------------------------------


class WorkOrderTable(Base):
    """Maintenance work orders with SLA and pause accounting columns.

    ``sla_pause_started_at`` is non-null exactly while the order is paused;
    ``sla_paused_ms`` accumulates completed pause intervals.
    """

    __tablename__ = "work_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    plant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="aberta")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="media")
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True)
    sla_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sla_paused_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    sla_pause_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sla_exclude_pause: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)
    analysis_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_work_orders_tenant_plant", "tenant_id", "plant_id"),
        Index("ix_work_orders_tenant_status", "tenant_id", "status"),
    )


class TicketTable(Base):
    """Support/maintenance requests with response and resolution SLAs."""

    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    plant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="aberto")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="media")
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    sla_response_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sla_resolution_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    first_response_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_tickets_tenant_plant", "tenant_id", "plant_id"),)


# ---------------------------------------------------------------------------
# SLA rules
# ---------------------------------------------------------------------------


class SlaRuleTable(Base):
    """Per-tenant SLA hour overrides keyed by entity type and priority."""

    __tablename__ = "sla_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, default="work_order")
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    response_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "entity_type", "priority", name="uq_sla_rules_tenant_entity_priority"),
        Index("ix_sla_rules_tenant", "tenant_id"),
    )


# ---------------------------------------------------------------------------
# Work-order workflows
# ---------------------------------------------------------------------------


class WorkOrderWorkflowTable(Base):
    """Configurable transition rule sets, scoped to a plant or tenant-wide.

    ``plant_id`` is ``NULL`` for tenant-wide workflows.  At most one row per
    (tenant_id, plant_id) scope carries ``is_default``; the repository
    enforces this by clearing siblings before writing a new default.
    """

    __tablename__ = "work_order_workflows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    plant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    config: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_work_order_workflows_scope", "tenant_id", "plant_id"),)


# ---------------------------------------------------------------------------
# Audit logs
# ---------------------------------------------------------------------------


class AuditLogTable(Base):
    """Append-only tenant audit log with tamper-evidence via hash chaining.

    Each entry records a privileged mutation with before/after snapshots.
    ``entry_hash`` is a SHA-256 digest of the entry's content fields and
    ``previous_hash`` links to the preceding entry of the same tenant.
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(512), nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_tenant_created", "tenant_id", "created_at"),
        Index("ix_audit_logs_entity", "tenant_id", "entity_type", "entity_id"),
    )


class SuperadminAuditLogTable(Base):
    """Append-only record of platform-operator actions across tenants."""

    __tablename__ = "superadmin_audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    actor_user_id: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(512), nullable=False)
    affected_tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_superadmin_audit_created", "created_at"),)
