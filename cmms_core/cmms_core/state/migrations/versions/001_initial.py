"""Initial schema for the CMMS state store.

Creates tenants, users, plants, user_plants, work_orders, tickets,
sla_rules, work_order_workflows, audit_logs and superadmin_audit_logs.
RBAC tables ship separately in revision 002.

Revision ID: 001
Revises: None
Create Date: 2026-01-12 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _ts(name: str, *, nullable: bool = True) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # ------------------------------------------------------------------
    # tenants
    # ------------------------------------------------------------------
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("is_read_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        _ts("deleted_at"),
        sa.UniqueConstraint("slug", name="uq_tenants_slug"),
    )
    op.create_index("ix_tenants_created", "tenants", ["created_at"])

    # ------------------------------------------------------------------
    # users / plants / user_plants
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(256), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("role", sa.String(64), nullable=False, server_default="tecnico"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        _ts("last_login_at"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_index("ix_users_tenant", "users", ["tenant_id"])

    op.create_table(
        "plants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        _ts("deleted_at"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_plants_tenant_code"),
    )
    op.create_index("ix_plants_tenant", "plants", ["tenant_id"])

    op.create_table(
        "user_plants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plant_id", sa.String(36), sa.ForeignKey("plants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(64), nullable=True),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("user_id", "plant_id", name="uq_user_plants_user_plant"),
    )

    # ------------------------------------------------------------------
    # work_orders / tickets
    # ------------------------------------------------------------------
    op.create_table(
        "work_orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("plant_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="aberta"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="media"),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("assigned_to", sa.String(36), nullable=True),
        _ts("sla_deadline"),
        sa.Column("sla_paused_ms", sa.BigInteger(), nullable=False, server_default="0"),
        _ts("sla_pause_started_at"),
        sa.Column("sla_exclude_pause", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("pause_reason", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        _ts("analysis_started_at"),
        _ts("started_at"),
        _ts("paused_at"),
        _ts("completed_at"),
        _ts("closed_at"),
        _ts("cancelled_at"),
    )
    op.create_index("ix_work_orders_tenant_plant", "work_orders", ["tenant_id", "plant_id"])
    op.create_index("ix_work_orders_tenant_status", "work_orders", ["tenant_id", "status"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("plant_id", sa.String(36), nullable=True),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="aberto"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="media"),
        sa.Column("created_by", sa.String(36), nullable=True),
        _ts("sla_response_deadline"),
        _ts("sla_resolution_deadline"),
        _ts("first_response_at"),
        _ts("resolved_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_tickets_tenant_plant", "tickets", ["tenant_id", "plant_id"])

    # ------------------------------------------------------------------
    # sla_rules
    # ------------------------------------------------------------------
    op.create_table(
        "sla_rules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False, server_default="work_order"),
        sa.Column("priority", sa.String(16), nullable=False),
        sa.Column("response_time_hours", sa.Integer(), nullable=False),
        sa.Column("resolution_time_hours", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint(
            "tenant_id",
            "entity_type",
            "priority",
            name="uq_sla_rules_tenant_entity_priority",
        ),
    )
    op.create_index("ix_sla_rules_tenant", "sla_rules", ["tenant_id"])

    # ------------------------------------------------------------------
    # work_order_workflows
    # ------------------------------------------------------------------
    op.create_table(
        "work_order_workflows",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("plant_id", sa.String(36), nullable=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("config", _JSON, nullable=False),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("updated_by", sa.String(36), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_work_order_workflows_scope", "work_order_workflows", ["tenant_id", "plant_id"])

    # ------------------------------------------------------------------
    # audit_logs / superadmin_audit_logs
    # ------------------------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("actor", sa.String(256), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=False),
        sa.Column("entity_id", sa.String(512), nullable=False),
        sa.Column("old_values", _JSON, nullable=True),
        sa.Column("new_values", _JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_audit_logs_tenant_created", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["tenant_id", "entity_type", "entity_id"])

    op.create_table(
        "superadmin_audit_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("actor_user_id", sa.String(256), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=False),
        sa.Column("entity_id", sa.String(512), nullable=False),
        sa.Column("affected_tenant_id", sa.String(36), nullable=True),
        sa.Column("metadata_json", _JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_superadmin_audit_created", "superadmin_audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("superadmin_audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("work_order_workflows")
    op.drop_table("sla_rules")
    op.drop_table("tickets")
    op.drop_table("work_orders")
    op.drop_table("user_plants")
    op.drop_table("plants")
    op.drop_table("users")
    op.drop_table("tenants")
