"""Permission-based RBAC.

Adds the global ``rbac_permissions`` catalog and the per-tenant
``rbac_role_permissions`` grant table.  Deployments that have not applied
this revision run with the legacy role fallback.

Revision ID: 002
Revises: 001
Create Date: 2026-02-03 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_CATALOG = [
    ("setup:run", "Run initial setup", "admin"),
    ("admin:rbac", "Manage roles and permissions", "admin"),
    ("admin:users", "Manage users", "admin"),
    ("admin:plants", "Manage plants and workflows", "admin"),
    ("workorders:read", "View work orders", "workorders"),
    ("workorders:write", "Create and update work orders", "workorders"),
    ("tickets:read", "View tickets", "tickets"),
    ("tickets:write", "Create and update tickets", "tickets"),
]


def upgrade() -> None:
    permissions = op.create_table(
        "rbac_permissions",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("label", sa.String(256), nullable=False),
        sa.Column("group_name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.bulk_insert(
        permissions,
        [{"key": key, "label": label, "group_name": group, "description": None} for key, label, group in _CATALOG],
    )

    op.create_table(
        "rbac_role_permissions",
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("role_key", sa.String(64), nullable=False),
        sa.Column("permission_key", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("tenant_id", "role_key", "permission_key"),
    )
    op.create_index(
        "ix_rbac_role_permissions_tenant_role",
        "rbac_role_permissions",
        ["tenant_id", "role_key"],
    )


def downgrade() -> None:
    op.drop_table("rbac_role_permissions")
    op.drop_table("rbac_permissions")
