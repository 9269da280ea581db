"""API router modules for the CMMS core service."""

from __future__ import annotations

from cmms_api.routers import (
    admin_rbac,
    auth,
    health,
    sla_rules,
    superadmin,
    tickets,
    work_orders,
    workflows,
)

__all__ = [
    "admin_rbac",
    "auth",
    "health",
    "sla_rules",
    "superadmin",
    "tickets",
    "work_orders",
    "workflows",
]
