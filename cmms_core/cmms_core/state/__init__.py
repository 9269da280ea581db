"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from cmms_core.state.database import (
    create_all_tables,
    forget_engine,
    get_engine,
    get_session_factory,
    session_scope,
)
from cmms_core.state.repository import (
    AuditRepository,
    PermissionCatalogRepository,
    PlantRepository,
    RolePermissionRepository,
    SlaRuleRepository,
    SuperadminAuditRepository,
    TenantRepository,
    TicketRepository,
    UserPlantRoleRepository,
    UserRepository,
    WorkflowRepository,
    WorkOrderRepository,
)
from cmms_core.state.schema import SchemaState

__all__ = [
    "AuditRepository",
    "PermissionCatalogRepository",
    "PlantRepository",
    "RolePermissionRepository",
    "SchemaState",
    "SlaRuleRepository",
    "SuperadminAuditRepository",
    "TenantRepository",
    "TicketRepository",
    "UserPlantRoleRepository",
    "UserRepository",
    "WorkOrderRepository",
    "WorkflowRepository",
    "create_all_tables",
    "forget_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
