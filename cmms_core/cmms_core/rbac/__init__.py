"""Permission-based RBAC: role normalisation, grant lookups and the guard."""

from cmms_core.rbac.engine import PERMISSION_CATALOG, RbacEngine, normalize_role
from cmms_core.rbac.guard import BREAK_GLASS_PERMISSIONS, PermissionGuard, Principal, Scope

__all__ = [
    "BREAK_GLASS_PERMISSIONS",
    "PERMISSION_CATALOG",
    "PermissionGuard",
    "Principal",
    "RbacEngine",
    "Scope",
    "normalize_role",
]
