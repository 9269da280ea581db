"""RBAC lookups backed by the state store.

Roles are free-form strings on the user row and on plant memberships;
:func:`normalize_role` folds spelling variants and legacy names onto the
canonical role keys used in ``rbac_role_permissions``.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from sqlalchemy.ext.asyncio import AsyncSession

from cmms_core.state.repository import (
    PermissionCatalogRepository,
    RolePermissionRepository,
    UserPlantRoleRepository,
)
from cmms_core.state.schema import SchemaState

logger = logging.getLogger(__name__)

_ROLE_ALIASES: dict[str, str] = {
    "admin": "admin_empresa",
    "adminempresa": "admin_empresa",
    "maintenance_manager": "gestor_manutencao",
    "planner": "gestor_manutencao",
    "gestor": "gestor_manutencao",
    "gestor_fabrica": "gestor_manutencao",
    "technician": "tecnico",
    "operator": "operador",
}

_SEPARATORS_RE = re.compile(r"[\s-]+")
_UNDERSCORES_RE = re.compile(r"_+")

# (key, label, group) for every permission the platform checks.
PERMISSION_CATALOG: tuple[tuple[str, str, str], ...] = (
    ("setup:run", "Run initial setup", "admin"),
    ("admin:rbac", "Manage roles and permissions", "admin"),
    ("admin:users", "Manage users", "admin"),
    ("admin:plants", "Manage plants and workflows", "admin"),
    ("workorders:read", "View work orders", "workorders"),
    ("workorders:write", "Create and update work orders", "workorders"),
    ("tickets:read", "View tickets", "tickets"),
    ("tickets:write", "Create and update tickets", "tickets"),
)


def normalize_role(raw: str | None) -> str:
    """Return the canonical role key for *raw*.

    Trims and lowercases, strips diacritics (``Técnico`` → ``tecnico``),
    turns runs of whitespace and hyphens into single underscores and maps
    legacy aliases.  ``None`` and blank input yield ``""``.

    >>> normalize_role("  Admin Empresa ")
    'admin_empresa'
    >>> normalize_role("planner")
    'gestor_manutencao'
    """
    value = (raw or "").strip().lower()
    if not value:
        return ""

    ascii_value = "".join(ch for ch in unicodedata.normalize("NFKD", value) if not unicodedata.combining(ch))
    compact = _SEPARATORS_RE.sub("_", ascii_value)
    compact = _UNDERSCORES_RE.sub("_", compact).strip("_")
    return _ROLE_ALIASES.get(compact, compact)


class RbacEngine:
    """Tenant-scoped permission lookups for a single session.

    Grant queries raise :class:`~cmms_core.errors.NotProvisionedError` when
    the RBAC tables have not been migrated.
    """

    def __init__(self, session: AsyncSession, schema: SchemaState | None = None) -> None:
        self._session = session
        self._schema = schema

    def _grants(self, tenant_id: str) -> RolePermissionRepository:
        return RolePermissionRepository(self._session, tenant_id=tenant_id, schema=self._schema)

    async def get_user_role_for_plant(self, user_id: str, plant_id: str) -> str | None:
        """Raw plant override role, or ``None`` when the user has none."""
        return await UserPlantRoleRepository(self._session).get_role(user_id, plant_id)

    async def role_has_permission(self, tenant_id: str, role_key: str, permission_key: str) -> bool:
        return await self._grants(tenant_id).has_permission(role_key, permission_key)

    async def tenant_has_any_permissions(self, tenant_id: str) -> bool:
        return await self._grants(tenant_id).has_any()

    async def permissions_for_role(self, tenant_id: str, role_key: str) -> list[str]:
        return await self._grants(tenant_id).list_for_role(normalize_role(role_key))

    async def replace_role_permissions(self, tenant_id: str, role_key: str, permission_keys: list[str]) -> list[str]:
        """Replace the grant set of a role.  Unknown keys are rejected by the caller."""
        stored = await self._grants(tenant_id).replace_for_role(normalize_role(role_key), permission_keys)
        logger.info(
            "RBAC grants replaced: tenant=%s role=%s count=%d",
            tenant_id,
            normalize_role(role_key),
            len(stored),
        )
        return stored

    async def catalog_keys(self) -> set[str]:
        rows = await PermissionCatalogRepository(self._session).list_all()
        return {row.key for row in rows}

    async def ensure_catalog(self) -> None:
        """Upsert every entry of :data:`PERMISSION_CATALOG`."""
        repo = PermissionCatalogRepository(self._session)
        for key, label, group in PERMISSION_CATALOG:
            await repo.ensure(key, label=label, group_name=group)
