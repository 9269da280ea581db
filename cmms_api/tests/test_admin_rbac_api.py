"""Tests for RBAC administration and the break-glass path."""

from __future__ import annotations

import pytest
from cmms_core.state.repository import AuditRepository
from httpx import AsyncClient


class TestBreakGlass:
    @pytest.mark.asyncio
    async def test_tenant_admin_bootstraps_rbac(self, client: AsyncClient, auth_headers, ids) -> None:
        admin = auth_headers(ids.admin, "admin_empresa")

        catalog = await client.get("/api/v1/admin/permissions", headers=admin)
        assert catalog.status_code == 200
        assert len(catalog.json()) == 8

        resp = await client.put(
            "/api/v1/admin/roles/tecnico/permissions",
            json={"permissions": ["workorders:write", "workorders:read"]},
            headers=admin,
        )
        assert resp.status_code == 200
        assert resp.json() == {"role_key": "tecnico", "permissions": ["workorders:read", "workorders:write"]}

        # The tenant now has grants, so break-glass no longer applies.
        again = await client.get("/api/v1/admin/permissions", headers=admin)
        assert again.status_code == 403
        assert again.json()["permission"] == "admin:rbac"

    @pytest.mark.asyncio
    async def test_admin_keeps_access_with_explicit_grant(self, client: AsyncClient, auth_headers, ids) -> None:
        admin = auth_headers(ids.admin, "Admin")
        resp = await client.put(
            "/api/v1/admin/roles/admin_empresa/permissions",
            json={"permissions": ["admin:rbac", "admin:plants"]},
            headers=admin,
        )
        assert resp.status_code == 200
        assert (await client.get("/api/v1/admin/permissions", headers=admin)).status_code == 200

    @pytest.mark.asyncio
    async def test_other_roles_denied(self, client: AsyncClient, auth_headers, ids) -> None:
        resp = await client.get("/api/v1/admin/permissions", headers=auth_headers(ids.tech, "tecnico"))
        assert resp.status_code == 403
        assert resp.json() == {
            "detail": "Insufficient permission",
            "code": "FORBIDDEN",
            "permission": "admin:rbac",
            "request_id": resp.headers["X-Request-ID"],
        }


class TestRolePermissions:
    @pytest.mark.asyncio
    async def test_get_role_permissions(self, client: AsyncClient, auth_headers, grant, ids) -> None:
        await grant("gestor_manutencao", ["tickets:read", "workorders:read"])
        await grant("admin_empresa", ["admin:rbac"])
        resp = await client.get(
            "/api/v1/admin/roles/Gestor/permissions",
            headers=auth_headers(ids.admin, "admin_empresa"),
        )
        assert resp.status_code == 200
        assert resp.json() == {"role_key": "gestor_manutencao", "permissions": ["tickets:read", "workorders:read"]}

    @pytest.mark.asyncio
    async def test_unknown_permission_rejected(self, client: AsyncClient, auth_headers, ids) -> None:
        resp = await client.put(
            "/api/v1/admin/roles/tecnico/permissions",
            json={"permissions": ["workorders:read", "rockets:launch"]},
            headers=auth_headers(ids.admin, "admin_empresa"),
        )
        assert resp.status_code == 400
        assert "rockets:launch" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_superadmin_role_not_configurable(self, client: AsyncClient, auth_headers, ids) -> None:
        resp = await client.put(
            "/api/v1/admin/roles/superadmin/permissions",
            json={"permissions": ["admin:rbac"]},
            headers=auth_headers(ids.admin, "admin_empresa"),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_replacement_is_audited(self, client: AsyncClient, auth_headers, session_factory, ids) -> None:
        admin = auth_headers(ids.admin, "admin_empresa", **{"X-Forwarded-For": "198.51.100.4, 10.0.0.2"})
        await client.put(
            "/api/v1/admin/roles/tecnico/permissions",
            json={"permissions": ["tickets:read"]},
            headers=admin,
        )

        async with session_factory() as session:
            entries = await AuditRepository(session, tenant_id=ids.tenant_a).query(entity_type="role")
        assert len(entries) == 1
        assert entries[0].action == "RBAC_ROLE_PERMISSIONS_REPLACED"
        assert entries[0].old_values == {"permissions": []}
        assert entries[0].new_values == {"permissions": ["tickets:read"]}
        assert entries[0].ip_address == "198.51.100.4"
        assert entries[0].actor == ids.admin
