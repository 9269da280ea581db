"""Tests for the platform-operator endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cmms_core.state.database import session_scope
from cmms_core.state.repository import TenantRepository
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture()
def root(auth_headers) -> dict[str, str]:
    return auth_headers("root", "superadmin", None)


class TestAccess:
    @pytest.mark.asyncio
    async def test_tenant_admin_rejected(self, client: AsyncClient, auth_headers, ids) -> None:
        resp = await client.get("/api/v1/superadmin/tenants", headers=auth_headers(ids.admin, "admin_empresa"))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Insufficient role"


class TestTenants:
    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient, root) -> None:
        resp = await client.get("/api/v1/superadmin/tenants", headers=root)
        assert resp.status_code == 200
        assert sorted(t["slug"] for t in resp.json()) == ["acme", "frozen", "globex"]

    @pytest.mark.asyncio
    async def test_update_invalidates_resolver_cache(self, app: FastAPI, client: AsyncClient, root, ids) -> None:
        # Any superadmin request without tenant headers warms the default-tenant cache.
        await client.get("/api/v1/superadmin/tenants", headers=root)
        assert app.state.tenant_resolver.cache.get() is not None

        resp = await client.patch(
            f"/api/v1/superadmin/tenants/{ids.tenant_a}",
            json={"is_read_only": True},
            headers=root,
        )
        assert resp.status_code == 200
        assert resp.json()["is_read_only"] is True
        assert app.state.tenant_resolver.cache.get() is None

    @pytest.mark.asyncio
    async def test_update_commits_before_invalidating(
        self, app: FastAPI, client: AsyncClient, root, ids, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls: list[str] = []
        commit = AsyncSession.commit

        async def recording_commit(session: AsyncSession) -> None:
            calls.append("commit")
            await commit(session)

        cache = app.state.tenant_resolver.cache
        invalidate = cache.invalidate

        def recording_invalidate() -> None:
            calls.append("invalidate")
            invalidate()

        update_flags = TenantRepository.update_flags

        async def recording_update(repo: TenantRepository, *args, **kwargs):
            calls.append("update")
            return await update_flags(repo, *args, **kwargs)

        monkeypatch.setattr(AsyncSession, "commit", recording_commit)
        monkeypatch.setattr(TenantRepository, "update_flags", recording_update)
        monkeypatch.setattr(cache, "invalidate", recording_invalidate)

        resp = await client.patch(
            f"/api/v1/superadmin/tenants/{ids.tenant_b}",
            json={"is_active": False},
            headers=root,
        )
        assert resp.status_code == 200
        after_update = calls[calls.index("update") :]
        assert after_update.index("commit") < after_update.index("invalidate")

    @pytest.mark.asyncio
    async def test_update_applies_read_only_immediately(self, client: AsyncClient, auth_headers, root, ids) -> None:
        await client.patch(f"/api/v1/superadmin/tenants/{ids.tenant_b}", json={"is_read_only": True}, headers=root)
        resp = await client.post(
            f"/api/v1/plants/{ids.plant_1}/work-orders",
            json={"title": "Blocked"},
            headers=auth_headers("root", "superadmin", None, **{"x-tenant-id": ids.tenant_b}),
        )
        assert resp.status_code == 423

    @pytest.mark.asyncio
    async def test_update_unknown_tenant(self, client: AsyncClient, root) -> None:
        resp = await client.patch(
            "/api/v1/superadmin/tenants/99999999-0000-4000-8000-000000000000",
            json={"name": "Nobody"},
            headers=root,
        )
        assert resp.status_code == 404


class TestAudit:
    @pytest.mark.asyncio
    async def test_update_is_audited_with_client_details(self, client: AsyncClient, root, ids) -> None:
        headers = {**root, "X-Forwarded-For": "203.0.113.9, 10.1.1.1", "User-Agent": "ops-console/1.0"}
        await client.patch(f"/api/v1/superadmin/tenants/{ids.tenant_b}", json={"name": "Globex Corp"}, headers=headers)

        entries = (await client.get("/api/v1/superadmin/audit", headers=root)).json()
        assert len(entries) == 1
        entry = entries[0]
        assert entry["action"] == "TENANT_UPDATED"
        assert entry["actor_user_id"] == "root"
        assert entry["affected_tenant_id"] == ids.tenant_b
        assert entry["ip_address"] == "203.0.113.9"
        assert entry["user_agent"] == "ops-console/1.0"
        assert entry["metadata_json"]["before"]["name"] == "Globex"
        assert entry["metadata_json"]["after"]["name"] == "Globex Corp"

    @pytest.mark.asyncio
    async def test_time_window_and_clamped_limit(self, client: AsyncClient, root, ids) -> None:
        await client.patch(f"/api/v1/superadmin/tenants/{ids.tenant_b}", json={"name": "One"}, headers=root)
        await client.patch(f"/api/v1/superadmin/tenants/{ids.tenant_b}", json={"name": "Two"}, headers=root)

        future = (datetime.now(UTC) + timedelta(hours=1)).isoformat()
        past = (datetime.now(UTC) - timedelta(hours=1)).isoformat()
        assert (await client.get("/api/v1/superadmin/audit", params={"from": future}, headers=root)).json() == []
        assert len((await client.get("/api/v1/superadmin/audit", params={"to": future}, headers=root)).json()) == 2
        assert (await client.get("/api/v1/superadmin/audit", params={"to": past}, headers=root)).json() == []

        clamped = await client.get("/api/v1/superadmin/audit", params={"limit": 0}, headers=root)
        assert clamped.status_code == 200
        assert len(clamped.json()) == 1
        assert clamped.json()[0]["metadata_json"]["after"]["name"] == "Two"

    @pytest.mark.asyncio
    async def test_purge_disabled_for_non_positive_window(self, client: AsyncClient, root) -> None:
        resp = await client.post("/api/v1/superadmin/audit/purge", json={"days": 0}, headers=root)
        assert resp.status_code == 200
        assert resp.json() == {"days": 0, "deleted": 0, "enabled": False}

    @pytest.mark.asyncio
    async def test_purge_uses_retention_default(self, client: AsyncClient, root, test_settings) -> None:
        resp = await client.post("/api/v1/superadmin/audit/purge", headers=root)
        assert resp.status_code == 200
        body = resp.json()
        assert body["enabled"] is True
        assert body["days"] == test_settings.audit_retention_days
        assert body["deleted"] == 0

        entries = (await client.get("/api/v1/superadmin/audit", headers=root)).json()
        assert entries[0]["action"] == "AUDIT_PURGED"


class TestAuditChainVerification:
    @pytest.mark.asyncio
    async def test_valid_then_tampered(self, client: AsyncClient, root, ids, session_factory) -> None:
        tenant_root = {**root, "x-tenant-id": ids.tenant_a}
        for title in ("Pump seal", "Belt"):
            resp = await client.post(
                f"/api/v1/plants/{ids.plant_1}/work-orders",
                json={"title": title},
                headers=tenant_root,
            )
            assert resp.status_code == 201

        url = f"/api/v1/superadmin/tenants/{ids.tenant_a}/audit/verify"
        resp = await client.get(url, headers=root)
        assert resp.status_code == 200
        assert resp.json() == {"tenant_id": ids.tenant_a, "is_valid": True, "entries_checked": 2}

        async with session_scope(session_factory) as session:
            await session.execute(text("UPDATE audit_logs SET actor = 'mallory'"))

        body = (await client.get(url, headers=root)).json()
        assert body["is_valid"] is False
        assert body["entries_checked"] == 0

    @pytest.mark.asyncio
    async def test_empty_chain_is_valid(self, client: AsyncClient, root, ids) -> None:
        resp = await client.get(f"/api/v1/superadmin/tenants/{ids.tenant_b}/audit/verify", headers=root)
        assert resp.json() == {"tenant_id": ids.tenant_b, "is_valid": True, "entries_checked": 0}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client: AsyncClient, root) -> None:
        resp = await client.get(
            "/api/v1/superadmin/tenants/99999999-0000-4000-8000-000000000000/audit/verify",
            headers=root,
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_tenant_admin_rejected(self, client: AsyncClient, auth_headers, ids) -> None:
        resp = await client.get(
            f"/api/v1/superadmin/tenants/{ids.tenant_a}/audit/verify",
            headers=auth_headers(ids.admin, "admin_empresa"),
        )
        assert resp.status_code == 403


class TestAuditStoreFailure:
    @pytest.mark.asyncio
    async def test_tenant_update_survives_audit_failure(self, client: AsyncClient, root, ids, session_factory) -> None:
        async with session_scope(session_factory) as session:
            await session.execute(
                text(
                    "CREATE TRIGGER superadmin_audit_down BEFORE INSERT ON superadmin_audit_logs "
                    "BEGIN SELECT RAISE(ABORT, 'audit store down'); END"
                )
            )

        resp = await client.patch(
            f"/api/v1/superadmin/tenants/{ids.tenant_b}",
            json={"name": "Globex Corp"},
            headers=root,
        )
        assert resp.status_code == 200

        tenants = {t["slug"]: t for t in (await client.get("/api/v1/superadmin/tenants", headers=root)).json()}
        assert tenants["globex"]["name"] == "Globex Corp"
        assert (await client.get("/api/v1/superadmin/audit", headers=root)).json() == []
