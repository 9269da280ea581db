"""Tests for SLA rule administration and its effect on new work orders."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient


@pytest.fixture()
def admin(auth_headers, ids) -> dict[str, str]:
    # Break-glass grants admin:rbac while the tenant has no grants.
    return auth_headers(ids.admin, "admin_empresa")


class TestSlaRules:
    @pytest.mark.asyncio
    async def test_upsert_and_list(self, client: AsyncClient, admin) -> None:
        resp = await client.put(
            "/api/v1/admin/sla-rules",
            json={"priority": "ALTA", "response_time_hours": 2.9, "resolution_time_hours": 10.7},
            headers=admin,
        )
        assert resp.status_code == 200
        rule = resp.json()
        assert rule["entity_type"] == "work_order"
        assert rule["priority"] == "alta"
        assert rule["response_time_hours"] == 2
        assert rule["resolution_time_hours"] == 10

        listed = await client.get("/api/v1/admin/sla-rules", headers=admin)
        assert [r["id"] for r in listed.json()] == [rule["id"]]
        tickets = await client.get("/api/v1/admin/sla-rules", params={"entity_type": "ticket"}, headers=admin)
        assert tickets.json() == []

    @pytest.mark.asyncio
    async def test_upsert_replaces_existing(self, client: AsyncClient, admin) -> None:
        body = {"entity_type": "ticket", "priority": "media", "response_time_hours": 4, "resolution_time_hours": 24}
        first = (await client.put("/api/v1/admin/sla-rules", json=body, headers=admin)).json()
        body["resolution_time_hours"] = 36
        second = (await client.put("/api/v1/admin/sla-rules", json=body, headers=admin)).json()
        assert second["id"] == first["id"]
        assert second["resolution_time_hours"] == 36

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"priority": "urgent", "response_time_hours": 1, "resolution_time_hours": 2},
            {"entity_type": "asset", "priority": "alta", "response_time_hours": 1, "resolution_time_hours": 2},
            {"priority": "alta", "response_time_hours": 0.5, "resolution_time_hours": 2},
        ],
    )
    async def test_invalid_rules_rejected(self, client: AsyncClient, admin, body) -> None:
        resp = await client.put("/api/v1/admin/sla-rules", json=body, headers=admin)
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_non_positive_hours_fail_validation(self, client: AsyncClient, admin) -> None:
        resp = await client.put(
            "/api/v1/admin/sla-rules",
            json={"priority": "alta", "response_time_hours": 0, "resolution_time_hours": -1},
            headers=admin,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_deactivate(self, client: AsyncClient, admin) -> None:
        rule = (
            await client.put(
                "/api/v1/admin/sla-rules",
                json={"priority": "baixa", "response_time_hours": 8, "resolution_time_hours": 48},
                headers=admin,
            )
        ).json()
        resp = await client.delete(f"/api/v1/admin/sla-rules/{rule['id']}", headers=admin)
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        missing = await client.delete("/api/v1/admin/sla-rules/does-not-exist", headers=admin)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_rule_drives_work_order_deadline(self, client: AsyncClient, admin, auth_headers, ids) -> None:
        await client.put(
            "/api/v1/admin/sla-rules",
            json={"priority": "alta", "response_time_hours": 2, "resolution_time_hours": 10},
            headers=admin,
        )
        root = auth_headers("root", "superadmin", None, **{"x-tenant-id": ids.tenant_a})
        resp = await client.post(
            f"/api/v1/plants/{ids.plant_1}/work-orders",
            json={"title": "Conveyor stopped", "priority": "alta"},
            headers=root,
        )
        assert resp.status_code == 201
        body = resp.json()
        created = datetime.fromisoformat(body["created_at"])
        deadline = datetime.fromisoformat(body["sla"]["deadline"])
        assert deadline - created == timedelta(hours=10)
