"""Tests for tenant, user, SLA rule and work-order repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cmms_core.state.repository import (
    SlaRuleRepository,
    TenantRepository,
    TicketRepository,
    UserRepository,
    WorkOrderRepository,
)

TENANT_A = "11111111-1111-4111-8111-111111111111"
TENANT_B = "22222222-2222-4222-8222-222222222222"
PLANT_1 = "aaaaaaaa-0000-4000-8000-000000000001"


class TestTenantRepository:
    @pytest.mark.asyncio
    async def test_slug_is_lowercased(self, session) -> None:
        repo = TenantRepository(session)
        await repo.create(slug=" Acme ", name="Acme", tenant_id=TENANT_A)
        assert (await repo.get_by_slug("ACME")).id == TENANT_A

    @pytest.mark.asyncio
    async def test_earliest_skips_soft_deleted(self, session) -> None:
        repo = TenantRepository(session)
        t0 = datetime(2025, 1, 1, tzinfo=UTC)
        await repo.create(slug="old", name="Old", tenant_id=TENANT_A, created_at=t0)
        await repo.create(slug="new", name="New", tenant_id=TENANT_B, created_at=t0 + timedelta(days=1))
        assert (await repo.get_earliest()).id == TENANT_A

        assert await repo.soft_delete(TENANT_A) is True
        assert (await repo.get_earliest()).id == TENANT_B
        assert [row.id for row in await repo.list_all()] == [TENANT_B]
        assert len(await repo.list_all(include_deleted=True)) == 2

    @pytest.mark.asyncio
    async def test_update_flags(self, session) -> None:
        repo = TenantRepository(session)
        await repo.create(slug="acme", name="Acme", tenant_id=TENANT_A)
        row = await repo.update_flags(TENANT_A, is_read_only=True)
        assert row.is_read_only is True
        assert row.is_active is True
        assert row.name == "Acme"
        assert await repo.update_flags(TENANT_B, is_read_only=True) is None


class TestUserRepository:
    @pytest.mark.asyncio
    async def test_email_lookup_is_case_insensitive_and_tenant_scoped(self, session) -> None:
        await UserRepository(session, tenant_id=TENANT_A).create(
            email="Ana@Acme.test",
            display_name="Ana",
            password_hash="x",
            role="tecnico",
        )
        assert await UserRepository(session, tenant_id=TENANT_A).get_by_email(" ana@acme.TEST ") is not None
        assert await UserRepository(session, tenant_id=TENANT_B).get_by_email("ana@acme.test") is None


class TestSlaRuleRepository:
    @pytest.mark.asyncio
    async def test_upsert_updates_in_place(self, session) -> None:
        repo = SlaRuleRepository(session, tenant_id=TENANT_A)
        first = await repo.upsert(
            entity_type="work_order",
            priority="alta",
            response_time_hours=2,
            resolution_time_hours=10,
        )
        second = await repo.upsert(
            entity_type="work_order",
            priority="alta",
            response_time_hours=3,
            resolution_time_hours=12,
        )

        assert second.id == first.id
        assert second.resolution_time_hours == 12
        assert len(await repo.list_rules("work_order")) == 1

    @pytest.mark.asyncio
    async def test_upsert_reactivates(self, session) -> None:
        repo = SlaRuleRepository(session, tenant_id=TENANT_A)
        rule = await repo.upsert(
            entity_type="ticket",
            priority="baixa",
            response_time_hours=2,
            resolution_time_hours=10,
        )
        await repo.deactivate(rule.id)
        assert await repo.find_active("ticket", "baixa") is None

        await repo.upsert(
            entity_type="ticket",
            priority="baixa",
            response_time_hours=2,
            resolution_time_hours=10,
        )
        assert (await repo.find_active("ticket", "baixa")).id == rule.id

    @pytest.mark.asyncio
    async def test_deactivate_missing(self, session) -> None:
        assert await SlaRuleRepository(session, tenant_id=TENANT_A).deactivate("missing") is None


class TestWorkOrderRepository:
    @pytest.mark.asyncio
    async def test_get_is_scoped_to_tenant_and_plant(self, session) -> None:
        repo = WorkOrderRepository(session, tenant_id=TENANT_A)
        order = await repo.create(plant_id=PLANT_1, title="Pump leak", priority="alta")
        assert order.status == "aberta"
        assert order.sla_paused_ms == 0

        assert (await repo.get(PLANT_1, order.id)).id == order.id
        assert await repo.get("other-plant", order.id) is None
        assert await WorkOrderRepository(session, tenant_id=TENANT_B).get(PLANT_1, order.id) is None

    @pytest.mark.asyncio
    async def test_ticket_defaults(self, session) -> None:
        ticket = await TicketRepository(session, tenant_id=TENANT_A).create(title="Noise", priority="media")
        assert ticket.status == "aberto"
        assert (await TicketRepository(session, tenant_id=TENANT_A).get(ticket.id)).title == "Noise"
