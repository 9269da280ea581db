"""Tests for tenant resolution, the default-tenant cache and the fallback identity."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from cmms_core.config import FALLBACK_TENANT_ID, FALLBACK_TENANT_SLUG
from cmms_core.errors import InternalError, InvalidInputError, NotFoundError
from cmms_core.state.repository import TenantRepository
from cmms_core.tenancy.resolver import TenantCache, TenantInfo, TenantResolver, is_valid_tenant_id

TENANT_A = "11111111-1111-4111-8111-111111111111"
TENANT_B = "22222222-2222-4222-8222-222222222222"


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Identifier validation
# ---------------------------------------------------------------------------


class TestIsValidTenantId:
    @pytest.mark.parametrize(
        "value",
        [TENANT_A, TENANT_A.upper(), FALLBACK_TENANT_ID, "00000000-0000-0000-0000-000000000000"],
    )
    def test_accepts_uuid_shaped_ids(self, value: str) -> None:
        assert is_valid_tenant_id(value)

    @pytest.mark.parametrize("value", ["", "acme", "1234", TENANT_A + "0", TENANT_A.replace("-", "")])
    def test_rejects_everything_else(self, value: str) -> None:
        assert not is_valid_tenant_id(value)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestTenantCache:
    def test_entry_expires_after_ttl(self) -> None:
        clock = _FakeClock()
        cache = TenantCache(ttl_seconds=60.0, clock=clock)
        info = TenantInfo(id=TENANT_A, slug="acme")
        cache.set(info)

        clock.now += 59.9
        assert cache.get() == info
        clock.now += 0.1
        assert cache.get() is None

    def test_invalidate_clears_entry(self) -> None:
        cache = TenantCache()
        cache.set(TenantInfo(id=TENANT_A, slug="acme"))
        cache.invalidate()
        assert cache.get() is None


# ---------------------------------------------------------------------------
# Explicit resolution
# ---------------------------------------------------------------------------


class TestExplicitResolution:
    @pytest.mark.asyncio
    async def test_resolves_by_id(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        info = await resolver.resolve(tenant_id=TENANT_B)
        assert info.id == TENANT_B
        assert info.slug == "globex"
        assert info.is_fallback is False

    @pytest.mark.asyncio
    async def test_id_is_case_insensitive(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        info = await resolver.resolve(tenant_id=f"  {TENANT_A.upper()} ")
        assert info.id == TENANT_A

    @pytest.mark.asyncio
    async def test_id_wins_over_slug(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        info = await resolver.resolve(tenant_id=TENANT_A, tenant_slug="globex")
        assert info.slug == "acme"

    @pytest.mark.asyncio
    async def test_resolves_by_slug(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        info = await resolver.resolve(tenant_slug="GLOBEX")
        assert info.id == TENANT_B

    @pytest.mark.asyncio
    async def test_malformed_id_is_invalid_input(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        with pytest.raises(InvalidInputError, match="Invalid x-tenant-id"):
            await resolver.resolve(tenant_id="not-a-uuid")

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        with pytest.raises(NotFoundError):
            await resolver.resolve(tenant_id="33333333-3333-4333-8333-333333333333")

    @pytest.mark.asyncio
    async def test_unknown_slug_is_not_found(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        with pytest.raises(NotFoundError):
            await resolver.resolve(tenant_slug="initech")

    @pytest.mark.asyncio
    async def test_soft_deleted_tenant_is_not_found(self, seeded, session_factory, core_settings) -> None:
        await TenantRepository(seeded).soft_delete(TENANT_B)
        await seeded.commit()
        resolver = TenantResolver(session_factory, core_settings)
        with pytest.raises(NotFoundError):
            await resolver.resolve(tenant_id=TENANT_B)

    @pytest.mark.asyncio
    async def test_store_failure_is_internal(self, core_settings) -> None:
        broken = MagicMock(side_effect=RuntimeError("connection refused"))
        resolver = TenantResolver(broken, core_settings)
        with pytest.raises(InternalError, match="Failed to resolve tenant"):
            await resolver.resolve(tenant_id=TENANT_A)


# ---------------------------------------------------------------------------
# Implicit default
# ---------------------------------------------------------------------------


class TestDefaultResolution:
    @pytest.mark.asyncio
    async def test_prefers_configured_slug(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings.model_copy(update={"default_tenant_slug": "globex"}))
        info = await resolver.resolve()
        assert info.id == TENANT_B

    @pytest.mark.asyncio
    async def test_falls_back_to_earliest_tenant(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings.model_copy(update={"default_tenant_slug": "nope"}))
        info = await resolver.resolve()
        assert info.id == TENANT_A

    @pytest.mark.asyncio
    async def test_empty_store_yields_fallback(self, session, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        info = await resolver.resolve()
        assert info.id == FALLBACK_TENANT_ID
        assert info.slug == FALLBACK_TENANT_SLUG
        assert info.is_fallback is True

    @pytest.mark.asyncio
    async def test_result_is_cached(self, seeded, session_factory, core_settings) -> None:
        resolver = TenantResolver(session_factory, core_settings)
        first = await resolver.resolve()

        await TenantRepository(seeded).soft_delete(TENANT_A)
        await seeded.commit()

        assert await resolver.resolve() == first
        resolver.cache.invalidate()
        assert (await resolver.resolve()).id == TENANT_B

    @pytest.mark.asyncio
    async def test_store_failure_yields_uncached_fallback(self, seeded, session_factory, core_settings) -> None:
        calls = {"n": 0}

        def flaky_factory():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("store down")
            return session_factory()

        resolver = TenantResolver(flaky_factory, core_settings)
        info = await resolver.resolve()
        assert info.is_fallback is True
        assert resolver.cache.get() is None

        recovered = await resolver.resolve()
        assert recovered.id == TENANT_A
