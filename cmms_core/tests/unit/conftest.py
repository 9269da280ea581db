"""Shared fixtures for cmms_core unit tests.

Every test gets its own in-memory SQLite database (aiosqlite, shared
connection) with the full schema created from the ORM metadata.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from cmms_core.config import CoreSettings
from cmms_core.state.database import create_all_tables
from cmms_core.state.repository import PlantRepository, TenantRepository, UserRepository
from cmms_core.state.sqlite_adapter import get_local_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TENANT_A = "11111111-1111-4111-8111-111111111111"
TENANT_B = "22222222-2222-4222-8222-222222222222"
PLANT_1 = "aaaaaaaa-0000-4000-8000-000000000001"
PLANT_2 = "aaaaaaaa-0000-4000-8000-000000000002"
USER_ADMIN = "bbbbbbbb-0000-4000-8000-000000000001"
USER_TECH = "bbbbbbbb-0000-4000-8000-000000000002"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    eng = get_local_engine(":memory:")
    await create_all_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as sess:
        yield sess


@pytest.fixture
def core_settings() -> CoreSettings:
    return CoreSettings(
        database_url="sqlite+aiosqlite://",
        default_tenant_slug="acme",
        tenant_cache_ttl_seconds=60.0,
        store_timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def seeded(session: AsyncSession) -> AsyncSession:
    """Two tenants, two plants in tenant A, an admin and a technician."""
    tenants = TenantRepository(session)
    await tenants.create(slug="acme", name="Acme", tenant_id=TENANT_A)
    await tenants.create(slug="globex", name="Globex", tenant_id=TENANT_B)

    plants = PlantRepository(session, tenant_id=TENANT_A)
    await plants.create(name="Porto", code="POR", plant_id=PLANT_1)
    await plants.create(name="Braga", code="BRG", plant_id=PLANT_2)

    users = UserRepository(session, tenant_id=TENANT_A)
    await users.create(
        email="admin@acme.test",
        display_name="Admin",
        password_hash="x",
        role="admin_empresa",
        user_id=USER_ADMIN,
    )
    await users.create(
        email="tech@acme.test",
        display_name="Tech",
        password_hash="x",
        role="tecnico",
        user_id=USER_TECH,
    )
    await session.commit()
    return session
