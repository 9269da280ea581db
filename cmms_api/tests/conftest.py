"""Shared fixtures for CMMS API tests.

Each test gets a fresh FastAPI app over an in-memory SQLite database with
the schema, the permission catalog and a small set of tenants, plants and
users already in place.  ``ASGITransport`` does not run the lifespan, so
the fixtures perform the same startup steps by hand.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from types import SimpleNamespace

# Set JWT_SECRET before importing application modules so every app in the
# test run signs tokens with the same deterministic secret.
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-cmms-api-tests-0123456789")
os.environ.setdefault("API_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import bcrypt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from cmms_core.config import CoreSettings  # noqa: E402
from cmms_core.rbac.engine import RbacEngine  # noqa: E402
from cmms_core.state.database import create_all_tables, session_scope  # noqa: E402
from cmms_core.state.repository import PlantRepository, TenantRepository, UserRepository  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from cmms_api.config import APISettings  # noqa: E402
from cmms_api.dependencies import (  # noqa: E402
    dispose_engine,
    get_core_settings,
    get_session_factory,
    get_settings,
    init_app_state,
    init_engine,
)
from cmms_api.main import create_app  # noqa: E402

TENANT_A = "11111111-1111-4111-8111-111111111111"
TENANT_B = "22222222-2222-4222-8222-222222222222"
TENANT_RO = "33333333-3333-4333-8333-333333333333"
PLANT_1 = "aaaaaaaa-0000-4000-8000-000000000001"
PLANT_2 = "aaaaaaaa-0000-4000-8000-000000000002"
PLANT_RO = "cccccccc-0000-4000-8000-000000000001"
USER_ADMIN = "bbbbbbbb-0000-4000-8000-000000000001"
USER_TECH = "bbbbbbbb-0000-4000-8000-000000000002"
USER_GESTOR = "bbbbbbbb-0000-4000-8000-000000000003"
USER_RO = "bbbbbbbb-0000-4000-8000-000000000004"
PASSWORD = "correct horse battery"


@pytest.fixture()
def ids() -> SimpleNamespace:
    """Identifiers of the seeded fixtures."""
    return SimpleNamespace(
        tenant_a=TENANT_A,
        tenant_b=TENANT_B,
        tenant_ro=TENANT_RO,
        plant_1=PLANT_1,
        plant_2=PLANT_2,
        plant_ro=PLANT_RO,
        admin=USER_ADMIN,
        tech=USER_TECH,
        gestor=USER_GESTOR,
        ro_user=USER_RO,
        password=PASSWORD,
    )


@pytest.fixture()
def test_settings() -> APISettings:
    return APISettings(
        database_url="sqlite+aiosqlite:///:memory:",
        platform_env="dev",
        cors_origins=["http://localhost:5173"],
        audit_retention_days=365,
    )


@pytest.fixture()
def core_settings() -> CoreSettings:
    return CoreSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        default_tenant_slug="acme",
        store_timeout_seconds=2.0,
    )


async def _seed(session) -> None:
    password_hash = bcrypt.hashpw(PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")

    tenants = TenantRepository(session)
    await tenants.create(slug="acme", name="Acme", tenant_id=TENANT_A)
    await tenants.create(slug="globex", name="Globex", tenant_id=TENANT_B)
    await tenants.create(slug="frozen", name="Frozen", tenant_id=TENANT_RO, is_read_only=True)

    plants = PlantRepository(session, tenant_id=TENANT_A)
    await plants.create(name="Porto", code="POR", plant_id=PLANT_1)
    await plants.create(name="Braga", code="BRG", plant_id=PLANT_2)
    await PlantRepository(session, tenant_id=TENANT_RO).create(name="Lisboa", code="LIS", plant_id=PLANT_RO)

    users = UserRepository(session, tenant_id=TENANT_A)
    for user_id, email, role in (
        (USER_ADMIN, "admin@acme.test", "admin_empresa"),
        (USER_TECH, "tech@acme.test", "tecnico"),
        (USER_GESTOR, "gestor@acme.test", "gestor_manutencao"),
    ):
        await users.create(
            email=email,
            display_name=email.split("@")[0],
            password_hash=password_hash,
            role=role,
            user_id=user_id,
        )
    await UserRepository(session, tenant_id=TENANT_RO).create(
        email="ro@frozen.test",
        display_name="ro",
        password_hash=password_hash,
        role="admin_empresa",
        user_id=USER_RO,
    )
    await RbacEngine(session).ensure_catalog()


@pytest_asyncio.fixture()
async def app(test_settings: APISettings, core_settings: CoreSettings) -> AsyncGenerator[FastAPI, None]:
    await create_all_tables(init_engine(test_settings))
    session_factory = get_session_factory()
    async with session_scope(session_factory) as session:
        await _seed(session)

    application = create_app(test_settings)
    init_app_state(application, session_factory, core_settings)
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_core_settings] = lambda: core_settings

    yield application

    await dispose_engine()


@pytest.fixture()
def session_factory(app: FastAPI):
    """Session factory bound to the test app's database."""
    return get_session_factory()


@pytest.fixture()
def make_token(app: FastAPI) -> Callable[..., str]:
    """Return ``make_token(user_id, role, tenant_id=TENANT_A)`` signed by the app's token manager."""

    def _make(user_id: str, role: str, tenant_id: str | None = TENANT_A, ttl_seconds: int | None = None) -> str:
        return app.state.token_manager.generate_token(user_id, tenant_id, role=role, ttl_seconds=ttl_seconds)

    return _make


@pytest.fixture()
def auth_headers(make_token: Callable[..., str]) -> Callable[..., dict[str, str]]:
    """Return ``auth_headers(user_id, role, tenant_id=TENANT_A, **extra)``."""

    def _headers(user_id: str, role: str, tenant_id: str | None = TENANT_A, **extra: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {make_token(user_id, role, tenant_id)}"}
        headers.update(extra)
        return headers

    return _headers


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async httpx client bound to the test app via ``ASGITransport``."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def grant(session_factory) -> Callable[..., object]:
    """Return an async ``grant(role, keys, tenant_id=TENANT_A)`` that replaces a role's grants."""

    async def _grant(role: str, keys: list[str], tenant_id: str = TENANT_A) -> list[str]:
        async with session_factory() as session:
            stored = await RbacEngine(session).replace_role_permissions(tenant_id, role, keys)
            await session.commit()
        return stored

    return _grant
