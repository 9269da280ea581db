"""FastAPI dependency injection for settings, database sessions and request context."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from cmms_core.config import CoreSettings, load_core_settings
from cmms_core.errors import InvalidInputError, UnauthenticatedError
from cmms_core.rbac.guard import Principal
from cmms_core.state.database import forget_engine, get_engine, session_scope
from cmms_core.state.database import get_session_factory as factory_for_engine
from cmms_core.state.schema import SchemaState
from cmms_core.tenancy.resolver import TenantInfo, TenantResolver
from fastapi import Depends, FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cmms_api.config import APISettings, load_api_settings
from cmms_api.security import TokenManager

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_core_settings_cache: CoreSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_core_settings() -> CoreSettings:
    """Return the cached :class:`CoreSettings` singleton."""
    global _core_settings_cache  # noqa: PLW0603
    if _core_settings_cache is None:
        _core_settings_cache = load_core_settings()
    return _core_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
CoreSettingsDep = Annotated[CoreSettings, Depends(get_core_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings, statement_timeout_seconds: float = 30.0) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url, statement_timeout_seconds=statement_timeout_seconds)
    _session_factory = factory_for_engine(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        forget_engine(_engine)
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components that operate outside FastAPI's dependency injection
    (e.g. Starlette middleware) and need direct session access.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that commits on clean exit and rolls back on error.

    Tenant scoping is applied by the repositories, which all take the
    resolved ``tenant_id`` explicitly.
    """
    async with session_scope(get_session_factory()) as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Application-scoped collaborators (stored on app.state)
# ---------------------------------------------------------------------------


def init_app_state(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    core_settings: CoreSettings,
) -> None:
    """Attach the tenant resolver and schema state to *app*.

    Both are per-application rather than module globals so tests can build
    isolated apps with fresh caches.
    """
    app.state.core_settings = core_settings
    app.state.tenant_resolver = TenantResolver(session_factory, core_settings)
    app.state.schema_state = SchemaState()


def get_tenant_resolver(request: Request) -> TenantResolver:
    return request.app.state.tenant_resolver


def get_schema_state(request: Request) -> SchemaState:
    return request.app.state.schema_state


def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.token_manager


TenantResolverDep = Annotated[TenantResolver, Depends(get_tenant_resolver)]
SchemaStateDep = Annotated[SchemaState, Depends(get_schema_state)]
TokenManagerDep = Annotated[TokenManager, Depends(get_token_manager)]

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def get_current_principal(request: Request) -> Principal:
    """Return the authenticated principal or raise 401."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise UnauthenticatedError("Not authenticated")
    return principal


def get_current_tenant(request: Request) -> TenantInfo:
    """Return the tenant resolved by :class:`TenantResolutionMiddleware`."""
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise InvalidInputError("Tenant ID is required")
    return tenant


def get_client_ip(request: Request) -> str | None:
    """First ``X-Forwarded-For`` hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",", 1)[0].strip()
    if first:
        return first
    return request.client.host if request.client else None


PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
TenantDep = Annotated[TenantInfo, Depends(get_current_tenant)]
