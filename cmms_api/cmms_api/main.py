"""FastAPI application entry-point for the CMMS core service."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from cmms_core.rbac.engine import RbacEngine
from cmms_core.state.database import create_all_tables, session_scope
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cmms_api import __version__
from cmms_api.config import APISettings, PlatformEnv, load_api_settings
from cmms_api.dependencies import (
    dispose_engine,
    get_core_settings,
    get_session_factory,
    init_app_state,
    init_engine,
)
from cmms_api.errors import register_exception_handlers
from cmms_api.middleware.auth import AuthenticationMiddleware
from cmms_api.middleware.logging import RequestLoggingMiddleware
from cmms_api.middleware.request_id import REQUEST_ID_HEADER, RequestIdLoggingFilter, RequestIdMiddleware
from cmms_api.middleware.tenant import (
    PLANT_ID_HEADER,
    TENANT_ID_HEADER,
    TENANT_SLUG_HEADER,
    TenantReadOnlyMiddleware,
    TenantResolutionMiddleware,
)
from cmms_api.routers import admin_rbac, auth, health, sla_rules, superadmin, tickets, work_orders, workflows
from cmms_api.security import TokenManager, build_token_config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _configure_structured_logging() -> None:
    from cmms_api.middleware.json_formatter import JSONFormatter

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestIdLoggingFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine and the per-app tenant resolver.
    - In dev or local SQLite mode, create tables and seed the permission
      catalog (production uses Alembic migrations).

    On shutdown:
    - Dispose the database engine connection pool.
    """
    settings: APISettings = load_api_settings()

    # Fail fast: refuse to start in production/staging without JWT_SECRET.
    if settings.platform_env in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION) and not os.environ.get("JWT_SECRET"):
        raise RuntimeError(
            f"JWT_SECRET environment variable is required in {settings.platform_env.value} mode. Refusing to start."
        )

    if settings.structured_logging:
        _configure_structured_logging()
        logger.info("Structured JSON logging enabled")

    core_settings = get_core_settings()
    engine = init_engine(settings, core_settings.store_timeout_seconds)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url[:40] + "...",
        "local" if is_local else "postgres",
    )

    session_factory = get_session_factory()
    init_app_state(app, session_factory, core_settings)

    # Auto-create tables in dev or local SQLite mode (idempotent).
    if settings.platform_env == PlatformEnv.DEV or is_local:
        await create_all_tables(engine)
        async with session_scope(session_factory) as session:
            await RbacEngine(session).ensure_catalog()
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-migration")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="CMMS Core API",
        description="Multi-tenant authorization, SLA and work-order workflow core.",
        version=__version__,
        lifespan=lifespan,
    )

    # The login endpoint and the authentication middleware must share one
    # token manager so issued tokens validate.
    token_manager = TokenManager(build_token_config())
    app.state.token_manager = token_manager

    # -- Middleware (innermost first; the last one added runs first) --------

    app.add_middleware(TenantReadOnlyMiddleware)
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(AuthenticationMiddleware, token_manager=token_manager)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            REQUEST_ID_HEADER,
            TENANT_ID_HEADER,
            TENANT_SLUG_HEADER,
            PLANT_ID_HEADER,
        ],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(admin_rbac.router, prefix="/api/v1")
    app.include_router(sla_rules.router, prefix="/api/v1")
    app.include_router(workflows.router, prefix="/api/v1")
    app.include_router(work_orders.router, prefix="/api/v1")
    app.include_router(tickets.router, prefix="/api/v1")
    app.include_router(superadmin.router, prefix="/api/v1")

    # -- Exception handlers --------------------------------------------------

    register_exception_handlers(app)

    return app


# Module-level application instance used by ``uvicorn cmms_api.main:app``.
app = create_app()
