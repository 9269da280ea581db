"""Liveness endpoint."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cmms_api import __version__
from cmms_api.dependencies import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: SessionDep) -> dict[str, Any]:
    """Return service health.

    Always answers 200 so load-balancers see the process as alive; ``db``
    reports whether the store is reachable.
    """
    result: dict[str, Any] = {"status": "healthy", "version": __version__, "db": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"
    return result
