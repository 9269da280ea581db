"""Bounded timeouts for data-store calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from cmms_core.errors import StoreTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], seconds: float, label: str) -> T:
    """Await *awaitable* for at most *seconds*.

    Raises :class:`StoreTimeoutError` when the budget is exceeded so callers
    can treat a slow store exactly like an unavailable one.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as exc:
        logger.warning("%s timed out after %.0fms", label, seconds * 1000)
        raise StoreTimeoutError(f"{label} timed out after {seconds * 1000:.0f}ms") from exc
