"""Tenant resolution.

A request names its tenant explicitly through ``x-tenant-id`` (a strict
UUID) or ``x-tenant-slug``; otherwise the implicit default tenant is used.
Explicit lookups fail loudly (400 / 404).  The implicit path never fails:
it reads a single-entry process-wide cache and, on a miss, looks up the
configured default slug, then the earliest-created tenant, then a fixed
fallback identity.  Store errors on the implicit path degrade to the
fallback identity.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cmms_core.config import CoreSettings
from cmms_core.errors import InternalError, InvalidInputError, NotFoundError
from cmms_core.state.repository import TenantRepository
from cmms_core.timeouts import with_timeout

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def is_valid_tenant_id(value: str) -> bool:
    """Return ``True`` for a hyphenated 8-4-4-4-12 hex UUID (case-insensitive)."""
    return bool(_UUID_RE.match(value.strip().lower()))


@dataclass(frozen=True)
class TenantInfo:
    """Resolved tenant identity attached to the request."""

    id: str
    slug: str
    is_read_only: bool = False
    is_fallback: bool = False

    @classmethod
    def from_row(cls, row: Any) -> TenantInfo:
        return cls(id=str(row.id), slug=str(row.slug), is_read_only=bool(row.is_read_only))


class TenantCache:
    """Single-entry TTL cache for the implicit default tenant.

    Racing refreshes simply overwrite each other; every writer stores an
    equally valid answer, so no lock is taken.

    Parameters
    ----------
    ttl_seconds:
        Freshness window of the cached entry.
    clock:
        Monotonic time source, replaceable in tests.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: tuple[TenantInfo, float] | None = None

    def get(self) -> TenantInfo | None:
        """Return the cached tenant, or ``None`` on miss/expiry."""
        if self._entry is None:
            return None
        info, cached_at = self._entry
        if self._clock() - cached_at >= self._ttl:
            self._entry = None
            return None
        return info

    def set(self, info: TenantInfo) -> None:
        self._entry = (info, self._clock())

    def invalidate(self) -> None:
        self._entry = None


class TenantResolver:
    """Resolve the tenant for a request.

    Parameters
    ----------
    session_factory:
        Factory producing short-lived sessions for lookups.
    settings:
        Core settings (default slug, fallback identity, timeouts).
    cache:
        Default-tenant cache.  A fresh one is created when omitted.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: CoreSettings,
        cache: TenantCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self.cache = cache or TenantCache(ttl_seconds=settings.tenant_cache_ttl_seconds)

    @property
    def fallback(self) -> TenantInfo:
        return TenantInfo(
            id=self._settings.fallback_tenant_id,
            slug=self._settings.fallback_tenant_slug,
            is_fallback=True,
        )

    async def resolve(self, *, tenant_id: str | None = None, tenant_slug: str | None = None) -> TenantInfo:
        """Resolve an explicit id or slug, else the implicit default.

        An explicit id takes precedence over a slug when both are given.
        """
        if tenant_id is not None and tenant_id.strip():
            return await self.resolve_by_id(tenant_id)
        if tenant_slug is not None and tenant_slug.strip():
            return await self.resolve_by_slug(tenant_slug)
        return await self.resolve_default()

    async def resolve_by_id(self, raw_id: str) -> TenantInfo:
        candidate = raw_id.strip().lower()
        if not is_valid_tenant_id(candidate):
            raise InvalidInputError("Invalid x-tenant-id")
        row = await self._lookup(lambda repo: repo.get_by_id(candidate), "tenant lookup by id")
        if row is None:
            raise NotFoundError("Tenant not found")
        return TenantInfo.from_row(row)

    async def resolve_by_slug(self, raw_slug: str) -> TenantInfo:
        slug = raw_slug.strip().lower()
        row = await self._lookup(lambda repo: repo.get_by_slug(slug), "tenant lookup by slug")
        if row is None:
            raise NotFoundError("Tenant not found")
        return TenantInfo.from_row(row)

    async def resolve_default(self) -> TenantInfo:
        """Return the implicit tenant.  Never raises."""
        cached = self.cache.get()
        if cached is not None:
            return cached

        try:
            info = await with_timeout(
                self._load_default(),
                self._settings.store_timeout_seconds,
                "default tenant lookup",
            )
        except Exception:
            logger.warning("Default tenant lookup failed; using fallback tenant", exc_info=True)
            return self.fallback

        self.cache.set(info)
        return info

    async def _load_default(self) -> TenantInfo:
        async with self._session_factory() as session:
            repo = TenantRepository(session)
            slug = self._settings.default_tenant_slug
            if slug:
                row = await repo.get_by_slug(slug)
                if row is not None:
                    return TenantInfo.from_row(row)
            row = await repo.get_earliest()
            if row is not None:
                return TenantInfo.from_row(row)
        logger.info("No tenants provisioned; using fallback tenant %s", self._settings.fallback_tenant_id)
        return self.fallback

    async def _lookup(self, query: Callable[[TenantRepository], Any], label: str) -> Any:
        async def _run() -> Any:
            async with self._session_factory() as session:
                return await query(TenantRepository(session))

        try:
            return await with_timeout(_run(), self._settings.store_timeout_seconds, label)
        except Exception as exc:
            logger.error("%s failed", label, exc_info=True)
            raise InternalError("Failed to resolve tenant") from exc
