"""SLA engine.

Deadlines come from the tenant's active :class:`SlaRuleTable` row for the
entity type and priority, floored at one hour, or from the static defaults
below.  Rule lookups are best-effort: any failure falls back to the
defaults so that creating a work order or ticket never fails because of
SLA configuration.  The lookup runs inside a savepoint on the caller's
session, so a failed or cancelled statement is rolled back on its own and
the surrounding transaction stays usable.

The pause-accounting helpers are pure functions over any object exposing
the work-order SLA attributes (ORM rows in production, simple namespaces
in tests).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cmms_core.state.repository import SlaRuleRepository
from cmms_core.timeouts import with_timeout

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    BAIXA = "baixa"
    MEDIA = "media"
    ALTA = "alta"
    CRITICA = "critica"


WORK_ORDER_DEFAULT_HOURS: dict[Priority, int] = {
    Priority.BAIXA: 96,
    Priority.MEDIA: 72,
    Priority.ALTA: 24,
    Priority.CRITICA: 8,
}

# (response, resolution)
TICKET_DEFAULT_HOURS: dict[Priority, tuple[int, int]] = {
    Priority.BAIXA: (24, 96),
    Priority.MEDIA: (12, 72),
    Priority.ALTA: (4, 24),
    Priority.CRITICA: (1, 8),
}

ENTITY_WORK_ORDER = "work_order"
ENTITY_TICKET = "ticket"
ENTITY_TYPES = (ENTITY_WORK_ORDER, ENTITY_TICKET)


def normalize_priority(raw: Any) -> Priority | None:
    """Map a free-form priority to :class:`Priority`, or ``None`` if unknown."""
    value = str(raw or "").strip().lower()
    try:
        return Priority(value)
    except ValueError:
        return None


def _finite_hours(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return max(1.0, float(value))


@dataclass(frozen=True)
class TicketSlaDeadlines:
    response_deadline: datetime
    resolution_deadline: datetime


class SlaEngine:
    """Compute SLA deadlines for a tenant using the request's session."""

    def __init__(self, session: AsyncSession, *, timeout_seconds: float = 5.0) -> None:
        self._session = session
        self._timeout = timeout_seconds

    async def _find_rule(self, tenant_id: str, entity_type: str, priority: Priority) -> Any:
        repo = SlaRuleRepository(self._session, tenant_id=tenant_id)
        try:
            async with self._session.begin_nested():
                return await with_timeout(
                    repo.find_active(entity_type, priority.value),
                    self._timeout,
                    "sla rule lookup",
                )
        except Exception:
            logger.warning(
                "SLA rule lookup failed for tenant=%s entity=%s priority=%s; using defaults",
                tenant_id,
                entity_type,
                priority.value,
                exc_info=True,
            )
            return None

    async def get_work_order_sla_hours(self, tenant_id: str, priority: Any) -> float:
        prio = normalize_priority(priority) or Priority.MEDIA
        rule = await self._find_rule(tenant_id, ENTITY_WORK_ORDER, prio)
        if rule is not None:
            hours = _finite_hours(rule.resolution_time_hours)
            if hours is not None:
                return hours
        return float(WORK_ORDER_DEFAULT_HOURS[prio])

    async def get_ticket_sla_hours(self, tenant_id: str, priority: Any) -> tuple[float, float]:
        """Return ``(response_hours, resolution_hours)``."""
        prio = normalize_priority(priority) or Priority.MEDIA
        rule = await self._find_rule(tenant_id, ENTITY_TICKET, prio)
        if rule is not None:
            response = _finite_hours(rule.response_time_hours)
            resolution = _finite_hours(rule.resolution_time_hours)
            if response is not None and resolution is not None:
                return response, resolution
        response_default, resolution_default = TICKET_DEFAULT_HOURS[prio]
        return float(response_default), float(resolution_default)

    async def compute_work_order_sla_deadline(
        self,
        tenant_id: str,
        priority: Any,
        base: datetime | None = None,
    ) -> datetime:
        base = base or datetime.now(UTC)
        hours = await self.get_work_order_sla_hours(tenant_id, priority)
        return base + timedelta(hours=hours)

    async def compute_ticket_sla_deadlines(
        self,
        tenant_id: str,
        priority: Any,
        base: datetime | None = None,
    ) -> TicketSlaDeadlines:
        base = base or datetime.now(UTC)
        response_hours, resolution_hours = await self.get_ticket_sla_hours(tenant_id, priority)
        return TicketSlaDeadlines(
            response_deadline=base + timedelta(hours=response_hours),
            resolution_deadline=base + timedelta(hours=resolution_hours),
        )


# ---------------------------------------------------------------------------
# Pause accounting
# ---------------------------------------------------------------------------


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def _excludes_pause(order: Any) -> bool:
    # Only an explicit False opts out; None and missing mean "exclude".
    return getattr(order, "sla_exclude_pause", None) is not False


def get_work_order_pause_ms(order: Any, now: datetime | None = None) -> int:
    """Accumulated pause plus the open pause interval, never negative."""
    accumulated = int(getattr(order, "sla_paused_ms", 0) or 0)
    started_at = getattr(order, "sla_pause_started_at", None)
    if started_at is None:
        return max(0, accumulated)
    delta = max(0, _ms(_now(now) - started_at))
    return max(0, accumulated + delta)


def get_effective_sla_deadline(order: Any, now: datetime | None = None) -> datetime | None:
    """Stored deadline pushed back by total pause time, unless pauses count."""
    deadline = getattr(order, "sla_deadline", None)
    if deadline is None:
        return None
    if not _excludes_pause(order):
        return deadline
    return deadline + timedelta(milliseconds=get_work_order_pause_ms(order, now))


def is_sla_overdue(order: Any, now: datetime | None = None) -> bool:
    now = _now(now)
    effective = get_effective_sla_deadline(order, now)
    if effective is None:
        return False
    return effective < now


def should_suppress_sla_alerts_while_paused(order: Any) -> bool:
    return _excludes_pause(order) and str(getattr(order, "status", "") or "") == "em_pausa"


def get_work_order_status_aging_ms(order: Any, now: datetime | None = None) -> int | None:
    """Milliseconds spent in the current status, or ``None`` for terminal states.

    The anchor depends on the status:

    * ``aberta`` -- ``created_at``
    * ``em_analise`` -- ``analysis_started_at`` or ``created_at``
    * ``em_execucao`` -- ``started_at``, ``analysis_started_at`` or
      ``created_at``, minus accumulated pause time
    * ``em_pausa`` -- ``sla_pause_started_at``, ``paused_at``,
      ``started_at``, ``analysis_started_at`` or ``created_at``
    """
    now = _now(now)
    status = str(getattr(order, "status", "") or "")

    def _first(*names: str) -> datetime | None:
        for name in names:
            value = getattr(order, name, None)
            if value is not None:
                return value
        return None

    def _since(anchor: datetime | None) -> int | None:
        if anchor is None:
            return None
        return max(0, _ms(now - anchor))

    if status == "aberta":
        return _since(_first("created_at"))
    if status == "em_analise":
        return _since(_first("analysis_started_at", "created_at"))
    if status == "em_execucao":
        base = _since(_first("started_at", "analysis_started_at", "created_at"))
        if base is None:
            return None
        return max(0, base - get_work_order_pause_ms(order, now))
    if status == "em_pausa":
        return _since(_first("sla_pause_started_at", "paused_at", "started_at", "analysis_started_at", "created_at"))
    return None


def apply_pause(order: Any, now: datetime | None = None) -> None:
    """Open a pause interval.  No-op when one is already open."""
    if getattr(order, "sla_pause_started_at", None) is not None:
        return
    now = _now(now)
    order.sla_pause_started_at = now
    order.paused_at = now


def apply_resume(order: Any, now: datetime | None = None) -> None:
    """Close the open pause interval, folding it into ``sla_paused_ms``."""
    started_at = getattr(order, "sla_pause_started_at", None)
    if started_at is None:
        return
    elapsed = max(0, _ms(_now(now) - started_at))
    order.sla_paused_ms = int(getattr(order, "sla_paused_ms", 0) or 0) + elapsed
    order.sla_pause_started_at = None
