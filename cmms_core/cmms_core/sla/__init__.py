"""SLA deadlines, pause accounting and status aging."""

from cmms_core.sla.engine import (
    TICKET_DEFAULT_HOURS,
    WORK_ORDER_DEFAULT_HOURS,
    Priority,
    SlaEngine,
    TicketSlaDeadlines,
    apply_pause,
    apply_resume,
    get_effective_sla_deadline,
    get_work_order_pause_ms,
    get_work_order_status_aging_ms,
    is_sla_overdue,
    normalize_priority,
    should_suppress_sla_alerts_while_paused,
)

__all__ = [
    "TICKET_DEFAULT_HOURS",
    "WORK_ORDER_DEFAULT_HOURS",
    "Priority",
    "SlaEngine",
    "TicketSlaDeadlines",
    "apply_pause",
    "apply_resume",
    "get_effective_sla_deadline",
    "get_work_order_pause_ms",
    "get_work_order_status_aging_ms",
    "is_sla_overdue",
    "normalize_priority",
    "should_suppress_sla_alerts_while_paused",
]
