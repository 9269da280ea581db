"""Work-order status workflow: rule sets, resolution and transition checks."""

from cmms_core.workflow.machine import (
    DEFAULT_CONFIG,
    TransitionRule,
    WorkflowConfig,
    WorkflowService,
    WorkOrderStatus,
    normalize_status,
    validate_transition,
)

__all__ = [
    "DEFAULT_CONFIG",
    "TransitionRule",
    "WorkOrderStatus",
    "WorkflowConfig",
    "WorkflowService",
    "normalize_status",
    "validate_transition",
]
