"""Approvals domain - approval queue, reviewer actions and SLA tracking."""

from .router import router
from .service import (
    TERMINAL_STATUSES,
    ApprovalService,
    get_approval_service,
    reset_approval_service,
    select_sla_config,
)

__all__ = [
    "router",
    "ApprovalService",
    "get_approval_service",
    "reset_approval_service",
    "select_sla_config",
    "TERMINAL_STATUSES",
]
