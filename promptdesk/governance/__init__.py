"""Governance domain - retention, classification, lineage, masking and privacy requests."""

from .router import router
from .service import (
    GovernanceService,
    get_governance_service,
    mask_sensitive_data,
    reset_governance_service,
    sensitivity_score,
)

__all__ = [
    "router",
    "GovernanceService",
    "get_governance_service",
    "reset_governance_service",
    "mask_sensitive_data",
    "sensitivity_score",
]
