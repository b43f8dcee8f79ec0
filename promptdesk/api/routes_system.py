"""Operational routes: table statistics, cache and pool health, maintenance."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from promptdesk.approvals.service import get_approval_service
from promptdesk.audit.service import get_audit_service
from promptdesk.core.logging import get_logger
from promptdesk.core.security import require_permission
from promptdesk.governance.service import get_governance_service
from promptdesk.peer_review.service import get_peer_review_service
from promptdesk.rbac.service import get_rbac_service
from promptdesk.reports.service import ReportService
from promptdesk.storage.cache import get_query_cache
from promptdesk.storage.database import get_engine, get_table_stats
from promptdesk.storage.pool import get_connection_pool

log = get_logger(__name__)

router = APIRouter(prefix="/system", tags=["system"])

can_manage = require_permission("roles.manage")


class MaintenanceResult(BaseModel):
    sla: dict[str, int]
    review_reminders: dict[str, int]
    expired_role_assignments: int
    retention_policies_applied: int
    records_removed_by_retention: int
    cache_entries_expired: int
    audit_retention: dict[str, int]
    scheduled_reports: list[str]


@router.get("/tables")
def table_stats(_: str = Depends(require_permission("audit.read"))) -> dict[str, int]:
    return get_table_stats()


@router.get("/cache")
def cache_stats() -> dict[str, Any]:
    return get_query_cache().get_stats()


@router.get("/pool")
def pool_stats() -> dict[str, int]:
    return get_connection_pool().get_stats()


@router.post("/pool/record")
def record_pool_stats(_: str = Depends(can_manage)) -> dict[str, Any]:
    """Persist a pool statistics snapshot."""
    return get_connection_pool().record_stats()


@router.post("/maintenance", response_model=MaintenanceResult)
def run_maintenance(_: str = Depends(can_manage)) -> MaintenanceResult:
    """Run every periodic job once.

    SLA checks, review reminders and escalation, role expiry, due
    retention policies, query cache cleanup, audit retention and due
    report schedules.
    """
    sla = get_approval_service().check_sla_compliance()
    reminders = get_peer_review_service().process_reminders()
    expired = get_rbac_service().expire_role_assignments()
    retention = get_governance_service().run_due_policies()
    cache_expired = get_query_cache().cleanup_expired()
    audit_retention = get_audit_service().apply_audit_retention()
    with Session(get_engine()) as session:
        scheduled = ReportService(session).run_due_schedules()

    result = MaintenanceResult(
        sla=sla,
        review_reminders=reminders,
        expired_role_assignments=expired,
        retention_policies_applied=len(retention),
        records_removed_by_retention=sum(r.get("records_affected", 0) for r in retention),
        cache_entries_expired=cache_expired,
        audit_retention=audit_retention,
        scheduled_reports=scheduled,
    )
    log.info(
        "maintenance_completed",
        **result.model_dump(exclude={"sla", "review_reminders", "audit_retention", "scheduled_reports"}),
    )
    return result
