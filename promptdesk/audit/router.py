"""Audit trail API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from promptdesk.core.security import get_actor_id, require_permission

from .schemas import (
    AuditEventOut,
    AuditStatistics,
    ChainVerification,
    ComplianceReportOut,
    ComplianceReportRequest,
    ExportFormat,
    LogEventRequest,
    SnapshotOut,
    SnapshotRequest,
)
from .service import get_audit_service

router = APIRouter(prefix="/audit", tags=["audit"])

read_audit = require_permission("audit.read")


def _event_out(record: Any) -> AuditEventOut:
    return AuditEventOut(
        event_id=record.event_id,
        sequence_number=record.sequence_number,
        event_type=record.event_type,
        event_category=record.event_category,
        severity=record.severity,
        action=record.action,
        actor_id=record.actor_id,
        resource_type=record.resource_type,
        resource_id=record.resource_id,
        old_values=record.old_values,
        new_values=record.new_values,
        changes=record.changes,
        metadata=record.metadata,
        success=record.success,
        error_message=record.error_message,
        previous_hash=record.previous_hash,
        event_hash=record.event_hash,
        created_at=record.created_at,
    )


# =============================================================================
# Events
# =============================================================================


@router.post("/events", response_model=AuditEventOut, status_code=201)
def log_event(request: LogEventRequest, actor_id: str | None = Depends(get_actor_id)) -> AuditEventOut:
    record = get_audit_service().log_event(
        event_type=request.event_type,
        category=request.category,
        action=request.action,
        actor_id=actor_id,
        resource_type=request.resource_type,
        resource_id=request.resource_id,
        severity=request.severity,
        success=request.success,
        old_values=request.old_values,
        new_values=request.new_values,
        metadata=request.metadata,
        error_message=request.error_message,
    )
    return _event_out(record)


@router.get("/events", response_model=list[AuditEventOut])
def query_events(
    start: datetime | None = None,
    end: datetime | None = None,
    actor_id: str | None = None,
    event_type: str | None = None,
    category: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    severity: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    _: str = Depends(read_audit),
) -> list[AuditEventOut]:
    events = get_audit_service().query_events(
        start=start, end=end, actor_id=actor_id, event_type=event_type,
        category=category, resource_type=resource_type, resource_id=resource_id,
        severity=severity, limit=limit,
    )
    return [_event_out(e) for e in events]


@router.get("/resources/{resource_type}/{resource_id}/history", response_model=list[AuditEventOut])
def get_resource_history(resource_type: str, resource_id: str, _: str = Depends(read_audit)) -> list[AuditEventOut]:
    return [_event_out(e) for e in get_audit_service().get_resource_history(resource_type, resource_id)]


@router.get("/users/{user_id}/activity", response_model=list[AuditEventOut])
def get_user_activity(
    user_id: str,
    days: int = Query(default=30, ge=1, le=3650),
    _: str = Depends(read_audit),
) -> list[AuditEventOut]:
    return [_event_out(e) for e in get_audit_service().get_user_activity(user_id, days)]


@router.post("/verify", response_model=ChainVerification)
def verify_chain(
    start: datetime | None = None,
    end: datetime | None = None,
    actor_id: str = Depends(read_audit),
) -> dict[str, Any]:
    """Re-walk the hash chain over the given range."""
    return get_audit_service().verify_audit_chain(start, end, checked_by=actor_id)


@router.get("/statistics", response_model=AuditStatistics)
def get_statistics(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_audit),
) -> dict[str, Any]:
    return get_audit_service().get_statistics(start, end)


@router.get("/export")
def export_events(
    format: ExportFormat = Query(default=ExportFormat.JSON),
    start: datetime | None = None,
    end: datetime | None = None,
    event_type: str | None = None,
    category: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    actor_id: str = Depends(read_audit),
) -> Response:
    content = get_audit_service().export_events(
        format=format.value,
        actor_id=actor_id,
        start=start,
        end=end,
        event_type=event_type,
        category=category,
        limit=limit,
    )
    media_type = "text/csv" if format == ExportFormat.CSV else "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename=audit_events.{format.value}"},
    )


# =============================================================================
# Snapshots
# =============================================================================


@router.post("/snapshots", response_model=SnapshotOut, status_code=201)
def create_snapshot(request: SnapshotRequest, actor_id: str | None = Depends(get_actor_id)) -> dict[str, Any]:
    return get_audit_service().create_snapshot(
        request.resource_type, request.resource_id, request.data, request.snapshot_type, actor_id
    )


@router.get("/snapshots/{resource_type}/{resource_id}", response_model=list[SnapshotOut])
def get_snapshots(resource_type: str, resource_id: str, _: str = Depends(read_audit)) -> list[dict[str, Any]]:
    return get_audit_service().get_snapshots(resource_type, resource_id)


@router.get("/snapshots/{snapshot_id}/verify")
def verify_snapshot(snapshot_id: str, _: str = Depends(read_audit)) -> dict[str, Any]:
    return {"snapshot_id": snapshot_id, "is_valid": get_audit_service().verify_snapshot(snapshot_id)}


# =============================================================================
# Compliance and Retention
# =============================================================================


@router.post("/compliance-reports", response_model=ComplianceReportOut, status_code=201)
def generate_compliance_report(
    request: ComplianceReportRequest,
    actor_id: str = Depends(read_audit),
) -> dict[str, Any]:
    return get_audit_service().generate_compliance_report(
        report_type=request.report_type,
        report_name=request.report_name,
        start=request.start_date,
        end=request.end_date,
        compliance_framework=request.compliance_framework,
        actor_id=actor_id,
    )


@router.get("/compliance-reports", response_model=list[ComplianceReportOut])
def list_compliance_reports(
    report_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(read_audit),
) -> list[dict[str, Any]]:
    return get_audit_service().list_compliance_reports(report_type, limit)


@router.get("/retention-policies")
def get_retention_policies(_: str = Depends(read_audit)) -> list[dict[str, Any]]:
    return get_audit_service().get_retention_policies()


@router.put("/retention-policies/{category}/legal-hold")
def set_legal_hold(
    category: str,
    hold: bool = Query(...),
    actor_id: str = Depends(require_permission("roles.manage")),
) -> dict[str, Any]:
    get_audit_service().set_legal_hold(category, hold, actor_id)
    return {"event_category": category, "legal_hold": hold}


@router.post("/retention/apply")
def apply_retention(_: str = Depends(require_permission("roles.manage"))) -> dict[str, Any]:
    deleted = get_audit_service().apply_audit_retention()
    return {"deleted": deleted, "total_deleted": sum(deleted.values())}
