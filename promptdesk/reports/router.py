"""API routes for report generation."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import Session

from promptdesk.core.database import get_session
from promptdesk.core.security import require_permission
from promptdesk.storage.models import utcnow

from .schemas import (
    DistributeRequest,
    DistributionRead,
    ExecutionRead,
    ExportFormat,
    GenerateReportRequest,
    ScheduleRead,
    ScheduleRequest,
    TemplateRead,
)
from .service import ReportService

router = APIRouter(prefix="/reports", tags=["reports"])

can_read = require_permission("analytics.read")
can_export = require_permission("analytics.export")

_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json", "pdf": "text/plain"}


def get_service(session: Session = Depends(get_session)) -> ReportService:
    return ReportService(session)


# =============================================================================
# Templates and Generation
# =============================================================================


@router.get("/templates", response_model=list[TemplateRead])
def list_templates(category: str | None = None, service: ReportService = Depends(get_service)) -> list[TemplateRead]:
    return [TemplateRead.model_validate(t) for t in service.list_templates(category)]


@router.post("/generate", response_model=ExecutionRead, status_code=201)
def generate_report(
    request: GenerateReportRequest,
    actor_id: str = Depends(can_read),
    service: ReportService = Depends(get_service),
) -> ExecutionRead:
    end = request.end or utcnow()
    start = request.start or end - timedelta(days=30)
    return ExecutionRead.model_validate(service.generate_report(request.template_id, start, end, actor_id))


@router.get("/executions", response_model=list[ExecutionRead])
def list_executions(
    limit: int = Query(default=20, ge=1, le=200),
    _: str = Depends(can_read),
    service: ReportService = Depends(get_service),
) -> list[ExecutionRead]:
    return [ExecutionRead.model_validate(e) for e in service.list_executions(limit)]


@router.get("/executions/{execution_id}")
def get_report_details(
    execution_id: str,
    _: str = Depends(can_read),
    service: ReportService = Depends(get_service),
) -> dict[str, Any]:
    return service.get_report_details(execution_id)


# =============================================================================
# Export and Distribution
# =============================================================================


@router.get("/executions/{execution_id}/export")
def export_report(
    execution_id: str,
    format: ExportFormat = ExportFormat.JSON,
    _: str = Depends(can_export),
    service: ReportService = Depends(get_service),
) -> Response:
    export, content = service.export_report(execution_id, format.value)
    return Response(
        content=content,
        media_type=_MEDIA_TYPES[format.value],
        headers={"Content-Disposition": f'attachment; filename="{export.file_name}"'},
    )


@router.post("/executions/{execution_id}/distribute", response_model=list[DistributionRead])
def distribute_report(
    execution_id: str,
    request: DistributeRequest,
    _: str = Depends(can_export),
    service: ReportService = Depends(get_service),
) -> list[DistributionRead]:
    distributions = service.distribute_report(execution_id, request.recipients, request.format.value)
    return [DistributionRead.model_validate(d) for d in distributions]


# =============================================================================
# Schedules
# =============================================================================


@router.post("/schedules", response_model=ScheduleRead, status_code=201)
def schedule_report(
    request: ScheduleRequest,
    actor_id: str = Depends(can_export),
    service: ReportService = Depends(get_service),
) -> ScheduleRead:
    schedule = service.schedule_report(
        request.template_id,
        request.schedule_name,
        request.frequency.value,
        request.recipients,
        export_format=request.export_format.value,
        actor_id=actor_id,
    )
    return ScheduleRead.model_validate(schedule)


@router.get("/schedules", response_model=list[ScheduleRead])
def list_schedules(
    active_only: bool = True,
    _: str = Depends(can_read),
    service: ReportService = Depends(get_service),
) -> list[ScheduleRead]:
    return [ScheduleRead.model_validate(s) for s in service.list_schedules(active_only)]


@router.post("/schedules/{schedule_id}/deactivate", response_model=ScheduleRead)
def deactivate_schedule(
    schedule_id: str,
    _: str = Depends(can_export),
    service: ReportService = Depends(get_service),
) -> ScheduleRead:
    return ScheduleRead.model_validate(service.deactivate_schedule(schedule_id))


@router.post("/schedules/run-due")
def run_due_schedules(_: str = Depends(can_export), service: ReportService = Depends(get_service)) -> dict[str, list]:
    return {"execution_ids": service.run_due_schedules()}
