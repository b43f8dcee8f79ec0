"""Approval workflow API routes."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query

from promptdesk.core.security import require_actor, require_permission

from .schemas import (
    ActionResult,
    ApprovalActionRequest,
    AssignRequest,
    BulkActionRequest,
    BulkResult,
    QueueItemOut,
    QueueStatistics,
    RevisionRequest,
    SLACheckResult,
    StatusUpdateRequest,
    SubmitForApprovalRequest,
)
from .service import get_approval_service

router = APIRouter(prefix="/approvals", tags=["approvals"])

can_approve = require_permission("prompts.approve")


def _item(record: Any) -> QueueItemOut:
    return QueueItemOut(**asdict(record))


# =============================================================================
# Queue
# =============================================================================


@router.post("/queue", response_model=QueueItemOut, status_code=201)
def submit_for_approval(request: SubmitForApprovalRequest, actor_id: str = Depends(require_actor)) -> QueueItemOut:
    """Submit a prompt for approval and start its SLA clock."""
    item = get_approval_service().submit_for_approval(
        request.prompt_id,
        actor_id,
        submission_type=request.submission_type.value,
        priority=request.priority,
        department=request.department,
        workflow=request.workflow,
        submission_id=request.submission_id,
        notes=request.notes,
        metadata=request.metadata,
    )
    return _item(item)


@router.get("/queue", response_model=list[QueueItemOut])
def get_queue(
    status: str | None = None,
    assigned_to: str | None = None,
    submitter_id: str | None = None,
    department: str | None = None,
    min_priority: int | None = Query(default=None, ge=1, le=10),
    sla_breached: bool | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(require_actor),
) -> list[QueueItemOut]:
    items = get_approval_service().get_queue(
        status, assigned_to, submitter_id, department, min_priority, sla_breached, limit
    )
    return [_item(i) for i in items]


@router.get("/queue/{queue_id}", response_model=QueueItemOut)
def get_queue_item(queue_id: str, _: str = Depends(require_actor)) -> QueueItemOut:
    return _item(get_approval_service().get_queue_item(queue_id))


@router.put("/queue/{queue_id}/status", response_model=QueueItemOut)
def update_queue_status(
    queue_id: str,
    request: StatusUpdateRequest,
    actor_id: str = Depends(can_approve),
) -> QueueItemOut:
    item = get_approval_service().update_queue_status(queue_id, request.status.value, actor_id, request.reason)
    return _item(item)


@router.get("/queue/{queue_id}/history")
def get_history(queue_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_approval_service().get_history(queue_id)


@router.get("/queue/{queue_id}/actions")
def get_actions(queue_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_approval_service().get_actions(queue_id)


@router.get("/queue/{queue_id}/revisions")
def get_revision_requests(queue_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_approval_service().get_revision_requests(queue_id)


@router.get("/queue/{queue_id}/sla")
def get_sla_tracking(queue_id: str, _: str = Depends(require_actor)) -> dict[str, Any]:
    return get_approval_service().get_sla_tracking(queue_id)


# =============================================================================
# Actions
# =============================================================================


@router.post("/queue/{queue_id}/actions", response_model=ActionResult)
def process_action(
    queue_id: str,
    request: ApprovalActionRequest,
    actor_id: str = Depends(can_approve),
) -> dict[str, Any]:
    result = get_approval_service().process_approval_action(
        queue_id,
        request.action_type.value,
        actor_id,
        decision=request.decision,
        comments=request.comments,
        approval_scope=request.approval_scope,
        conditions=request.conditions,
        assignee_id=request.assignee_id,
    )
    return {"action": result["action"], "item": _item(result["item"])}


@router.post("/queue/{queue_id}/revisions", status_code=201)
def request_revision(
    queue_id: str,
    request: RevisionRequest,
    actor_id: str = Depends(can_approve),
) -> dict[str, Any]:
    return get_approval_service().request_revision(
        queue_id,
        actor_id,
        request.revision_type.value,
        request.description,
        priority=request.priority.value,
        fields_to_revise=request.fields_to_revise,
    )


@router.post("/queue/{queue_id}/assign", response_model=QueueItemOut)
def assign_reviewer(queue_id: str, request: AssignRequest, actor_id: str = Depends(can_approve)) -> QueueItemOut:
    return _item(get_approval_service().assign_reviewer(queue_id, request.reviewer_id, actor_id))


@router.post("/bulk/approve", response_model=BulkResult)
def bulk_approve(request: BulkActionRequest, actor_id: str = Depends(can_approve)) -> dict[str, list]:
    return get_approval_service().bulk_approve(request.queue_ids, actor_id, request.comments)


@router.post("/bulk/reject", response_model=BulkResult)
def bulk_reject(request: BulkActionRequest, actor_id: str = Depends(can_approve)) -> dict[str, list]:
    return get_approval_service().bulk_reject(request.queue_ids, actor_id, request.comments)


# =============================================================================
# SLA
# =============================================================================


@router.post("/sla/check", response_model=SLACheckResult)
def check_sla_compliance(_: str = Depends(can_approve)) -> dict[str, int]:
    return get_approval_service().check_sla_compliance()


@router.post("/queue/{queue_id}/sla/pause")
def pause_sla(queue_id: str, _: str = Depends(can_approve)) -> dict[str, Any]:
    return get_approval_service().pause_sla(queue_id)


@router.post("/queue/{queue_id}/sla/resume")
def resume_sla(queue_id: str, _: str = Depends(can_approve)) -> dict[str, Any]:
    return get_approval_service().resume_sla(queue_id)


@router.get("/sla/configurations")
def get_sla_configurations(active_only: bool = True) -> list[dict[str, Any]]:
    return get_approval_service().get_sla_configurations(active_only)


@router.get("/statistics", response_model=QueueStatistics)
def get_queue_statistics(_: str = Depends(require_actor)) -> dict[str, Any]:
    return get_approval_service().get_queue_statistics()
