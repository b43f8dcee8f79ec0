"""Peer review API routes."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query

from promptdesk.core.security import require_actor, require_permission

from .schemas import (
    AssignReviewerRequest,
    CommentOut,
    CommentRequest,
    CreateSubmissionRequest,
    EscalationOut,
    ReminderRunResult,
    ResolveEscalationRequest,
    ResubmitRequest,
    ReviewerOut,
    ReviewerRequest,
    ReviewerStats,
    ReviewResult,
    SubmissionDetail,
    SubmissionOut,
    SubmitReviewRequest,
    WorkflowConfigRequest,
)
from .service import get_peer_review_service

router = APIRouter(prefix="/peer-review", tags=["peer-review"])

can_submit = require_permission("collaborate.submit")
can_review = require_permission("collaborate.review")


# =============================================================================
# Submissions
# =============================================================================


@router.post("/submissions", response_model=SubmissionOut, status_code=201)
def create_submission(request: CreateSubmissionRequest, actor_id: str = Depends(can_submit)) -> SubmissionOut:
    data = request.model_dump()
    if request.reviewer_level is not None:
        data["reviewer_level"] = request.reviewer_level.value
    submission = get_peer_review_service().create_submission(submitter_id=actor_id, **data)
    return SubmissionOut(**asdict(submission))


@router.get("/submissions", response_model=list[SubmissionOut])
def list_submissions(
    status: str | None = None,
    submitter_id: str | None = None,
    workflow: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(require_actor),
) -> list[SubmissionOut]:
    submissions = get_peer_review_service().list_submissions(status, submitter_id, workflow, limit)
    return [SubmissionOut(**asdict(s)) for s in submissions]


@router.get("/submissions/{submission_id}", response_model=SubmissionDetail)
def get_submission(submission_id: str, _: str = Depends(require_actor)) -> SubmissionDetail:
    service = get_peer_review_service()
    return SubmissionDetail(
        submission=SubmissionOut(**asdict(service.get_submission(submission_id))),
        assignments=service.get_assignments(submission_id),
        reviews=service.get_reviews(submission_id),
    )


@router.post("/submissions/{submission_id}/resubmit", response_model=SubmissionOut, status_code=201)
def resubmit(submission_id: str, request: ResubmitRequest, actor_id: str = Depends(can_submit)) -> SubmissionOut:
    submission = get_peer_review_service().resubmit(submission_id, actor_id, **request.model_dump())
    return SubmissionOut(**asdict(submission))


@router.post("/submissions/{submission_id}/withdraw", response_model=SubmissionOut)
def withdraw(submission_id: str, actor_id: str = Depends(require_actor)) -> SubmissionOut:
    return SubmissionOut(**asdict(get_peer_review_service().withdraw(submission_id, actor_id)))


@router.get("/submissions/{submission_id}/audit-log")
def get_submission_audit_log(submission_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_peer_review_service().get_audit_log(submission_id)


# =============================================================================
# Assignment
# =============================================================================


@router.post("/submissions/{submission_id}/auto-assign")
def auto_assign_reviewers(submission_id: str, actor_id: str = Depends(require_actor)) -> list[dict[str, Any]]:
    """Assign the best available reviewers to a submission."""
    return get_peer_review_service().auto_assign_reviewers(submission_id, assigned_by=actor_id)


@router.post("/submissions/{submission_id}/assignments", status_code=201)
def assign_reviewer(
    submission_id: str,
    request: AssignReviewerRequest,
    actor_id: str = Depends(require_actor),
) -> dict[str, Any]:
    return get_peer_review_service().assign_reviewer(submission_id, request.reviewer_id, assigned_by=actor_id)


@router.get("/reviewers/available", response_model=list[ReviewerOut])
def find_available_reviewers(
    workflow: str,
    role: str,
    required_level: str = "any",
    limit: int | None = Query(default=None, ge=1),
    _: str = Depends(require_actor),
) -> list[dict[str, Any]]:
    return get_peer_review_service().find_available_reviewers(workflow, role, required_level, limit)


@router.get("/reviewers/{reviewer_id}/queue")
def get_reviewer_queue(reviewer_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_peer_review_service().get_reviewer_queue(reviewer_id)


# =============================================================================
# Reviews
# =============================================================================


@router.post("/submissions/{submission_id}/reviews", response_model=ReviewResult, status_code=201)
def submit_review(
    submission_id: str,
    request: SubmitReviewRequest,
    actor_id: str = Depends(can_review),
) -> dict[str, Any]:
    return get_peer_review_service().submit_review(
        submission_id,
        actor_id,
        ratings=request.ratings.model_dump(),
        recommendation=request.recommendation.value,
        strengths=request.strengths,
        weaknesses=request.weaknesses,
        suggestions=request.suggestions,
    )


@router.post("/submissions/{submission_id}/check-approval")
def check_approval(submission_id: str, _: str = Depends(require_actor)) -> dict[str, bool]:
    return {"approved": get_peer_review_service().check_submission_approval_criteria(submission_id)}


# =============================================================================
# Comments
# =============================================================================


@router.get("/submissions/{submission_id}/comments", response_model=list[CommentOut])
def get_comments(submission_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    """Comment threads for a submission, replies nested under their parents."""
    return get_peer_review_service().get_comments(submission_id)


@router.post("/submissions/{submission_id}/comments", response_model=CommentOut, status_code=201)
def add_comment(submission_id: str, request: CommentRequest, actor_id: str = Depends(require_actor)) -> dict[str, Any]:
    return get_peer_review_service().add_comment(
        submission_id,
        actor_id,
        request.comment_text,
        comment_type=request.comment_type.value,
        parent_comment_id=request.parent_comment_id,
    )


@router.post("/comments/{comment_id}/resolve", response_model=CommentOut)
def resolve_comment(comment_id: str, actor_id: str = Depends(require_actor)) -> dict[str, Any]:
    return get_peer_review_service().resolve_comment(comment_id, actor_id)


# =============================================================================
# Reviewer Profiles and Workflow Config
# =============================================================================


@router.put("/reviewers/{reviewer_id}", response_model=ReviewerOut)
def upsert_reviewer(
    reviewer_id: str,
    request: ReviewerRequest,
    _: str = Depends(require_permission("roles.manage")),
) -> dict[str, Any]:
    data = request.model_dump()
    data["expertise_level"] = request.expertise_level.value
    return get_peer_review_service().upsert_reviewer(reviewer_id, **data)


@router.get("/reviewers/{reviewer_id}", response_model=ReviewerOut)
def get_reviewer(reviewer_id: str, _: str = Depends(require_actor)) -> dict[str, Any]:
    return get_peer_review_service().get_reviewer(reviewer_id)


@router.get("/reviewers/{reviewer_id}/stats", response_model=ReviewerStats)
def get_reviewer_stats(reviewer_id: str, _: str = Depends(require_actor)) -> dict[str, Any]:
    return get_peer_review_service().get_reviewer_stats(reviewer_id)


@router.get("/workflows/{workflow}/config")
def get_workflow_config(workflow: str) -> dict[str, Any]:
    return get_peer_review_service().get_workflow_config(workflow)


@router.put("/workflows/{workflow}/config")
def set_workflow_config(
    workflow: str,
    request: WorkflowConfigRequest,
    _: str = Depends(require_permission("roles.manage")),
) -> dict[str, Any]:
    return get_peer_review_service().set_workflow_config(
        workflow, request.min_reviewers, request.required_approvals, request.reviewer_level.value
    )


# =============================================================================
# Reminders and Escalation
# =============================================================================


@router.get("/overdue")
def list_overdue_reviews(
    min_hours: float = Query(default=24, ge=0),
    _: str = Depends(can_review),
) -> list[dict[str, Any]]:
    return get_peer_review_service().check_overdue_reviews(min_hours=min_hours)


@router.post("/reminders/run", response_model=ReminderRunResult)
def run_reminders(_: str = Depends(require_permission("roles.manage"))) -> dict[str, int]:
    """Send due reminders and escalate long-overdue assignments."""
    return get_peer_review_service().process_reminders()


@router.get("/escalations", response_model=list[EscalationOut])
def get_active_escalations(
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(can_review),
) -> list[dict[str, Any]]:
    return get_peer_review_service().get_active_escalations(limit)


@router.post("/escalations/{escalation_id}/resolve", response_model=EscalationOut)
def resolve_escalation(
    escalation_id: str,
    request: ResolveEscalationRequest,
    actor_id: str = Depends(can_review),
) -> dict[str, Any]:
    return get_peer_review_service().resolve_escalation(escalation_id, actor_id, request.notes)
