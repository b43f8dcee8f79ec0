"""Peer review request and response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ExpertiseLevel(str, Enum):
    JUNIOR = "junior"
    SENIOR = "senior"
    EXPERT = "expert"


class Recommendation(str, Enum):
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    REJECT = "reject"


class CommentType(str, Enum):
    GENERAL = "general"
    QUESTION = "question"
    SUGGESTION = "suggestion"
    CONCERN = "concern"
    PRAISE = "praise"


# =============================================================================
# Submissions
# =============================================================================


class CreateSubmissionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    workflow: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    prompt_content: str = Field(..., min_length=1)
    description: str | None = None
    department: str | None = None
    sample_output: str | None = None
    required_approvals: int | None = Field(default=None, ge=1)
    reviewer_level: ExpertiseLevel | None = None


class ResubmitRequest(BaseModel):
    prompt_content: str | None = None
    title: str | None = None
    description: str | None = None
    sample_output: str | None = None


class SubmissionOut(BaseModel):
    id: str
    title: str
    workflow: str
    role: str
    department: str | None
    description: str | None
    prompt_content: str
    sample_output: str | None
    submitter_id: str
    status: str
    required_approvals: int
    reviewer_level: str
    submission_version: int
    parent_submission_id: str | None
    approved_at: str | None
    created_at: str
    updated_at: str


class SubmissionDetail(BaseModel):
    submission: SubmissionOut
    assignments: list[dict[str, Any]]
    reviews: list[dict[str, Any]]


# =============================================================================
# Reviewers
# =============================================================================


class ReviewerRequest(BaseModel):
    workflows: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    expertise_level: ExpertiseLevel = ExpertiseLevel.SENIOR
    max_concurrent_reviews: int = Field(default=5, ge=1)
    is_available: bool = True
    is_active: bool = True


class ReviewerOut(BaseModel):
    reviewer_id: str
    workflows: list[str] | None
    roles: list[str] | None
    expertise_level: str
    max_concurrent_reviews: int
    current_review_count: int
    is_available: bool
    is_active: bool
    last_review_at: str | None
    match_score: int | None = None


class WorkflowConfigRequest(BaseModel):
    min_reviewers: int = Field(default=2, ge=1)
    required_approvals: int = Field(default=2, ge=1)
    reviewer_level: ExpertiseLevel = ExpertiseLevel.SENIOR


class AssignReviewerRequest(BaseModel):
    reviewer_id: str


class ReviewerStats(BaseModel):
    reviewer_id: str
    completed_reviews: int
    avg_overall_rating: float
    approval_rate: float
    current_load: int


# =============================================================================
# Reviews and Comments
# =============================================================================


class Ratings(BaseModel):
    accuracy: int = Field(..., ge=1, le=5)
    clarity: int = Field(..., ge=1, le=5)
    usefulness: int = Field(..., ge=1, le=5)
    completeness: int = Field(..., ge=1, le=5)
    overall: int = Field(..., ge=1, le=5)


class SubmitReviewRequest(BaseModel):
    ratings: Ratings
    recommendation: Recommendation
    strengths: str | None = None
    weaknesses: str | None = None
    suggestions: str | None = None


class ReviewResult(BaseModel):
    review: dict[str, Any]
    submission_status: str


class CommentRequest(BaseModel):
    comment_text: str = Field(..., min_length=1)
    comment_type: CommentType = CommentType.GENERAL
    parent_comment_id: str | None = None


class CommentOut(BaseModel):
    id: str
    submission_id: str
    author_id: str
    parent_comment_id: str | None
    comment_text: str
    comment_type: str
    thread_depth: int
    is_resolved: bool
    resolved_by: str | None = None
    resolved_at: str | None = None
    created_at: str
    updated_at: str
    replies: list[CommentOut] = Field(default_factory=list)


# =============================================================================
# Reminders and Escalation
# =============================================================================


class ReminderRunResult(BaseModel):
    checked: int
    sent: int
    escalated: int


class ResolveEscalationRequest(BaseModel):
    notes: str | None = None


class EscalationOut(BaseModel):
    id: str
    submission_id: str
    assignment_id: str | None
    reviewer_id: str | None
    rule_id: str | None
    escalation_level: int
    escalated_to_id: str | None
    reason: str
    hours_overdue: float | None
    notification_sent: bool
    resolved: bool
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None
    created_at: str
