"""Approval workflow request and response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueueStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    REVISION_REQUESTED = "revision_requested"
    TESTING = "testing"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class SubmissionType(str, Enum):
    NEW = "new"
    REVISION = "revision"
    UPDATE = "update"
    RESUBMISSION = "resubmission"


class ActionType(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    ASSIGN = "assign"
    ESCALATE = "escalate"
    DEFER = "defer"
    WITHDRAW = "withdraw"


class RevisionType(str, Enum):
    CONTENT = "content"
    FORMATTING = "formatting"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    METADATA = "metadata"
    TAGS = "tags"
    OTHER = "other"


class RevisionPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# =============================================================================
# Requests
# =============================================================================


class SubmitForApprovalRequest(BaseModel):
    prompt_id: str | None = None
    submission_id: str | None = None
    submission_type: SubmissionType = SubmissionType.NEW
    priority: int = Field(default=5, ge=1, le=10)
    department: str | None = None
    workflow: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusUpdateRequest(BaseModel):
    status: QueueStatus
    reason: str | None = None


class ApprovalActionRequest(BaseModel):
    action_type: ActionType
    decision: str | None = None
    comments: str | None = None
    approval_scope: str | None = Field(default=None, description="'conditional' for a conditional approval")
    conditions: list[str] = Field(default_factory=list)
    assignee_id: str | None = None


class BulkActionRequest(BaseModel):
    queue_ids: list[str] = Field(..., min_length=1)
    comments: str | None = None


class RevisionRequest(BaseModel):
    revision_type: RevisionType
    description: str = Field(..., min_length=1)
    priority: RevisionPriority = RevisionPriority.NORMAL
    fields_to_revise: list[str] = Field(default_factory=list)


class AssignRequest(BaseModel):
    reviewer_id: str


# =============================================================================
# Responses
# =============================================================================


class QueueItemOut(BaseModel):
    id: str
    prompt_id: str | None
    submission_id: str | None
    submitter_id: str
    submission_type: str
    status: str
    priority: int
    department: str | None
    workflow: str | None
    assigned_to: str | None
    assigned_at: str | None
    escalation_level: int
    is_sla_breached: bool
    notes: str | None
    metadata: dict[str, Any]
    submitted_at: str
    status_changed_at: str
    completed_at: str | None
    updated_at: str


class ActionResult(BaseModel):
    action: dict[str, Any]
    item: QueueItemOut


class BulkResult(BaseModel):
    succeeded: list[str]
    failed: list[dict[str, str]]


class SLACheckResult(BaseModel):
    checked: int
    warnings: int
    breaches: int


class QueueStatistics(BaseModel):
    total: int
    by_status: dict[str, int]
    sla_breached: int
    avg_approval_hours: float
