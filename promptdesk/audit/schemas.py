"""Audit trail schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Enums
# ============================================================================


class AuditEventType(str, Enum):
    """Kinds of audited events."""

    PROMPT_CREATE = "prompt_create"
    PROMPT_UPDATE = "prompt_update"
    PROMPT_DELETE = "prompt_delete"
    PROMPT_PUBLISH = "prompt_publish"
    APPROVAL_SUBMIT = "approval_submit"
    APPROVAL_APPROVE = "approval_approve"
    APPROVAL_REJECT = "approval_reject"
    APPROVAL_REVISION = "approval_revision"
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    USER_DELETE = "user_delete"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    ROLE_ASSIGN = "role_assign"
    ROLE_REVOKE = "role_revoke"
    PERMISSION_GRANT = "permission_grant"
    PERMISSION_REVOKE = "permission_revoke"
    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"
    DATA_DELETE = "data_delete"
    SYSTEM_CONFIG = "system_config"
    SECURITY_CHANGE = "security_change"
    COMPLIANCE_REPORT = "compliance_report"
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"


class AuditCategory(str, Enum):
    CONTENT = "content"
    WORKFLOW = "workflow"
    USER_MANAGEMENT = "user_management"
    SECURITY = "security"
    DATA = "data"
    SYSTEM = "system"
    COMPLIANCE = "compliance"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class SnapshotType(str, Enum):
    PRE_CHANGE = "pre_change"
    POST_CHANGE = "post_change"
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    COMPLIANCE = "compliance"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


# ============================================================================
# Events
# ============================================================================


class AuditEventOut(BaseModel):
    """A stored audit event."""

    event_id: str
    sequence_number: int
    event_type: str
    event_category: str
    severity: str
    action: str
    actor_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changes: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: str | None = None
    previous_hash: str
    event_hash: str
    created_at: str


class LogEventRequest(BaseModel):
    """Request to append an audit event."""

    event_type: AuditEventType
    category: AuditCategory
    action: str = Field(..., min_length=1)
    resource_type: str | None = None
    resource_id: str | None = None
    severity: AuditSeverity = AuditSeverity.INFO
    success: bool = True
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    error_message: str | None = None


class BrokenLink(BaseModel):
    event_id: str
    sequence_number: int
    reason: str  # hash_mismatch, chain_break


class ChainVerification(BaseModel):
    """Result of re-walking the hash chain."""

    is_valid: bool
    total_events: int
    verified_events: int
    broken_links: list[BrokenLink] = Field(default_factory=list)


# ============================================================================
# Snapshots
# ============================================================================


class SnapshotRequest(BaseModel):
    resource_type: str
    resource_id: str
    data: dict[str, Any]
    snapshot_type: SnapshotType = SnapshotType.SCHEDULED


class SnapshotOut(BaseModel):
    id: str
    resource_type: str
    resource_id: str
    snapshot_type: str
    snapshot_data: dict[str, Any]
    snapshot_hash: str
    created_by: str | None = None
    created_at: str


# ============================================================================
# Reports
# ============================================================================


class ComplianceReportRequest(BaseModel):
    report_type: str = Field(..., description="e.g. periodic, incident, regulatory")
    report_name: str
    start_date: datetime
    end_date: datetime
    compliance_framework: str | None = None


class ComplianceFindings(BaseModel):
    total_events: int
    high_severity_events: int
    critical_severity_events: int
    failed_actions: int
    data_exports: int
    security_changes: int
    compliance_issues: list[str] = Field(default_factory=list)


class ComplianceReportOut(BaseModel):
    id: str
    report_type: str
    report_name: str
    compliance_framework: str | None = None
    time_period_start: str
    time_period_end: str
    event_count: int
    user_count: int
    findings: ComplianceFindings
    summary: str
    statistics: dict[str, Any] | None = None
    generated_by: str | None = None
    created_at: str


class AuditStatistics(BaseModel):
    by_category: dict[str, int]
    by_type: dict[str, int]
    total_events: int
    success_rate: float
