"""
Data models for the persistence layer.

Uses dataclasses for lightweight, serialization-friendly record types.
These mirror the database schema and are converted to Pydantic models at
the API boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import json
import uuid


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def to_iso(dt: datetime) -> str:
    """Render a datetime as a UTC ISO 8601 string with microseconds.

    The fixed width keeps stored timestamps lexically ordered.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return to_iso(datetime.now(timezone.utc))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def dumps(value: Any) -> str | None:
    """Serialize a JSON column value (None stays NULL)."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def loads(value: str | None, default: Any = None) -> Any:
    """Deserialize a JSON column value."""
    if value is None or value == "":
        return default
    return json.loads(value)


# =============================================================================
# Prompt Records
# =============================================================================


@dataclass
class PromptRecord:
    """Database record for a library prompt."""

    title: str
    content: str
    author_id: str
    id: str = field(default_factory=generate_uuid)
    description: str | None = None
    role: str | None = None
    department: str | None = None
    workflow: str | None = None
    prompt_type: str = "general"
    status: str = "draft"
    visibility: str = "private"
    created_by: str | None = None
    department_id: str | None = None
    team_id: str | None = None
    is_template: bool = False
    is_archived: bool = False
    archived_at: str | None = None
    usage_count: int = 0
    rating_average: float = 0.0
    rating_count: int = 0
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PromptRecord:
        """Create from database row."""
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            content=row["content"],
            role=row["role"],
            department=row["department"],
            workflow=row["workflow"],
            prompt_type=row["prompt_type"],
            status=row["status"],
            visibility=row["visibility"],
            author_id=row["author_id"],
            created_by=row["created_by"],
            department_id=row["department_id"],
            team_id=row["team_id"],
            is_template=bool(row["is_template"]),
            is_archived=bool(row["is_archived"]),
            archived_at=row["archived_at"],
            usage_count=row["usage_count"],
            rating_average=row["rating_average"],
            rating_count=row["rating_count"],
            tags=loads(row["tags"], []),
            metadata=loads(row["metadata"], {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "role": self.role,
            "department": self.department,
            "workflow": self.workflow,
            "prompt_type": self.prompt_type,
            "status": self.status,
            "visibility": self.visibility,
            "author_id": self.author_id,
            "created_by": self.created_by,
            "department_id": self.department_id,
            "team_id": self.team_id,
            "is_template": 1 if self.is_template else 0,
            "is_archived": 1 if self.is_archived else 0,
            "archived_at": self.archived_at,
            "usage_count": self.usage_count,
            "rating_average": self.rating_average,
            "rating_count": self.rating_count,
            "tags": dumps(self.tags),
            "metadata": dumps(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class PromptVersionRecord:
    """Database record for an immutable prompt version."""

    prompt_id: str
    version_number: int
    title: str
    prompt_text: str
    change_type: str  # major, minor, patch, rollback
    id: str = field(default_factory=generate_uuid)
    change_summary: str | None = None
    author_id: str | None = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PromptVersionRecord:
        """Create from database row."""
        return cls(
            id=row["id"],
            prompt_id=row["prompt_id"],
            version_number=row["version_number"],
            title=row["title"],
            prompt_text=row["prompt_text"],
            change_summary=row["change_summary"],
            change_type=row["change_type"],
            author_id=row["author_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt_id": self.prompt_id,
            "version_number": self.version_number,
            "title": self.title,
            "prompt_text": self.prompt_text,
            "change_summary": self.change_summary,
            "change_type": self.change_type,
            "author_id": self.author_id,
            "created_at": self.created_at,
        }


# =============================================================================
# Peer Review Records
# =============================================================================


@dataclass
class SubmissionRecord:
    """Database record for a peer review submission."""

    title: str
    workflow: str
    role: str
    prompt_content: str
    submitter_id: str
    id: str = field(default_factory=generate_uuid)
    department: str | None = None
    description: str | None = None
    sample_output: str | None = None
    status: str = "pending"
    required_approvals: int = 2
    reviewer_level: str = "senior"
    submission_version: int = 1
    parent_submission_id: str | None = None
    approved_at: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SubmissionRecord:
        """Create from database row."""
        return cls(
            id=row["id"],
            title=row["title"],
            workflow=row["workflow"],
            role=row["role"],
            department=row["department"],
            description=row["description"],
            prompt_content=row["prompt_content"],
            sample_output=row["sample_output"],
            submitter_id=row["submitter_id"],
            status=row["status"],
            required_approvals=row["required_approvals"],
            reviewer_level=row["reviewer_level"],
            submission_version=row["submission_version"],
            parent_submission_id=row["parent_submission_id"],
            approved_at=row["approved_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "workflow": self.workflow,
            "role": self.role,
            "department": self.department,
            "description": self.description,
            "prompt_content": self.prompt_content,
            "sample_output": self.sample_output,
            "submitter_id": self.submitter_id,
            "status": self.status,
            "required_approvals": self.required_approvals,
            "reviewer_level": self.reviewer_level,
            "submission_version": self.submission_version,
            "parent_submission_id": self.parent_submission_id,
            "approved_at": self.approved_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# =============================================================================
# Approval Queue Record
# =============================================================================


@dataclass
class QueueItemRecord:
    """Database record for an approval queue item."""

    submitter_id: str
    id: str = field(default_factory=generate_uuid)
    prompt_id: str | None = None
    submission_id: str | None = None
    submission_type: str = "new"
    status: str = "pending"
    priority: int = 5
    department: str | None = None
    workflow: str | None = None
    assigned_to: str | None = None
    assigned_at: str | None = None
    escalation_level: int = 0
    is_sla_breached: bool = False
    notes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    submitted_at: str = field(default_factory=now_iso)
    status_changed_at: str = field(default_factory=now_iso)
    completed_at: str | None = None
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueItemRecord:
        """Create from database row."""
        return cls(
            id=row["id"],
            prompt_id=row["prompt_id"],
            submission_id=row["submission_id"],
            submitter_id=row["submitter_id"],
            submission_type=row["submission_type"],
            status=row["status"],
            priority=row["priority"],
            department=row["department"],
            workflow=row["workflow"],
            assigned_to=row["assigned_to"],
            assigned_at=row["assigned_at"],
            escalation_level=row["escalation_level"],
            is_sla_breached=bool(row["is_sla_breached"]),
            notes=row["notes"],
            metadata=loads(row["metadata"], {}),
            submitted_at=row["submitted_at"],
            status_changed_at=row["status_changed_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt_id": self.prompt_id,
            "submission_id": self.submission_id,
            "submitter_id": self.submitter_id,
            "submission_type": self.submission_type,
            "status": self.status,
            "priority": self.priority,
            "department": self.department,
            "workflow": self.workflow,
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at,
            "escalation_level": self.escalation_level,
            "is_sla_breached": 1 if self.is_sla_breached else 0,
            "notes": self.notes,
            "metadata": dumps(self.metadata),
            "submitted_at": self.submitted_at,
            "status_changed_at": self.status_changed_at,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }


# =============================================================================
# Audit Event Record
# =============================================================================


@dataclass
class AuditEventRecord:
    """Database record for a hash-chained audit event."""

    event_id: str
    sequence_number: int
    event_type: str
    event_category: str
    action: str
    previous_hash: str
    event_hash: str
    id: str = field(default_factory=generate_uuid)
    severity: str = "info"
    actor_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changes: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_message: str | None = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AuditEventRecord:
        """Create from database row."""
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            sequence_number=row["sequence_number"],
            event_type=row["event_type"],
            event_category=row["event_category"],
            severity=row["severity"],
            action=row["action"],
            actor_id=row["actor_id"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            old_values=loads(row["old_values"]),
            new_values=loads(row["new_values"]),
            changes=loads(row["changes"], []),
            metadata=loads(row["metadata"], {}),
            success=bool(row["success"]),
            error_message=row["error_message"],
            previous_hash=row["previous_hash"],
            event_hash=row["event_hash"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "sequence_number": self.sequence_number,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "severity": self.severity,
            "action": self.action,
            "actor_id": self.actor_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "old_values": dumps(self.old_values),
            "new_values": dumps(self.new_values),
            "changes": dumps(self.changes),
            "metadata": dumps(self.metadata),
            "success": 1 if self.success else 0,
            "error_message": self.error_message,
            "previous_hash": self.previous_hash,
            "event_hash": self.event_hash,
            "created_at": self.created_at,
        }


def row_to_dict(row: Any, json_fields: tuple[str, ...] = (), bool_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    """Convert a result row to a plain dict, decoding JSON and boolean columns."""
    data = dict(row._mapping)
    for name in json_fields:
        if name in data:
            data[name] = loads(data[name])
    for name in bool_fields:
        if name in data and data[name] is not None:
            data[name] = bool(data[name])
    return data
