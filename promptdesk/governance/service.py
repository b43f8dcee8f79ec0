"""
Data governance.

Retention policies, data classification, lineage, field masking, privacy
(data subject) requests and lifecycle events, plus summary reports and a
compliance score over them.
"""

from __future__ import annotations

import hashlib
import secrets
import string
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.audit.schemas import AuditCategory, AuditEventType, AuditSeverity
from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db, get_table_stats
from promptdesk.storage.models import dumps, generate_uuid, parse_iso, row_to_dict, to_iso, utcnow

log = get_logger(__name__)

DATA_TYPES = [
    "prompts", "test_results", "user_data", "reviews", "comments",
    "analytics", "audit_logs", "reports", "sessions", "notifications",
]
SCHEDULE_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}
# data_type -> table swept by a retention policy
RETENTION_TABLES = {
    "prompts": "prompt_submissions",
    "reviews": "peer_reviews",
    "comments": "review_comments",
    "analytics": "analytics_events",
    "notifications": "review_notifications",
    "reports": "governance_reports",
    "sessions": "search_analytics",
}
RETENTION_BATCH = 1000

SENSITIVITY_SCORES = {
    "public": 1,
    "internal": 3,
    "confidential": 5,
    "restricted": 7,
    "highly_restricted": 10,
}
PII_MIN_SCORE = 7
CLASSIFICATION_REVIEW_DAYS = 365

RELATIONSHIP_TYPES = [
    "derived_from", "references", "contains", "created_by", "modified_by",
    "tested_with", "reviewed_in", "approved_as", "exported_to",
]
MASKING_METHODS = ["redact", "partial", "hash", "null", "static"]

PRIVACY_REQUEST_TYPES = [
    "access", "portability", "deletion", "rectification",
    "restriction", "objection", "opt_out", "do_not_sell",
]
PRIVACY_STATUSES = ["pending", "verified", "in_progress", "completed", "rejected", "cancelled"]
CLOSED_PRIVACY_STATUSES = ("completed", "rejected", "cancelled")

LIFECYCLE_EVENT_TYPES = ["archived", "deleted", "purged", "anonymized", "masked", "restored"]
LIFECYCLE_ACTIONS = ["soft_delete", "hard_delete", "archive", "anonymize", "mask", "restore"]

REPORT_TYPES = [
    "retention_compliance", "data_inventory", "privacy_requests",
    "classification_summary", "lifecycle_activities", "storage_analysis",
]


def mask_sensitive_data(value: Any, method: str, preserve_length: bool = False) -> Any:
    """Mask a single value.

    Args:
        value: Value to mask (non-strings are converted with str())
        method: redact, partial, hash, null or static
        preserve_length: For redact, keep the original length

    Returns:
        The masked value; unknown methods return the value unchanged
    """
    if value is None:
        return None
    raw = str(value)
    if method == "redact":
        return "*" * len(raw) if preserve_length else "***REDACTED***"
    if method == "partial":
        if len(raw) <= 4:
            return "*" * len(raw)
        return raw[:2] + "*" * (len(raw) - 4) + raw[-2:]
    if method == "hash":
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
    if method == "null":
        return None
    if method == "static":
        return "[MASKED]"
    return value


def generate_request_number(now: datetime) -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(9))
    return f"PR-{int(now.timestamp() * 1000)}-{suffix}"


def sensitivity_score(level: str, contains_pii: bool) -> int:
    score = SENSITIVITY_SCORES[level]
    return max(score, PII_MIN_SCORE) if contains_pii else score


class GovernanceService:
    """Retention, classification, lineage, masking and privacy requests."""

    def __init__(self, privacy_deadline_days: int = 30):
        self.privacy_deadline_days = privacy_deadline_days

    # =========================================================================
    # Retention Policies
    # =========================================================================

    def create_retention_policy(
        self,
        policy_name: str,
        data_type: str,
        retention_days: int,
        soft_delete: bool = True,
        execution_schedule: str = "daily",
        description: str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if not policy_name or not policy_name.strip():
            raise ValidationError("policy_name", "Policy name is required")
        if data_type not in DATA_TYPES:
            raise ValidationError("data_type", f"Must be one of: {', '.join(DATA_TYPES)}")
        if retention_days <= 0:
            raise ValidationError("retention_days", "Retention days must be positive")
        if execution_schedule not in SCHEDULE_INTERVALS:
            raise ValidationError("execution_schedule", f"Must be one of: {', '.join(SCHEDULE_INTERVALS)}")

        now = now or utcnow()
        policy_id = generate_uuid()
        with get_db() as conn:
            if conn.execute(
                text("SELECT 1 FROM data_retention_policies WHERE policy_name = :n"), {"n": policy_name}
            ).fetchone():
                raise ConflictError(f"Retention policy '{policy_name}' already exists")
            conn.execute(
                text("""
                INSERT INTO data_retention_policies
                (id, policy_name, data_type, retention_days, soft_delete, execution_schedule, is_active,
                 description, next_execution_at, created_by, created_at, updated_at)
                VALUES (:id, :name, :data_type, :days, :soft, :schedule, 1, :description, :next,
                        :actor, :ts, :ts)
                """),
                {
                    "id": policy_id,
                    "name": policy_name.strip(),
                    "data_type": data_type,
                    "days": retention_days,
                    "soft": 1 if soft_delete else 0,
                    "schedule": execution_schedule,
                    "description": description,
                    "next": to_iso(now + SCHEDULE_INTERVALS[execution_schedule]),
                    "actor": actor_id,
                    "ts": to_iso(now),
                },
            )
            conn.commit()
        return self.get_retention_policy(policy_id)

    def get_retention_policy(self, policy_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM data_retention_policies WHERE id = :id"), {"id": policy_id}
            ).fetchone()
        if row is None:
            raise NotFoundError("Retention policy", policy_id)
        return row_to_dict(row, bool_fields=("soft_delete", "is_active"))

    def list_retention_policies(self, active_only: bool = False) -> list[dict[str, Any]]:
        sql = "SELECT * FROM data_retention_policies"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY policy_name"
        with get_db() as conn:
            rows = conn.execute(text(sql)).fetchall()
        return [row_to_dict(r, bool_fields=("soft_delete", "is_active")) for r in rows]

    def set_policy_active(self, policy_id: str, is_active: bool) -> dict[str, Any]:
        with get_db() as conn:
            result = conn.execute(
                text("UPDATE data_retention_policies SET is_active = :a, updated_at = :ts WHERE id = :id"),
                {"a": 1 if is_active else 0, "ts": to_iso(utcnow()), "id": policy_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Retention policy", policy_id)
            conn.commit()
        return self.get_retention_policy(policy_id)

    def apply_retention_policy(self, policy_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Sweep records older than the policy's retention window.

        Each affected record gets an ``archived`` lifecycle event; hard-delete
        policies also remove the rows.
        """
        now = now or utcnow()
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM data_retention_policies WHERE id = :id AND is_active = 1"), {"id": policy_id}
            ).fetchone()
            if row is None:
                return {"success": False, "error": "Policy not found or inactive"}
            policy = dict(row._mapping)

            cutoff = now - timedelta(days=policy["retention_days"])
            action = "soft_delete" if policy["soft_delete"] else "hard_delete"
            table = RETENTION_TABLES.get(policy["data_type"])
            ids: list[str] = []
            if table:
                ids = [
                    r[0] for r in conn.execute(
                        text(f"SELECT id FROM {table} WHERE created_at < :cutoff ORDER BY created_at LIMIT :n"),
                        {"cutoff": to_iso(cutoff), "n": RETENTION_BATCH},
                    ).fetchall()
                ]

            for resource_id in ids:
                self._lifecycle(conn, "archived", policy["data_type"], resource_id, action,
                                policy_id=policy_id, reason="Automatic retention policy execution", now=now)
            if ids and action == "hard_delete":
                for resource_id in ids:
                    conn.execute(text(f"DELETE FROM {table} WHERE id = :id"), {"id": resource_id})
                get_audit_service().log_event(
                    AuditEventType.DATA_DELETE,
                    AuditCategory.DATA,
                    "retention_delete",
                    resource_type=policy["data_type"],
                    severity=AuditSeverity.WARNING,
                    metadata={"policy_id": policy_id, "records": len(ids)},
                    conn=conn,
                )

            conn.execute(
                text("""
                UPDATE data_retention_policies
                SET last_executed_at = :ts, next_execution_at = :next, updated_at = :ts
                WHERE id = :id
                """),
                {
                    "ts": to_iso(now),
                    "next": to_iso(now + SCHEDULE_INTERVALS.get(policy["execution_schedule"], timedelta(days=1))),
                    "id": policy_id,
                },
            )
            conn.commit()

        log.info("retention_policy_applied", policy=policy["policy_name"], records=len(ids), action=action)
        return {
            "success": True,
            "policy_name": policy["policy_name"],
            "records_affected": len(ids),
            "cutoff_date": to_iso(cutoff),
        }

    def run_due_policies(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """Apply every active policy whose next execution time has passed."""
        now = now or utcnow()
        with get_db() as conn:
            due = conn.execute(
                text("""
                SELECT id FROM data_retention_policies
                WHERE is_active = 1 AND (next_execution_at IS NULL OR next_execution_at <= :now)
                ORDER BY policy_name
                """),
                {"now": to_iso(now)},
            ).fetchall()
        return [self.apply_retention_policy(r[0], now) for r in due]

    # =========================================================================
    # Classification
    # =========================================================================

    def classify_data(
        self,
        resource_type: str,
        resource_id: str,
        level: str,
        contains_pii: bool = False,
        pii_types: list[str] | None = None,
        tags: list[str] | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Classify a resource; reclassifying replaces the previous entry."""
        if level not in SENSITIVITY_SCORES:
            raise ValidationError("classification_level", f"Must be one of: {', '.join(SENSITIVITY_SCORES)}")
        now = now or utcnow()
        ts = to_iso(now)
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO data_classifications
                (id, resource_type, resource_id, classification_level, sensitivity_score, contains_pii,
                 pii_types, tags, classified_by, review_due_at, created_at, updated_at)
                VALUES (:id, :rtype, :rid, :level, :score, :pii, :pii_types, :tags, :actor, :due, :ts, :ts)
                ON CONFLICT (resource_type, resource_id) DO UPDATE SET
                    classification_level = excluded.classification_level,
                    sensitivity_score = excluded.sensitivity_score,
                    contains_pii = excluded.contains_pii,
                    pii_types = excluded.pii_types,
                    tags = excluded.tags,
                    classified_by = excluded.classified_by,
                    review_due_at = excluded.review_due_at,
                    updated_at = excluded.updated_at
                """),
                {
                    "id": generate_uuid(),
                    "rtype": resource_type,
                    "rid": resource_id,
                    "level": level,
                    "score": sensitivity_score(level, contains_pii),
                    "pii": 1 if contains_pii else 0,
                    "pii_types": dumps(pii_types or []),
                    "tags": dumps(tags or []),
                    "actor": actor_id,
                    "due": to_iso(now + timedelta(days=CLASSIFICATION_REVIEW_DAYS)),
                    "ts": ts,
                },
            )
            conn.commit()
        return self.get_classification(resource_type, resource_id)

    def get_classification(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM data_classifications WHERE resource_type = :t AND resource_id = :i"),
                {"t": resource_type, "i": resource_id},
            ).fetchone()
        if row is None:
            raise NotFoundError("Classification", f"{resource_type}/{resource_id}")
        return row_to_dict(row, json_fields=("pii_types", "tags"), bool_fields=("contains_pii",))

    def list_classifications(self, level: str | None = None, contains_pii: bool | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM data_classifications WHERE 1=1"
        params: dict[str, Any] = {}
        if level:
            sql += " AND classification_level = :level"
            params["level"] = level
        if contains_pii is not None:
            sql += " AND contains_pii = :pii"
            params["pii"] = 1 if contains_pii else 0
        sql += " ORDER BY sensitivity_score DESC, updated_at DESC"
        with get_db() as conn:
            rows = conn.execute(text(sql), params).fetchall()
        return [row_to_dict(r, json_fields=("pii_types", "tags"), bool_fields=("contains_pii",)) for r in rows]

    def get_data_inventory(self) -> dict[str, Any]:
        with get_db() as conn:
            rows = conn.execute(
                text("SELECT classification_level, resource_type FROM data_classifications")
            ).fetchall()
        return {
            "total_classified": len(rows),
            "by_classification_level": dict(Counter(r.classification_level for r in rows)),
            "by_resource_type": dict(Counter(r.resource_type for r in rows)),
        }

    # =========================================================================
    # Lineage
    # =========================================================================

    def record_lineage(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
        relationship_type: str,
        transformation: str | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        if relationship_type not in RELATIONSHIP_TYPES:
            raise ValidationError("relationship_type", f"Must be one of: {', '.join(RELATIONSHIP_TYPES)}")
        if (source_type, source_id) == (target_type, target_id):
            raise ValidationError("target_id", "A resource cannot be linked to itself")

        lineage = {
            "id": generate_uuid(),
            "source_type": source_type,
            "source_id": source_id,
            "target_type": target_type,
            "target_id": target_id,
            "relationship_type": relationship_type,
            "transformation": transformation,
            "created_by": actor_id,
            "created_at": to_iso(utcnow()),
        }
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO data_lineage
                (id, source_type, source_id, target_type, target_id, relationship_type,
                 transformation, created_by, created_at)
                VALUES (:id, :source_type, :source_id, :target_type, :target_id, :relationship_type,
                        :transformation, :created_by, :created_at)
                """),
                lineage,
            )
            conn.commit()
        return lineage

    def get_lineage(self, resource_type: str, resource_id: str, direction: str = "both") -> dict[str, list]:
        """Lineage links for a resource.

        ``upstream`` holds links where the resource is the target,
        ``downstream`` links where it is the source.
        """
        if direction not in ("upstream", "downstream", "both"):
            raise ValidationError("direction", "Must be one of: upstream, downstream, both")
        params = {"t": resource_type, "i": resource_id}
        lineage: dict[str, list] = {"upstream": [], "downstream": []}
        with get_db() as conn:
            if direction in ("upstream", "both"):
                lineage["upstream"] = [dict(r._mapping) for r in conn.execute(
                    text("""
                    SELECT * FROM data_lineage WHERE target_type = :t AND target_id = :i ORDER BY created_at
                    """),
                    params,
                ).fetchall()]
            if direction in ("downstream", "both"):
                lineage["downstream"] = [dict(r._mapping) for r in conn.execute(
                    text("""
                    SELECT * FROM data_lineage WHERE source_type = :t AND source_id = :i ORDER BY created_at
                    """),
                    params,
                ).fetchall()]
        return lineage

    # =========================================================================
    # Masking
    # =========================================================================

    def create_masking_rule(
        self,
        rule_name: str,
        resource_type: str,
        field_name: str,
        masking_method: str,
        preserve_length: bool = False,
    ) -> dict[str, Any]:
        if masking_method not in MASKING_METHODS:
            raise ValidationError("masking_method", f"Must be one of: {', '.join(MASKING_METHODS)}")
        rule = {
            "id": generate_uuid(),
            "rule_name": rule_name,
            "resource_type": resource_type,
            "field_name": field_name,
            "masking_method": masking_method,
            "preserve_length": preserve_length,
            "is_active": True,
            "created_at": to_iso(utcnow()),
        }
        with get_db() as conn:
            if conn.execute(
                text("SELECT 1 FROM data_masking_rules WHERE rule_name = :n"), {"n": rule_name}
            ).fetchone():
                raise ConflictError(f"Masking rule '{rule_name}' already exists")
            conn.execute(
                text("""
                INSERT INTO data_masking_rules
                (id, rule_name, resource_type, field_name, masking_method, preserve_length, is_active, created_at)
                VALUES (:id, :rule_name, :resource_type, :field_name, :masking_method, :preserve_length,
                        1, :created_at)
                """),
                {**rule, "preserve_length": 1 if preserve_length else 0},
            )
            conn.commit()
        return rule

    def list_masking_rules(self, resource_type: str | None = None, active_only: bool = False) -> list[dict[str, Any]]:
        sql = "SELECT * FROM data_masking_rules WHERE 1=1"
        params: dict[str, Any] = {}
        if resource_type:
            sql += " AND resource_type = :t"
            params["t"] = resource_type
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY rule_name"
        with get_db() as conn:
            rows = conn.execute(text(sql), params).fetchall()
        return [row_to_dict(r, bool_fields=("preserve_length", "is_active")) for r in rows]

    def set_masking_rule_active(self, rule_id: str, is_active: bool) -> None:
        with get_db() as conn:
            result = conn.execute(
                text("UPDATE data_masking_rules SET is_active = :a WHERE id = :id"),
                {"a": 1 if is_active else 0, "id": rule_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Masking rule", rule_id)
            conn.commit()

    def delete_masking_rule(self, rule_id: str) -> None:
        with get_db() as conn:
            result = conn.execute(text("DELETE FROM data_masking_rules WHERE id = :id"), {"id": rule_id})
            if result.rowcount == 0:
                raise NotFoundError("Masking rule", rule_id)
            conn.commit()

    def apply_masking(self, resource_type: str, record: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``record`` with active masking rules applied."""
        masked = dict(record)
        for rule in self.list_masking_rules(resource_type, active_only=True):
            if rule["field_name"] in masked:
                masked[rule["field_name"]] = mask_sensitive_data(
                    masked[rule["field_name"]], rule["masking_method"], rule["preserve_length"]
                )
        return masked

    # =========================================================================
    # Privacy Requests
    # =========================================================================

    def create_privacy_request(
        self,
        request_type: str,
        subject_user_id: str,
        requester_email: str | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if request_type not in PRIVACY_REQUEST_TYPES:
            raise ValidationError("request_type", f"Must be one of: {', '.join(PRIVACY_REQUEST_TYPES)}")
        now = now or utcnow()
        ts = to_iso(now)
        request = {
            "id": generate_uuid(),
            "request_number": generate_request_number(now),
            "request_type": request_type,
            "subject_user_id": subject_user_id,
            "requester_email": requester_email,
            "status": "pending",
            "description": description,
            "deadline_at": to_iso(now + timedelta(days=self.privacy_deadline_days)),
            "completed_at": None,
            "records_found": 0,
            "records_processed": 0,
            "notes": None,
            "created_at": ts,
            "updated_at": ts,
        }
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO privacy_requests
                (id, request_number, request_type, subject_user_id, requester_email, status, description,
                 deadline_at, completed_at, records_found, records_processed, notes, created_at, updated_at)
                VALUES (:id, :request_number, :request_type, :subject_user_id, :requester_email, :status,
                        :description, :deadline_at, :completed_at, :records_found, :records_processed,
                        :notes, :created_at, :updated_at)
                """),
                request,
            )
            conn.commit()
        log.info("privacy_request_created", request_number=request["request_number"], type=request_type)
        return request

    def get_privacy_request(self, request_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM privacy_requests WHERE id = :id"), {"id": request_id}).fetchone()
        if row is None:
            raise NotFoundError("Privacy request", request_id)
        return dict(row._mapping)

    def list_privacy_requests(
        self,
        status: str | None = None,
        subject_user_id: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM privacy_requests WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        if status:
            sql += " AND status = :status"
            params["status"] = status
        if subject_user_id:
            sql += " AND subject_user_id = :subject"
            params["subject"] = subject_user_id
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            return [dict(r._mapping) for r in conn.execute(text(sql), params).fetchall()]

    def update_privacy_request_status(
        self,
        request_id: str,
        status: str,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if status not in PRIVACY_STATUSES:
            raise ValidationError("status", f"Must be one of: {', '.join(PRIVACY_STATUSES)}")
        request = self.get_privacy_request(request_id)
        if request["status"] in CLOSED_PRIVACY_STATUSES:
            raise ConflictError(f"Privacy request is already {request['status']}")
        ts = to_iso(now or utcnow())
        with get_db() as conn:
            conn.execute(
                text("""
                UPDATE privacy_requests
                SET status = :status, notes = COALESCE(:notes, notes), updated_at = :ts,
                    completed_at = CASE WHEN :status = 'completed' THEN :ts ELSE completed_at END
                WHERE id = :id
                """),
                {"status": status, "notes": notes, "ts": ts, "id": request_id},
            )
            conn.commit()
        return self.get_privacy_request(request_id)

    def process_privacy_request(
        self,
        request_id: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Fulfil a privacy request against the subject's submissions.

        Deletion requests record a ``deleted`` lifecycle event per submission;
        access and portability requests count them.
        """
        request = self.get_privacy_request(request_id)
        if request["status"] in CLOSED_PRIVACY_STATUSES:
            raise ConflictError(f"Privacy request is already {request['status']}")
        now = now or utcnow()
        ts = to_iso(now)

        with get_db() as conn:
            submission_ids = [
                r[0] for r in conn.execute(
                    text("SELECT id FROM prompt_submissions WHERE submitter_id = :s ORDER BY created_at"),
                    {"s": request["subject_user_id"]},
                ).fetchall()
            ]
            records = 0
            if request["request_type"] == "deletion":
                for submission_id in submission_ids:
                    self._lifecycle(conn, "deleted", "user_data", submission_id, "hard_delete",
                                    performed_by=actor_id,
                                    reason=f"Privacy request: {request['request_number']}", now=now)
                records = len(submission_ids)
                get_audit_service().log_event(
                    AuditEventType.DATA_DELETE,
                    AuditCategory.COMPLIANCE,
                    "privacy_deletion",
                    actor_id=actor_id,
                    resource_type="privacy_request",
                    resource_id=request_id,
                    severity=AuditSeverity.HIGH,
                    metadata={"subject_user_id": request["subject_user_id"], "records": records},
                    conn=conn,
                )
            elif request["request_type"] in ("access", "portability"):
                records = len(submission_ids)

            conn.execute(
                text("""
                UPDATE privacy_requests
                SET status = 'completed', records_found = :n, records_processed = :n,
                    completed_at = :ts, updated_at = :ts
                WHERE id = :id
                """),
                {"n": records, "ts": ts, "id": request_id},
            )
            conn.commit()

        log.info("privacy_request_processed", request_number=request["request_number"], records=records)
        return {"success": True, "request_number": request["request_number"], "records_processed": records}

    # =========================================================================
    # Lifecycle Events
    # =========================================================================

    def record_lifecycle_event(
        self,
        event_type: str,
        resource_type: str,
        resource_id: str,
        action_taken: str,
        performed_by: str | None = None,
        reason: str | None = None,
        policy_id: str | None = None,
    ) -> dict[str, Any]:
        if event_type not in LIFECYCLE_EVENT_TYPES:
            raise ValidationError("event_type", f"Must be one of: {', '.join(LIFECYCLE_EVENT_TYPES)}")
        if action_taken not in LIFECYCLE_ACTIONS:
            raise ValidationError("action_taken", f"Must be one of: {', '.join(LIFECYCLE_ACTIONS)}")
        with get_db() as conn:
            event = self._lifecycle(conn, event_type, resource_type, resource_id, action_taken,
                                    policy_id=policy_id, performed_by=performed_by, reason=reason)
            conn.commit()
        return event

    def get_lifecycle_events(
        self,
        event_type: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM data_lifecycle_events WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        for column, value in (("event_type", event_type), ("resource_type", resource_type),
                              ("resource_id", resource_id)):
            if value:
                sql += f" AND {column} = :{column}"
                params[column] = value
        if start:
            sql += " AND created_at >= :start"
            params["start"] = to_iso(start)
        if end:
            sql += " AND created_at <= :end"
            params["end"] = to_iso(end)
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            return [dict(r._mapping) for r in conn.execute(text(sql), params).fetchall()]

    @staticmethod
    def _lifecycle(
        conn: Connection,
        event_type: str,
        resource_type: str,
        resource_id: str,
        action_taken: str,
        policy_id: str | None = None,
        performed_by: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        event = {
            "id": generate_uuid(),
            "event_type": event_type,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "policy_id": policy_id,
            "action_taken": action_taken,
            "performed_by": performed_by,
            "reason": reason,
            "created_at": to_iso(now or utcnow()),
        }
        conn.execute(
            text("""
            INSERT INTO data_lifecycle_events
            (id, event_type, resource_type, resource_id, policy_id, action_taken, performed_by, reason, created_at)
            VALUES (:id, :event_type, :resource_type, :resource_id, :policy_id, :action_taken,
                    :performed_by, :reason, :created_at)
            """),
            event,
        )
        return event

    # =========================================================================
    # Reports and Compliance Score
    # =========================================================================

    def generate_governance_report(
        self,
        report_type: str,
        actor_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """Build and store a governance report.

        Args:
            report_type: One of REPORT_TYPES
            start, end: Window for lifecycle_activities (default: last 30 days)
        """
        if report_type not in REPORT_TYPES:
            raise ValidationError("report_type", f"Must be one of: {', '.join(REPORT_TYPES)}")
        now = utcnow()
        end = end or now
        start = start or end - timedelta(days=30)

        if report_type == "retention_compliance":
            data = self._retention_report(now)
        elif report_type == "data_inventory":
            data = self.get_data_inventory()
        elif report_type == "privacy_requests":
            data = self._privacy_report(now)
        elif report_type == "classification_summary":
            data = self._classification_report(now)
        elif report_type == "lifecycle_activities":
            events = self.get_lifecycle_events(start=start, end=end, limit=100000)
            data = {
                "period_start": to_iso(start),
                "period_end": to_iso(end),
                "total_events": len(events),
                "by_event_type": dict(Counter(e["event_type"] for e in events)),
                "by_resource_type": dict(Counter(e["resource_type"] for e in events)),
            }
        else:
            stats = get_table_stats()
            data = {"total_rows": sum(stats.values()), "tables": stats}

        report = {
            "id": generate_uuid(),
            "report_type": report_type,
            "report_data": data,
            "generated_by": actor_id,
            "created_at": to_iso(now),
        }
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO governance_reports (id, report_type, report_data, generated_by, created_at)
                VALUES (:id, :report_type, :report_data, :generated_by, :created_at)
                """),
                {**report, "report_data": dumps(data)},
            )
            conn.commit()
        return report

    def list_governance_reports(self, report_type: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        sql = "SELECT * FROM governance_reports"
        params: dict[str, Any] = {"limit": limit}
        if report_type:
            sql += " WHERE report_type = :t"
            params["t"] = report_type
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            return [row_to_dict(r, json_fields=("report_data",)) for r in conn.execute(text(sql), params).fetchall()]

    def _retention_report(self, now: datetime) -> dict[str, Any]:
        policies = self.list_retention_policies()
        active = [p for p in policies if p["is_active"]]
        overdue = [
            p["policy_name"] for p in active
            if p["next_execution_at"] and parse_iso(p["next_execution_at"]) < now
        ]
        return {
            "total_policies": len(policies),
            "active_policies": len(active),
            "overdue_policies": overdue,
            "never_executed": [p["policy_name"] for p in active if not p["last_executed_at"]],
            "by_data_type": dict(Counter(p["data_type"] for p in active)),
        }

    def _privacy_report(self, now: datetime) -> dict[str, Any]:
        requests = self.list_privacy_requests(limit=100000)
        open_requests = [r for r in requests if r["status"] not in CLOSED_PRIVACY_STATUSES]
        return {
            "total_requests": len(requests),
            "by_status": dict(Counter(r["status"] for r in requests)),
            "by_type": dict(Counter(r["request_type"] for r in requests)),
            "overdue": sum(1 for r in open_requests if parse_iso(r["deadline_at"]) < now),
        }

    def _classification_report(self, now: datetime) -> dict[str, Any]:
        classifications = self.list_classifications()
        return {
            "total_classified": len(classifications),
            "by_classification_level": dict(Counter(c["classification_level"] for c in classifications)),
            "contains_pii": sum(1 for c in classifications if c["contains_pii"]),
            "reviews_due": sum(
                1 for c in classifications
                if c["review_due_at"] and parse_iso(c["review_due_at"]) <= now
            ),
        }

    def calculate_compliance_score(self) -> int:
        """Score 0-100 from retention coverage and on-time privacy requests."""
        with get_db() as conn:
            active_policies = conn.execute(
                text("SELECT COUNT(*) FROM data_retention_policies WHERE is_active = 1")
            ).fetchone()[0]
            requests = conn.execute(
                text("SELECT status, deadline_at, completed_at FROM privacy_requests")
            ).fetchall()

        if active_policies == 0:
            return 50
        if not requests:
            return 75
        on_time = sum(
            1 for r in requests
            if r.status == "completed" and r.completed_at and r.completed_at <= r.deadline_at
        )
        return round(on_time / len(requests) * 100)


# Global service instance
_governance_service: GovernanceService | None = None


def get_governance_service() -> GovernanceService:
    """Get or create the global governance service."""
    global _governance_service
    if _governance_service is None:
        from promptdesk.core.config import get_settings
        _governance_service = GovernanceService(get_settings().privacy_request_deadline_days)
    return _governance_service


def reset_governance_service() -> None:
    global _governance_service
    _governance_service = None
