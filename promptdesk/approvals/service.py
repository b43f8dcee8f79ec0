"""
Approval queue workflow.

Prompts enter the queue as pending items with an SLA clock. Reviewers act
on them (approve, reject, request revision, ...) and every status change
is recorded in ``approval_history``. Terminal items cannot move again.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.audit.schemas import AuditCategory, AuditEventType
from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import ConflictError, NotFoundError, PromptDeskError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.search.service import SearchService
from promptdesk.storage.database import get_db
from promptdesk.storage.models import (
    QueueItemRecord,
    dumps,
    generate_uuid,
    hours_between,
    parse_iso,
    row_to_dict,
    to_iso,
    utcnow,
)
from promptdesk.storage.repositories.notification_repo import APPROVAL, NotificationRepository

log = get_logger(__name__)

QUEUE_STATUSES = [
    "pending", "in_review", "revision_requested", "testing",
    "approved", "rejected", "withdrawn", "expired",
]
TERMINAL_STATUSES = ("approved", "rejected", "withdrawn", "expired")
SUBMISSION_TYPES = ["new", "revision", "update", "resubmission"]
ACTION_TYPES = ["approve", "reject", "request_revision", "assign", "escalate", "defer", "withdraw"]
REVISION_TYPES = ["content", "formatting", "testing", "documentation", "metadata", "tags", "other"]
REVISION_PRIORITIES = ["low", "normal", "high", "urgent"]

FALLBACK_TARGET_HOURS = 48.0
FALLBACK_WARNING_HOURS = 36.0
MAX_PRIORITY = 10


def select_sla_config(configs: list[dict[str, Any]], priority: int, department: str | None) -> dict[str, Any]:
    """Pick the SLA configuration for a new queue item.

    Args:
        configs: Active sla_configurations rows
        priority: Item priority (1-10)
        department: Item department, if any

    Returns:
        Dict with id (None for the built-in fallback), target_hours and warning_hours
    """
    by_name = {c["config_name"]: c for c in configs}
    chosen = None
    if priority >= 9:
        chosen = by_name.get("critical")
    elif priority >= 8:
        chosen = by_name.get("high_priority")
    if chosen is None and department:
        chosen = next((c for c in configs if c["department"] == department), None)
    if chosen is None:
        chosen = by_name.get("default_standard")
    if chosen is None:
        return {"id": None, "target_hours": FALLBACK_TARGET_HOURS, "warning_hours": FALLBACK_WARNING_HOURS}
    return {"id": chosen["id"], "target_hours": chosen["target_hours"], "warning_hours": chosen["warning_hours"]}


def elapsed_sla_hours(tracking: dict[str, Any], now: datetime) -> float:
    """Working hours on the SLA clock, excluding paused time."""
    elapsed = hours_between(parse_iso(tracking["started_at"]), now) - (tracking["total_paused_hours"] or 0)
    if tracking["is_paused"] and tracking["paused_at"]:
        elapsed -= hours_between(parse_iso(tracking["paused_at"]), now)
    return max(elapsed, 0.0)


class ApprovalService:
    """Approval queue, actions, revisions and SLA tracking."""

    def __init__(self, notifications: NotificationRepository | None = None):
        self.notifications = notifications or NotificationRepository()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_for_approval(
        self,
        prompt_id: str | None,
        submitter_id: str,
        submission_type: str = "new",
        priority: int = 5,
        department: str | None = None,
        workflow: str | None = None,
        submission_id: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> QueueItemRecord:
        """Queue a prompt for approval and start its SLA clock."""
        if submission_type not in SUBMISSION_TYPES:
            raise ValidationError("submission_type", f"Must be one of: {', '.join(SUBMISSION_TYPES)}")
        if not 1 <= priority <= MAX_PRIORITY:
            raise ValidationError("priority", "Priority must be between 1 and 10")
        if prompt_id is None and submission_id is None:
            raise ValidationError("prompt_id", "A prompt or peer review submission is required")

        now = now or utcnow()
        ts = to_iso(now)

        with get_db() as conn:
            if prompt_id is not None:
                prompt = conn.execute(
                    text("SELECT department, workflow FROM prompts WHERE id = :id"), {"id": prompt_id}
                ).fetchone()
                if prompt is None:
                    raise NotFoundError("Prompt", prompt_id)
                department = department or prompt.department
                workflow = workflow or prompt.workflow

            item = QueueItemRecord(
                submitter_id=submitter_id,
                prompt_id=prompt_id,
                submission_id=submission_id,
                submission_type=submission_type,
                priority=priority,
                department=department,
                workflow=workflow,
                notes=notes,
                metadata=metadata or {},
                submitted_at=ts,
                status_changed_at=ts,
                updated_at=ts,
            )
            conn.execute(
                text("""
                INSERT INTO approval_queue
                (id, prompt_id, submission_id, submitter_id, submission_type, status, priority,
                 department, workflow, assigned_to, assigned_at, escalation_level, is_sla_breached,
                 notes, metadata, submitted_at, status_changed_at, completed_at, updated_at)
                VALUES (:id, :prompt_id, :submission_id, :submitter_id, :submission_type, :status,
                        :priority, :department, :workflow, :assigned_to, :assigned_at,
                        :escalation_level, :is_sla_breached, :notes, :metadata, :submitted_at,
                        :status_changed_at, :completed_at, :updated_at)
                """),
                item.to_dict(),
            )

            configs = conn.execute(
                text("SELECT * FROM sla_configurations WHERE is_active = 1")
            ).fetchall()
            sla = select_sla_config([dict(c._mapping) for c in configs], priority, department)
            conn.execute(
                text("""
                INSERT INTO sla_tracking
                (id, queue_id, sla_config_id, target_hours, warning_hours, started_at, due_at,
                 elapsed_hours, is_within_sla, breach_hours, warning_sent, breach_notified,
                 is_paused, total_paused_hours, updated_at)
                VALUES (:id, :queue_id, :config_id, :target, :warning, :ts, :due,
                        0, 1, 0, 0, 0, 0, 0, :ts)
                """),
                {
                    "id": generate_uuid(),
                    "queue_id": item.id,
                    "config_id": sla["id"],
                    "target": sla["target_hours"],
                    "warning": sla["warning_hours"],
                    "ts": ts,
                    "due": to_iso(now + timedelta(hours=sla["target_hours"])),
                },
            )
            self._write_history(conn, item.id, None, "pending", submitter_id, "Submitted for approval", None, ts)
            get_audit_service().log_event(
                AuditEventType.APPROVAL_SUBMIT,
                AuditCategory.WORKFLOW,
                "submit",
                actor_id=submitter_id,
                resource_type="approval_queue",
                resource_id=item.id,
                new_values={"prompt_id": prompt_id, "priority": priority, "target_hours": sla["target_hours"]},
                conn=conn,
            )
            conn.commit()

        log.info("approval_submitted", queue_id=item.id, prompt_id=prompt_id, target_hours=sla["target_hours"])
        return item

    # =========================================================================
    # Status Transitions
    # =========================================================================

    def update_queue_status(
        self,
        queue_id: str,
        new_status: str,
        changed_by: str | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> QueueItemRecord:
        """Move a queue item to a new status, recording history."""
        item = self.get_queue_item(queue_id)
        with get_db() as conn:
            self._transition(conn, item, new_status, changed_by, reason, now or utcnow())
            conn.commit()
        return item

    def _transition(
        self,
        conn: Connection,
        item: QueueItemRecord,
        new_status: str,
        changed_by: str | None,
        reason: str | None,
        now: datetime,
    ) -> None:
        if new_status not in QUEUE_STATUSES:
            raise ValidationError("status", f"Must be one of: {', '.join(QUEUE_STATUSES)}")
        if item.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"Queue item is already {item.status}",
                {"queue_id": item.id, "status": item.status, "requested": new_status},
            )

        ts = to_iso(now)
        in_previous = round(hours_between(parse_iso(item.status_changed_at), now), 4)
        self._write_history(conn, item.id, item.status, new_status, changed_by, reason, in_previous, ts)

        item.status = new_status
        item.status_changed_at = ts
        item.updated_at = ts
        if new_status in TERMINAL_STATUSES:
            item.completed_at = ts
        conn.execute(
            text("""
            UPDATE approval_queue
            SET status = :status, status_changed_at = :ts, updated_at = :ts, completed_at = :completed_at
            WHERE id = :id
            """),
            {"status": new_status, "ts": ts, "completed_at": item.completed_at, "id": item.id},
        )

    @staticmethod
    def _write_history(
        conn: Connection,
        queue_id: str,
        from_status: str | None,
        to_status: str,
        changed_by: str | None,
        reason: str | None,
        hours_in_previous: float | None,
        ts: str,
    ) -> None:
        conn.execute(
            text("""
            INSERT INTO approval_history
            (id, queue_id, from_status, to_status, changed_by, reason, time_in_previous_status_hours, created_at)
            VALUES (:id, :queue_id, :from_status, :to_status, :changed_by, :reason, :hours, :ts)
            """),
            {
                "id": generate_uuid(),
                "queue_id": queue_id,
                "from_status": from_status,
                "to_status": to_status,
                "changed_by": changed_by,
                "reason": reason,
                "hours": hours_in_previous,
                "ts": ts,
            },
        )

    # =========================================================================
    # Actions
    # =========================================================================

    def process_approval_action(
        self,
        queue_id: str,
        action_type: str,
        actor_id: str,
        decision: str | None = None,
        comments: str | None = None,
        approval_scope: str | None = None,
        conditions: list[str] | None = None,
        assignee_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Apply a reviewer action to a queue item.

        Args:
            action_type: approve, reject, request_revision, assign, escalate, defer or withdraw
            approval_scope: "conditional" approves the prompt conditionally
            assignee_id: Required for assign

        Returns:
            Dict with the recorded action and the updated item
        """
        if action_type not in ACTION_TYPES:
            raise ValidationError("action_type", f"Must be one of: {', '.join(ACTION_TYPES)}")
        item = self.get_queue_item(queue_id)

        with get_db() as conn:
            action = self._apply_action(
                conn, item, action_type, actor_id, decision, comments,
                approval_scope, conditions, assignee_id, now or utcnow(),
            )
            conn.commit()

        log.info("approval_action", queue_id=queue_id, action=action_type, status=item.status)
        return {"action": action, "item": item}

    def _apply_action(
        self,
        conn: Connection,
        item: QueueItemRecord,
        action_type: str,
        actor_id: str,
        decision: str | None,
        comments: str | None,
        approval_scope: str | None,
        conditions: list[str] | None,
        assignee_id: str | None,
        now: datetime,
    ) -> dict[str, Any]:
        if item.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"Cannot {action_type} a queue item that is {item.status}",
                {"queue_id": item.id, "status": item.status},
            )
        if action_type == "assign" and not assignee_id:
            raise ValidationError("assignee_id", "An assignee is required")

        ts = to_iso(now)
        action = {
            "id": generate_uuid(),
            "queue_id": item.id,
            "action_type": action_type,
            "actor_id": actor_id,
            "decision": decision,
            "approval_scope": approval_scope,
            "conditions": conditions or [],
            "comments": comments,
            "created_at": ts,
        }
        conn.execute(
            text("""
            INSERT INTO approval_actions
            (id, queue_id, action_type, actor_id, decision, approval_scope, conditions, comments, created_at)
            VALUES (:id, :queue_id, :action_type, :actor_id, :decision, :approval_scope, :conditions,
                    :comments, :created_at)
            """),
            {**action, "conditions": dumps(action["conditions"])},
        )

        if action_type == "approve":
            self._transition(conn, item, "approved", actor_id, comments, now)
            prompt_status = "conditionally_approved" if approval_scope == "conditional" else "published"
            self._set_prompt_status(conn, item, prompt_status, ts)
            self._complete_sla(conn, item.id, now)
            self._notify(conn, item, "approval_granted", "Prompt Approved",
                         comments or "Your prompt has been approved", "normal")
            self._audit(conn, item, AuditEventType.APPROVAL_APPROVE, "approve", actor_id, prompt_status)
        elif action_type == "reject":
            self._transition(conn, item, "rejected", actor_id, comments, now)
            self._set_prompt_status(conn, item, "rejected", ts)
            self._complete_sla(conn, item.id, now)
            self._notify(conn, item, "approval_rejected", "Prompt Rejected",
                         comments or "Your prompt has been rejected", "high")
            self._audit(conn, item, AuditEventType.APPROVAL_REJECT, "reject", actor_id, "rejected")
        elif action_type == "request_revision":
            self._transition(conn, item, "revision_requested", actor_id, comments, now)
            self._set_prompt_status(conn, item, "revision_needed", ts)
            self._notify(conn, item, "revision_requested", "Revision Requested",
                         comments or "Changes were requested on your prompt", "normal")
            self._audit(conn, item, AuditEventType.APPROVAL_REVISION, "request_revision", actor_id, "revision_needed")
        elif action_type == "assign":
            item.assigned_to = assignee_id
            item.assigned_at = ts
            conn.execute(
                text("UPDATE approval_queue SET assigned_to = :a, assigned_at = :ts, updated_at = :ts WHERE id = :id"),
                {"a": assignee_id, "ts": ts, "id": item.id},
            )
            self._transition(conn, item, "in_review", actor_id, f"Assigned to {assignee_id}", now)
            self.notifications.create_approval_notification(
                assignee_id, "assignment", "Approval Assigned",
                "A prompt is waiting for your review", queue_id=item.id, conn=conn,
            )
        elif action_type == "escalate":
            item.priority = min(item.priority + 2, MAX_PRIORITY)
            item.escalation_level += 1
            item.updated_at = ts
            conn.execute(
                text("""
                UPDATE approval_queue SET priority = :p, escalation_level = :e, updated_at = :ts WHERE id = :id
                """),
                {"p": item.priority, "e": item.escalation_level, "ts": ts, "id": item.id},
            )
        elif action_type == "defer":
            self._transition(conn, item, "pending", actor_id, comments or "Deferred", now)
        elif action_type == "withdraw":
            self._transition(conn, item, "withdrawn", actor_id, comments, now)

        return action

    def bulk_approve(self, queue_ids: list[str], actor_id: str, comments: str | None = None) -> dict[str, list]:
        return self._bulk(queue_ids, "approve", actor_id, comments)

    def bulk_reject(self, queue_ids: list[str], actor_id: str, reason: str | None = None) -> dict[str, list]:
        return self._bulk(queue_ids, "reject", actor_id, reason)

    def _bulk(self, queue_ids: list[str], action_type: str, actor_id: str, comments: str | None) -> dict[str, list]:
        succeeded: list[str] = []
        failed: list[dict[str, str]] = []
        for queue_id in queue_ids:
            try:
                self.process_approval_action(queue_id, action_type, actor_id, comments=comments)
            except PromptDeskError as exc:
                failed.append({"id": queue_id, "error": exc.message})
            else:
                succeeded.append(queue_id)
        log.info("bulk_approval_action", action=action_type, succeeded=len(succeeded), failed=len(failed))
        return {"succeeded": succeeded, "failed": failed}

    def request_revision(
        self,
        queue_id: str,
        actor_id: str,
        revision_type: str,
        description: str,
        priority: str = "normal",
        fields_to_revise: list[str] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Record a structured revision request and send the item back."""
        if revision_type not in REVISION_TYPES:
            raise ValidationError("revision_type", f"Must be one of: {', '.join(REVISION_TYPES)}")
        if priority not in REVISION_PRIORITIES:
            raise ValidationError("priority", f"Must be one of: {', '.join(REVISION_PRIORITIES)}")
        if not description or not description.strip():
            raise ValidationError("description", "Description is required")

        now = now or utcnow()
        item = self.get_queue_item(queue_id)
        revision = {
            "id": generate_uuid(),
            "queue_id": queue_id,
            "requested_by": actor_id,
            "revision_type": revision_type,
            "description": description.strip(),
            "priority": priority,
            "fields_to_revise": fields_to_revise or [],
            "status": "open",
            "created_at": to_iso(now),
            "resolved_at": None,
        }
        with get_db() as conn:
            self._apply_action(conn, item, "request_revision", actor_id, None, revision["description"],
                               None, None, None, now)
            conn.execute(
                text("""
                INSERT INTO revision_requests
                (id, queue_id, requested_by, revision_type, description, priority, fields_to_revise,
                 status, created_at, resolved_at)
                VALUES (:id, :queue_id, :requested_by, :revision_type, :description, :priority,
                        :fields_to_revise, :status, :created_at, :resolved_at)
                """),
                {**revision, "fields_to_revise": dumps(revision["fields_to_revise"])},
            )
            conn.commit()
        return revision

    def assign_reviewer(self, queue_id: str, reviewer_id: str, actor_id: str) -> QueueItemRecord:
        return self.process_approval_action(queue_id, "assign", actor_id, assignee_id=reviewer_id)["item"]

    # =========================================================================
    # SLA
    # =========================================================================

    def check_sla_compliance(self, now: datetime | None = None) -> dict[str, int]:
        """Refresh SLA clocks and send warning and breach notifications.

        Each item receives at most one warning and one breach notification.
        """
        now = now or utcnow()
        ts = to_iso(now)
        placeholders = ", ".join(f"'{s}'" for s in TERMINAL_STATUSES)
        counts = {"checked": 0, "warnings": 0, "breaches": 0}

        with get_db() as conn:
            rows = conn.execute(
                text(f"""
                SELECT t.*, q.submitter_id, q.assigned_to
                FROM sla_tracking t
                JOIN approval_queue q ON q.id = t.queue_id
                WHERE t.completed_at IS NULL AND t.is_paused = 0 AND q.status NOT IN ({placeholders})
                """)
            ).fetchall()

            for row in rows:
                tracking = dict(row._mapping)
                counts["checked"] += 1
                elapsed = elapsed_sla_hours(tracking, now)
                breach_hours = max(elapsed - tracking["target_hours"], 0.0)
                recipient = tracking["assigned_to"] or tracking["submitter_id"]
                warning_sent = bool(tracking["warning_sent"])
                breach_notified = bool(tracking["breach_notified"])

                if elapsed >= tracking["warning_hours"] and not warning_sent:
                    self.notifications.create_approval_notification(
                        recipient, "sla_warning", "SLA Warning",
                        f"Approval due at {tracking['due_at']}", queue_id=tracking["queue_id"],
                        priority="high", conn=conn,
                    )
                    warning_sent = True
                    counts["warnings"] += 1

                if elapsed > tracking["target_hours"] and not breach_notified:
                    self.notifications.create_approval_notification(
                        recipient, "sla_breach", "SLA Breached",
                        f"Approval is {breach_hours:.1f} hours overdue", queue_id=tracking["queue_id"],
                        priority="urgent", conn=conn,
                    )
                    conn.execute(
                        text("UPDATE approval_queue SET is_sla_breached = 1, updated_at = :ts WHERE id = :id"),
                        {"ts": ts, "id": tracking["queue_id"]},
                    )
                    breach_notified = True
                    counts["breaches"] += 1

                conn.execute(
                    text("""
                    UPDATE sla_tracking
                    SET elapsed_hours = :elapsed, is_within_sla = :within, breach_hours = :breach,
                        warning_sent = :warning_sent, breach_notified = :breach_notified, updated_at = :ts
                    WHERE id = :id
                    """),
                    {
                        "elapsed": round(elapsed, 4),
                        "within": 1 if breach_hours == 0 else 0,
                        "breach": round(breach_hours, 4),
                        "warning_sent": 1 if warning_sent else 0,
                        "breach_notified": 1 if breach_notified else 0,
                        "ts": ts,
                        "id": tracking["id"],
                    },
                )
            conn.commit()

        log.info("sla_compliance_checked", **counts)
        return counts

    def pause_sla(self, queue_id: str, now: datetime | None = None) -> dict[str, Any]:
        tracking = self.get_sla_tracking(queue_id)
        if tracking["is_paused"]:
            raise ConflictError("SLA clock is already paused", {"queue_id": queue_id})
        if tracking["completed_at"]:
            raise ConflictError("SLA tracking is complete", {"queue_id": queue_id})
        ts = to_iso(now or utcnow())
        with get_db() as conn:
            conn.execute(
                text("UPDATE sla_tracking SET is_paused = 1, paused_at = :ts, updated_at = :ts WHERE queue_id = :q"),
                {"ts": ts, "q": queue_id},
            )
            conn.commit()
        return self.get_sla_tracking(queue_id)

    def resume_sla(self, queue_id: str, now: datetime | None = None) -> dict[str, Any]:
        """Restart a paused SLA clock, pushing the due date back by the pause."""
        tracking = self.get_sla_tracking(queue_id)
        if not tracking["is_paused"]:
            raise ConflictError("SLA clock is not paused", {"queue_id": queue_id})
        now = now or utcnow()
        paused = hours_between(parse_iso(tracking["paused_at"]), now)
        due = parse_iso(tracking["due_at"]) + timedelta(hours=paused)
        with get_db() as conn:
            conn.execute(
                text("""
                UPDATE sla_tracking
                SET is_paused = 0, paused_at = NULL, total_paused_hours = total_paused_hours + :paused,
                    due_at = :due, updated_at = :ts
                WHERE queue_id = :q
                """),
                {"paused": paused, "due": to_iso(due), "ts": to_iso(now), "q": queue_id},
            )
            conn.commit()
        return self.get_sla_tracking(queue_id)

    def _complete_sla(self, conn: Connection, queue_id: str, now: datetime) -> None:
        row = conn.execute(text("SELECT * FROM sla_tracking WHERE queue_id = :q"), {"q": queue_id}).fetchone()
        if row is None or row.completed_at:
            return
        tracking = dict(row._mapping)
        elapsed = elapsed_sla_hours(tracking, now)
        breach_hours = max(elapsed - tracking["target_hours"], 0.0)
        paused = hours_between(parse_iso(tracking["paused_at"]), now) if tracking["is_paused"] else 0.0
        conn.execute(
            text("""
            UPDATE sla_tracking
            SET completed_at = :ts, elapsed_hours = :elapsed, is_within_sla = :within,
                breach_hours = :breach, is_paused = 0, paused_at = NULL,
                total_paused_hours = total_paused_hours + :paused, updated_at = :ts
            WHERE queue_id = :q
            """),
            {
                "ts": to_iso(now),
                "elapsed": round(elapsed, 4),
                "within": 1 if breach_hours == 0 else 0,
                "breach": round(breach_hours, 4),
                "paused": paused,
                "q": queue_id,
            },
        )

    # =========================================================================
    # Side Effects
    # =========================================================================

    def _notify(
        self,
        conn: Connection,
        item: QueueItemRecord,
        notification_type: str,
        subject: str,
        message: str,
        priority: str,
    ) -> None:
        self.notifications.create_approval_notification(
            item.submitter_id, notification_type, subject, message,
            queue_id=item.id, priority=priority, conn=conn,
        )

    @staticmethod
    def _set_prompt_status(conn: Connection, item: QueueItemRecord, status: str, ts: str) -> None:
        if item.prompt_id is None:
            return
        conn.execute(
            text("UPDATE prompts SET status = :status, updated_at = :ts WHERE id = :id"),
            {"status": status, "ts": ts, "id": item.prompt_id},
        )
        SearchService.invalidate(conn)

    @staticmethod
    def _audit(
        conn: Connection,
        item: QueueItemRecord,
        event_type: AuditEventType,
        action: str,
        actor_id: str,
        prompt_status: str,
    ) -> None:
        get_audit_service().log_event(
            event_type,
            AuditCategory.WORKFLOW,
            action,
            actor_id=actor_id,
            resource_type="approval_queue",
            resource_id=item.id,
            new_values={"status": item.status, "prompt_id": item.prompt_id, "prompt_status": prompt_status},
            conn=conn,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_queue_item(self, queue_id: str) -> QueueItemRecord:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM approval_queue WHERE id = :id"), {"id": queue_id}).fetchone()
        if row is None:
            raise NotFoundError("Queue item", queue_id)
        return QueueItemRecord.from_row(row._mapping)

    def get_queue(
        self,
        status: str | None = None,
        assigned_to: str | None = None,
        submitter_id: str | None = None,
        department: str | None = None,
        min_priority: int | None = None,
        sla_breached: bool | None = None,
        limit: int = 50,
    ) -> list[QueueItemRecord]:
        """Queue items, highest priority and oldest first."""
        sql = "SELECT * FROM approval_queue WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        for column, value in (("status", status), ("assigned_to", assigned_to),
                              ("submitter_id", submitter_id), ("department", department)):
            if value:
                sql += f" AND {column} = :{column}"
                params[column] = value
        if min_priority is not None:
            sql += " AND priority >= :min_priority"
            params["min_priority"] = min_priority
        if sla_breached is not None:
            sql += " AND is_sla_breached = :breached"
            params["breached"] = 1 if sla_breached else 0
        sql += " ORDER BY priority DESC, submitted_at ASC LIMIT :limit"

        with get_db() as conn:
            return [QueueItemRecord.from_row(r._mapping) for r in conn.execute(text(sql), params).fetchall()]

    def get_sla_tracking(self, queue_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM sla_tracking WHERE queue_id = :q"), {"q": queue_id}).fetchone()
        if row is None:
            raise NotFoundError("SLA tracking", queue_id)
        return row_to_dict(row, bool_fields=("is_within_sla", "warning_sent", "breach_notified", "is_paused"))

    def get_history(self, queue_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM approval_history WHERE queue_id = :q ORDER BY created_at"),
                {"q": queue_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    def get_actions(self, queue_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM approval_actions WHERE queue_id = :q ORDER BY created_at"), {"q": queue_id}
            )
            return [row_to_dict(r, json_fields=("conditions",)) for r in result.fetchall()]

    def get_revision_requests(self, queue_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM revision_requests WHERE queue_id = :q ORDER BY created_at"), {"q": queue_id}
            )
            return [row_to_dict(r, json_fields=("fields_to_revise",)) for r in result.fetchall()]

    def get_sla_configurations(self, active_only: bool = True) -> list[dict[str, Any]]:
        sql = "SELECT * FROM sla_configurations"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY target_hours"
        with get_db() as conn:
            return [row_to_dict(r, bool_fields=("is_active",)) for r in conn.execute(text(sql)).fetchall()]

    def get_queue_statistics(self) -> dict[str, Any]:
        """Counts per status, SLA breaches and average time to approval."""
        with get_db() as conn:
            by_status = {
                row.status: row.n
                for row in conn.execute(
                    text("SELECT status, COUNT(*) AS n FROM approval_queue GROUP BY status")
                ).fetchall()
            }
            breached = conn.execute(
                text("SELECT COUNT(*) FROM approval_queue WHERE is_sla_breached = 1")
            ).fetchone()[0]
            approved = conn.execute(
                text("SELECT submitted_at, completed_at FROM approval_queue WHERE status = 'approved'")
            ).fetchall()

        durations = [
            hours_between(parse_iso(r.submitted_at), parse_iso(r.completed_at))
            for r in approved if r.completed_at
        ]
        return {
            "total": sum(by_status.values()),
            "by_status": {status: by_status.get(status, 0) for status in QUEUE_STATUSES},
            "sla_breached": breached,
            "avg_approval_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
        }

    def get_notifications(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[dict[str, Any]]:
        return self.notifications.list_for_user(APPROVAL, user_id, unread_only=unread_only, limit=limit)

    def mark_notification_read(self, notification_id: str) -> None:
        if not self.notifications.mark_read(APPROVAL, notification_id):
            raise NotFoundError("Notification", notification_id)


# Global service instance
_approval_service: ApprovalService | None = None


def get_approval_service() -> ApprovalService:
    """Get or create the global approval service."""
    global _approval_service
    if _approval_service is None:
        _approval_service = ApprovalService()
    return _approval_service


def reset_approval_service() -> None:
    global _approval_service
    _approval_service = None
