"""
Peer review workflow.

Submissions are matched to reviewers by expertise and load, reviewed with
1-5 ratings, discussed in threaded comments, and approved once enough
qualifying reviewers recommend approval. Assignments left open past
REMIND_AFTER_HOURS get reminders and, past ESCALATE_AFTER_HOURS, escalate
to the role named by the matching escalation rule.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.analytics.service import REVIEW_SUBMIT, get_analytics_service
from promptdesk.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db
from promptdesk.storage.models import (
    SubmissionRecord,
    dumps,
    generate_uuid,
    hours_between,
    now_iso,
    parse_iso,
    row_to_dict,
    to_iso,
    utcnow,
)
from promptdesk.storage.repositories.notification_repo import NotificationRepository

log = get_logger(__name__)

SUBMISSION_STATUSES = [
    "pending", "in_review", "changes_requested", "approved", "rejected", "resubmitted", "withdrawn",
]
OPEN_STATUSES = ("pending", "in_review")
EXPERTISE_LEVELS = ["junior", "senior", "expert"]
RECOMMENDATIONS = ["approve", "request_changes", "reject"]
COMMENT_TYPES = ["general", "question", "suggestion", "concern", "praise"]
RATING_FIELDS = ("accuracy", "clarity", "usefulness", "completeness", "overall")

MAX_THREAD_DEPTH = 5
DEFAULT_MIN_REVIEWERS = 2
DEFAULT_MAX_CONCURRENT = 5

# Hours since assignment at which each reminder stage starts
REMIND_AFTER_HOURS = 24
URGENT_AFTER_HOURS = 48
ESCALATE_AFTER_HOURS = 72
REMINDER_COOLDOWN_HOURS = 12

_REMINDER_SUBJECTS = {
    "gentle": "Reminder: Review pending for \"{title}\"",
    "urgent": "URGENT: Review overdue for \"{title}\"",
    "critical": "CRITICAL: Immediate action required for \"{title}\"",
}

_LEVEL_BONUS = {"expert": 5, "senior": 3}


def reviewer_score(
    workflow: str,
    role: str,
    workflows: list[str],
    roles: list[str],
    expertise_level: str,
    current_review_count: int,
) -> int:
    """Match score for a candidate reviewer."""
    score = 10 if (role in roles or workflow in workflows) else 0
    score += _LEVEL_BONUS.get(expertise_level, 1)
    return score - current_review_count


class PeerReviewService:
    """Submissions, reviewer matching, reviews and comment threads."""

    def __init__(self, notifications: NotificationRepository | None = None, default_required_approvals: int = 2):
        self.notifications = notifications or NotificationRepository()
        self.default_required_approvals = default_required_approvals

    # =========================================================================
    # Submissions
    # =========================================================================

    def create_submission(
        self,
        submitter_id: str,
        title: str,
        workflow: str,
        role: str,
        prompt_content: str,
        description: str | None = None,
        department: str | None = None,
        sample_output: str | None = None,
        required_approvals: int | None = None,
        reviewer_level: str | None = None,
    ) -> SubmissionRecord:
        """Create a submission, taking defaults from the workflow config."""
        for field, value in (("title", title), ("workflow", workflow), ("role", role),
                             ("prompt_content", prompt_content)):
            if not value or not value.strip():
                raise ValidationError(field, f"{field} is required")
        if reviewer_level is not None and reviewer_level not in EXPERTISE_LEVELS:
            raise ValidationError("reviewer_level", f"Must be one of: {', '.join(EXPERTISE_LEVELS)}")

        config = self.get_workflow_config(workflow)
        submission = SubmissionRecord(
            title=title.strip(),
            workflow=workflow,
            role=role,
            prompt_content=prompt_content,
            submitter_id=submitter_id,
            department=department,
            description=description,
            sample_output=sample_output,
            required_approvals=required_approvals or config["required_approvals"],
            reviewer_level=reviewer_level or config["reviewer_level"],
        )
        if submission.required_approvals < 1:
            raise ValidationError("required_approvals", "Must be at least 1")

        with get_db() as conn:
            self._insert_submission(conn, submission)
            self._log(conn, submission.id, submitter_id, "created", {"workflow": workflow, "role": role})
            conn.commit()

        log.info("submission_created", submission_id=submission.id, workflow=workflow)
        return submission

    def resubmit(
        self,
        parent_id: str,
        submitter_id: str,
        prompt_content: str | None = None,
        title: str | None = None,
        description: str | None = None,
        sample_output: str | None = None,
    ) -> SubmissionRecord:
        """Create the next version of a submission and notify its reviewers."""
        parent = self.get_submission(parent_id)
        if parent.submitter_id != submitter_id:
            raise PermissionDeniedError("resubmit", "submission")
        if parent.status not in ("changes_requested", "rejected"):
            raise ConflictError(
                f"Cannot resubmit a submission in status '{parent.status}'",
                {"submission_id": parent_id, "status": parent.status},
            )

        child = SubmissionRecord(
            title=title or parent.title,
            workflow=parent.workflow,
            role=parent.role,
            prompt_content=prompt_content or parent.prompt_content,
            submitter_id=submitter_id,
            department=parent.department,
            description=description if description is not None else parent.description,
            sample_output=sample_output if sample_output is not None else parent.sample_output,
            required_approvals=parent.required_approvals,
            reviewer_level=parent.reviewer_level,
            submission_version=parent.submission_version + 1,
            parent_submission_id=parent.id,
        )

        with get_db() as conn:
            self._insert_submission(conn, child)
            conn.execute(
                text("UPDATE prompt_submissions SET status = 'resubmitted', updated_at = :ts WHERE id = :id"),
                {"ts": now_iso(), "id": parent.id},
            )
            reviewers = conn.execute(
                text("SELECT reviewer_id FROM review_assignments WHERE submission_id = :id"),
                {"id": parent.id},
            ).fetchall()
            for r in reviewers:
                self.notifications.create_review_notification(
                    r.reviewer_id,
                    "resubmission",
                    f"Resubmitted: {child.title}",
                    f"Version {child.submission_version} is ready for review",
                    submission_id=child.id,
                    conn=conn,
                )
            self._log(conn, child.id, submitter_id, "resubmitted",
                      {"parent_submission_id": parent.id, "version": child.submission_version})
            conn.commit()

        return child

    def withdraw(self, submission_id: str, actor_id: str) -> SubmissionRecord:
        submission = self.get_submission(submission_id)
        if submission.submitter_id != actor_id:
            raise PermissionDeniedError("withdraw", "submission")
        if submission.status not in OPEN_STATUSES + ("changes_requested",):
            raise ConflictError(f"Cannot withdraw a submission in status '{submission.status}'")
        with get_db() as conn:
            self._set_status(conn, submission, "withdrawn", actor_id)
            conn.commit()
        return submission

    def get_submission(self, submission_id: str) -> SubmissionRecord:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM prompt_submissions WHERE id = :id"), {"id": submission_id}
            ).fetchone()
        if row is None:
            raise NotFoundError("Submission", submission_id)
        return SubmissionRecord.from_row(row._mapping)

    def list_submissions(
        self,
        status: str | None = None,
        submitter_id: str | None = None,
        workflow: str | None = None,
        limit: int = 50,
    ) -> list[SubmissionRecord]:
        sql = "SELECT * FROM prompt_submissions WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        for column, value in (("status", status), ("submitter_id", submitter_id), ("workflow", workflow)):
            if value:
                sql += f" AND {column} = :{column}"
                params[column] = value
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            return [SubmissionRecord.from_row(r._mapping) for r in conn.execute(text(sql), params).fetchall()]

    # =========================================================================
    # Reviewers and Workflow Config
    # =========================================================================

    def upsert_reviewer(
        self,
        reviewer_id: str,
        workflows: list[str] | None = None,
        roles: list[str] | None = None,
        expertise_level: str = "senior",
        max_concurrent_reviews: int = DEFAULT_MAX_CONCURRENT,
        is_available: bool = True,
        is_active: bool = True,
    ) -> dict[str, Any]:
        """Register or update a reviewer's expertise profile."""
        if expertise_level not in EXPERTISE_LEVELS:
            raise ValidationError("expertise_level", f"Must be one of: {', '.join(EXPERTISE_LEVELS)}")
        if max_concurrent_reviews < 1:
            raise ValidationError("max_concurrent_reviews", "Must be at least 1")

        ts = now_iso()
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO reviewer_expertise
                (reviewer_id, workflows, roles, expertise_level, max_concurrent_reviews,
                 current_review_count, is_available, is_active, created_at, updated_at)
                VALUES (:reviewer_id, :workflows, :roles, :level, :max, 0, :available, :active, :ts, :ts)
                ON CONFLICT (reviewer_id) DO UPDATE SET
                    workflows = excluded.workflows,
                    roles = excluded.roles,
                    expertise_level = excluded.expertise_level,
                    max_concurrent_reviews = excluded.max_concurrent_reviews,
                    is_available = excluded.is_available,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """),
                {
                    "reviewer_id": reviewer_id,
                    "workflows": dumps(workflows or []),
                    "roles": dumps(roles or []),
                    "level": expertise_level,
                    "max": max_concurrent_reviews,
                    "available": 1 if is_available else 0,
                    "active": 1 if is_active else 0,
                    "ts": ts,
                },
            )
            conn.commit()
        return self.get_reviewer(reviewer_id)

    def get_reviewer(self, reviewer_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM reviewer_expertise WHERE reviewer_id = :id"), {"id": reviewer_id}
            ).fetchone()
        if row is None:
            raise NotFoundError("Reviewer", reviewer_id)
        return row_to_dict(row, json_fields=("workflows", "roles"), bool_fields=("is_available", "is_active"))

    def set_workflow_config(
        self,
        workflow: str,
        min_reviewers: int = DEFAULT_MIN_REVIEWERS,
        required_approvals: int = 2,
        reviewer_level: str = "senior",
    ) -> dict[str, Any]:
        if reviewer_level not in EXPERTISE_LEVELS:
            raise ValidationError("reviewer_level", f"Must be one of: {', '.join(EXPERTISE_LEVELS)}")
        if min_reviewers < 1 or required_approvals < 1:
            raise ValidationError("min_reviewers", "Reviewer counts must be at least 1")
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO workflow_review_config (workflow, min_reviewers, required_approvals, reviewer_level, created_at)
                VALUES (:workflow, :min, :required, :level, :ts)
                ON CONFLICT (workflow) DO UPDATE SET
                    min_reviewers = excluded.min_reviewers,
                    required_approvals = excluded.required_approvals,
                    reviewer_level = excluded.reviewer_level
                """),
                {"workflow": workflow, "min": min_reviewers, "required": required_approvals,
                 "level": reviewer_level, "ts": now_iso()},
            )
            conn.commit()
        return self.get_workflow_config(workflow)

    def get_workflow_config(self, workflow: str) -> dict[str, Any]:
        """Review settings for a workflow, with defaults when unconfigured."""
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM workflow_review_config WHERE workflow = :w"), {"w": workflow}
            ).fetchone()
        if row is None:
            return {
                "workflow": workflow,
                "min_reviewers": DEFAULT_MIN_REVIEWERS,
                "required_approvals": self.default_required_approvals,
                "reviewer_level": "senior",
            }
        return dict(row._mapping)

    # =========================================================================
    # Matching and Assignment
    # =========================================================================

    def find_available_reviewers(
        self,
        workflow: str,
        role: str,
        required_level: str = "any",
        limit: int | None = None,
        exclude: tuple[str, ...] | list[str] = (),
    ) -> list[dict[str, Any]]:
        """Rank reviewers with spare capacity for a workflow and role.

        Returns:
            Candidate dicts with a ``match_score``, best first
        """
        sql = """
            SELECT * FROM reviewer_expertise
            WHERE is_active = 1 AND is_available = 1
              AND current_review_count < max_concurrent_reviews
        """
        params: dict[str, Any] = {}
        if required_level != "any":
            sql += " AND expertise_level = :level"
            params["level"] = required_level

        with get_db() as conn:
            rows = conn.execute(text(sql), params).fetchall()

        candidates = []
        for row in rows:
            if row.reviewer_id in exclude:
                continue
            reviewer = row_to_dict(row, json_fields=("workflows", "roles"), bool_fields=("is_available", "is_active"))
            reviewer["match_score"] = reviewer_score(
                workflow, role, reviewer["workflows"] or [], reviewer["roles"] or [],
                reviewer["expertise_level"], reviewer["current_review_count"],
            )
            candidates.append(reviewer)

        # score desc, then least recently active first (never-active before all)
        candidates.sort(key=lambda r: (-r["match_score"], r["last_review_at"] is not None, r["last_review_at"] or ""))
        return candidates[:limit] if limit is not None else candidates

    def auto_assign_reviewers(self, submission_id: str, assigned_by: str | None = None) -> list[dict[str, Any]]:
        """Assign the best available reviewers up to the workflow's minimum."""
        submission = self.get_submission(submission_id)
        if submission.status not in OPEN_STATUSES:
            raise ConflictError(f"Cannot assign reviewers to a submission in status '{submission.status}'")

        existing = {a["reviewer_id"] for a in self.get_assignments(submission_id)}
        needed = self.get_workflow_config(submission.workflow)["min_reviewers"] - len(existing)
        if needed <= 0:
            return []

        candidates = self.find_available_reviewers(
            submission.workflow, submission.role,
            limit=needed, exclude=tuple(existing | {submission.submitter_id}),
        )
        with get_db() as conn:
            assigned = [
                self._assign(conn, submission, c["reviewer_id"], c["expertise_level"], assigned_by)
                for c in candidates
            ]
            conn.commit()

        log.info("reviewers_auto_assigned", submission_id=submission_id, count=len(assigned), needed=needed)
        return assigned

    def assign_reviewer(self, submission_id: str, reviewer_id: str, assigned_by: str | None = None) -> dict[str, Any]:
        submission = self.get_submission(submission_id)
        if submission.status not in OPEN_STATUSES:
            raise ConflictError(f"Cannot assign reviewers to a submission in status '{submission.status}'")
        if reviewer_id == submission.submitter_id:
            raise ValidationError("reviewer_id", "Submitters cannot review their own submission")

        with get_db() as conn:
            duplicate = conn.execute(
                text("SELECT 1 FROM review_assignments WHERE submission_id = :s AND reviewer_id = :r"),
                {"s": submission_id, "r": reviewer_id},
            ).fetchone()
            if duplicate:
                raise ConflictError(
                    f"Reviewer '{reviewer_id}' is already assigned",
                    {"submission_id": submission_id, "reviewer_id": reviewer_id},
                )
            level = conn.execute(
                text("SELECT expertise_level FROM reviewer_expertise WHERE reviewer_id = :r"),
                {"r": reviewer_id},
            ).fetchone()
            assignment = self._assign(conn, submission, reviewer_id, level[0] if level else None, assigned_by)
            conn.commit()
        return assignment

    def _assign(
        self,
        conn: Connection,
        submission: SubmissionRecord,
        reviewer_id: str,
        reviewer_level: str | None,
        assigned_by: str | None,
    ) -> dict[str, Any]:
        ts = now_iso()
        assignment = {
            "id": generate_uuid(),
            "submission_id": submission.id,
            "reviewer_id": reviewer_id,
            "assigned_by": assigned_by,
            "reviewer_level": reviewer_level,
            "status": "assigned",
            "assigned_at": ts,
            "completed_at": None,
        }
        conn.execute(
            text("""
            INSERT INTO review_assignments
            (id, submission_id, reviewer_id, assigned_by, reviewer_level, status, assigned_at)
            VALUES (:id, :submission_id, :reviewer_id, :assigned_by, :reviewer_level, :status, :assigned_at)
            """),
            assignment,
        )
        conn.execute(
            text("""
            UPDATE reviewer_expertise SET current_review_count = current_review_count + 1, updated_at = :ts
            WHERE reviewer_id = :r
            """),
            {"ts": ts, "r": reviewer_id},
        )
        if submission.status == "pending":
            self._set_status(conn, submission, "in_review", assigned_by)
        self.notifications.create_review_notification(
            reviewer_id,
            "assignment",
            f"Review requested: {submission.title}",
            f"You have been assigned to review a {submission.workflow} prompt",
            submission_id=submission.id,
            conn=conn,
        )
        self._log(conn, submission.id, assigned_by, "reviewer_assigned", {"reviewer_id": reviewer_id})
        return assignment

    def get_assignments(self, submission_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM review_assignments WHERE submission_id = :s ORDER BY assigned_at"),
                {"s": submission_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    def get_reviewer_queue(self, reviewer_id: str) -> list[dict[str, Any]]:
        """Open assignments for a reviewer with their submission titles."""
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT a.*, s.title, s.workflow, s.role, s.status AS submission_status
                FROM review_assignments a
                JOIN prompt_submissions s ON s.id = a.submission_id
                WHERE a.reviewer_id = :r AND a.status IN ('assigned', 'in_progress')
                ORDER BY a.assigned_at
                """),
                {"r": reviewer_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    # =========================================================================
    # Reviews
    # =========================================================================

    def submit_review(
        self,
        submission_id: str,
        reviewer_id: str,
        ratings: dict[str, int],
        recommendation: str,
        strengths: str | None = None,
        weaknesses: str | None = None,
        suggestions: str | None = None,
    ) -> dict[str, Any]:
        """Record a review and advance the submission.

        Args:
            ratings: accuracy, clarity, usefulness, completeness, overall (1-5)
            recommendation: approve, request_changes or reject

        Returns:
            The review plus the resulting submission status
        """
        for name in RATING_FIELDS:
            value = ratings.get(name)
            if not isinstance(value, int) or not 1 <= value <= 5:
                raise ValidationError(f"{name}_rating", "Rating must be an integer between 1 and 5")
        if recommendation not in RECOMMENDATIONS:
            raise ValidationError("recommendation", f"Must be one of: {', '.join(RECOMMENDATIONS)}")

        submission = self.get_submission(submission_id)
        if submission.status not in OPEN_STATUSES:
            raise ConflictError(f"Cannot review a submission in status '{submission.status}'")

        review = {
            "id": generate_uuid(),
            "submission_id": submission_id,
            "reviewer_id": reviewer_id,
            **{f"{name}_rating": ratings[name] for name in RATING_FIELDS},
            "strengths": strengths,
            "weaknesses": weaknesses,
            "suggestions": suggestions,
            "recommendation": recommendation,
            "created_at": now_iso(),
        }

        with get_db() as conn:
            assignment = conn.execute(
                text("""
                SELECT id FROM review_assignments
                WHERE submission_id = :s AND reviewer_id = :r AND status IN ('assigned', 'in_progress')
                """),
                {"s": submission_id, "r": reviewer_id},
            ).fetchone()
            if assignment is None:
                raise PermissionDeniedError("review", "submission")

            conn.execute(
                text("""
                INSERT INTO peer_reviews
                (id, submission_id, reviewer_id, accuracy_rating, clarity_rating, usefulness_rating,
                 completeness_rating, overall_rating, strengths, weaknesses, suggestions,
                 recommendation, created_at)
                VALUES (:id, :submission_id, :reviewer_id, :accuracy_rating, :clarity_rating,
                        :usefulness_rating, :completeness_rating, :overall_rating, :strengths,
                        :weaknesses, :suggestions, :recommendation, :created_at)
                """),
                review,
            )
            conn.execute(
                text("UPDATE review_assignments SET status = 'completed', completed_at = :ts WHERE id = :id"),
                {"ts": review["created_at"], "id": assignment.id},
            )
            conn.execute(
                text("""
                UPDATE reviewer_expertise
                SET current_review_count = CASE WHEN current_review_count > 0 THEN current_review_count - 1 ELSE 0 END,
                    last_review_at = :ts, updated_at = :ts
                WHERE reviewer_id = :r
                """),
                {"ts": review["created_at"], "r": reviewer_id},
            )
            self.notifications.create_review_notification(
                submission.submitter_id,
                "review_complete",
                f"New review: {submission.title}",
                f"A reviewer recommended: {recommendation}",
                submission_id=submission_id,
                conn=conn,
            )
            self._log(conn, submission_id, reviewer_id, "reviewed", {"recommendation": recommendation})
            get_analytics_service().track_event(
                "review", REVIEW_SUBMIT, user_id=reviewer_id,
                properties={"submission_id": submission_id, "recommendation": recommendation},
                conn=conn,
            )

            if recommendation == "approve":
                self._check_approval(conn, submission)
            elif recommendation == "reject":
                self._set_status(conn, submission, "rejected", reviewer_id)
                self.notifications.create_review_notification(
                    submission.submitter_id, "rejected", f"Rejected: {submission.title}",
                    "Your submission was rejected by a reviewer", submission_id=submission_id, conn=conn,
                )
            else:
                self._set_status(conn, submission, "changes_requested", reviewer_id)
                self.notifications.create_review_notification(
                    submission.submitter_id, "changes_requested", f"Changes requested: {submission.title}",
                    suggestions or "A reviewer requested changes", submission_id=submission_id, conn=conn,
                )
            conn.commit()

        log.info("review_submitted", submission_id=submission_id, recommendation=recommendation,
                 status=submission.status)
        return {"review": review, "submission_status": submission.status}

    def check_submission_approval_criteria(self, submission_id: str) -> bool:
        """Approve the submission if enough qualifying approvals exist."""
        submission = self.get_submission(submission_id)
        if submission.status == "approved":
            return True
        with get_db() as conn:
            approved = self._check_approval(conn, submission)
            conn.commit()
        return approved

    def _check_approval(self, conn: Connection, submission: SubmissionRecord) -> bool:
        sql = """
            SELECT COUNT(*) FROM peer_reviews r
            JOIN review_assignments a ON a.submission_id = r.submission_id AND a.reviewer_id = r.reviewer_id
            WHERE r.submission_id = :s AND r.recommendation = 'approve'
        """
        if submission.reviewer_level == "senior":
            sql += " AND a.reviewer_level IN ('senior', 'expert')"
        approvals = conn.execute(text(sql), {"s": submission.id}).fetchone()[0]
        if approvals < submission.required_approvals:
            return False

        submission.approved_at = now_iso()
        conn.execute(
            text("UPDATE prompt_submissions SET approved_at = :ts WHERE id = :id"),
            {"ts": submission.approved_at, "id": submission.id},
        )
        self._set_status(conn, submission, "approved", None)
        self.notifications.create_review_notification(
            submission.submitter_id, "approved", f"Approved: {submission.title}",
            f"Your submission received {approvals} approvals", submission_id=submission.id, conn=conn,
        )
        return True

    def get_reviews(self, submission_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM peer_reviews WHERE submission_id = :s ORDER BY created_at"),
                {"s": submission_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    def get_reviewer_stats(self, reviewer_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("""
                SELECT COUNT(*) AS total, AVG(overall_rating) AS avg_rating,
                       SUM(CASE WHEN recommendation = 'approve' THEN 1 ELSE 0 END) AS approvals
                FROM peer_reviews WHERE reviewer_id = :r
                """),
                {"r": reviewer_id},
            ).fetchone()
            load = conn.execute(
                text("SELECT current_review_count FROM reviewer_expertise WHERE reviewer_id = :r"),
                {"r": reviewer_id},
            ).fetchone()
        total = row.total or 0
        return {
            "reviewer_id": reviewer_id,
            "completed_reviews": total,
            "avg_overall_rating": round(row.avg_rating, 2) if row.avg_rating is not None else 0.0,
            "approval_rate": round((row.approvals or 0) / total * 100, 1) if total else 0.0,
            "current_load": load[0] if load else 0,
        }

    # =========================================================================
    # Comments
    # =========================================================================

    def add_comment(
        self,
        submission_id: str,
        author_id: str,
        comment_text: str,
        comment_type: str = "general",
        parent_comment_id: str | None = None,
    ) -> dict[str, Any]:
        if not comment_text or not comment_text.strip():
            raise ValidationError("comment_text", "Comment text is required")
        if comment_type not in COMMENT_TYPES:
            raise ValidationError("comment_type", f"Must be one of: {', '.join(COMMENT_TYPES)}")
        submission = self.get_submission(submission_id)

        ts = now_iso()
        comment = {
            "id": generate_uuid(),
            "submission_id": submission_id,
            "author_id": author_id,
            "parent_comment_id": parent_comment_id,
            "comment_text": comment_text.strip(),
            "comment_type": comment_type,
            "thread_depth": 0,
            "is_resolved": False,
            "created_at": ts,
            "updated_at": ts,
        }

        with get_db() as conn:
            parent = None
            if parent_comment_id:
                parent = conn.execute(
                    text("SELECT author_id, thread_depth FROM review_comments WHERE id = :id AND submission_id = :s"),
                    {"id": parent_comment_id, "s": submission_id},
                ).fetchone()
                if parent is None:
                    raise NotFoundError("Comment", parent_comment_id)
                comment["thread_depth"] = parent.thread_depth + 1
                if comment["thread_depth"] > MAX_THREAD_DEPTH:
                    raise ValidationError("parent_comment_id", f"Maximum thread depth of {MAX_THREAD_DEPTH} exceeded")

            conn.execute(
                text("""
                INSERT INTO review_comments
                (id, submission_id, author_id, parent_comment_id, comment_text, comment_type,
                 thread_depth, is_resolved, created_at, updated_at)
                VALUES (:id, :submission_id, :author_id, :parent_comment_id, :comment_text,
                        :comment_type, :thread_depth, 0, :created_at, :updated_at)
                """),
                comment,
            )

            recipients = []
            if submission.submitter_id != author_id:
                recipients.append(submission.submitter_id)
            if parent is not None and parent.author_id not in (author_id, *recipients):
                recipients.append(parent.author_id)
            for recipient in recipients:
                self.notifications.create_review_notification(
                    recipient, "new_comment", f"New comment on {submission.title}",
                    comment["comment_text"][:200], submission_id=submission_id, conn=conn,
                )
            self._log(conn, submission_id, author_id, "commented",
                      {"comment_id": comment["id"], "comment_type": comment_type})
            conn.commit()

        return comment

    def resolve_comment(self, comment_id: str, resolved_by: str) -> dict[str, Any]:
        ts = now_iso()
        with get_db() as conn:
            result = conn.execute(
                text("""
                UPDATE review_comments
                SET is_resolved = 1, resolved_by = :by, resolved_at = :ts, updated_at = :ts
                WHERE id = :id
                """),
                {"by": resolved_by, "ts": ts, "id": comment_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Comment", comment_id)
            conn.commit()
            row = conn.execute(text("SELECT * FROM review_comments WHERE id = :id"), {"id": comment_id}).fetchone()
        return row_to_dict(row, bool_fields=("is_resolved",))

    def get_comments(self, submission_id: str) -> list[dict[str, Any]]:
        """Comments as a tree: root comments with nested ``replies``."""
        with get_db() as conn:
            rows = conn.execute(
                text("SELECT * FROM review_comments WHERE submission_id = :s ORDER BY created_at, id"),
                {"s": submission_id},
            ).fetchall()

        by_id: dict[str, dict[str, Any]] = {}
        roots: list[dict[str, Any]] = []
        for row in rows:
            comment = row_to_dict(row, bool_fields=("is_resolved",))
            comment["replies"] = []
            by_id[comment["id"]] = comment
        for comment in by_id.values():
            parent = by_id.get(comment["parent_comment_id"]) if comment["parent_comment_id"] else None
            (parent["replies"] if parent else roots).append(comment)
        return roots

    # =========================================================================
    # Reminders and Escalation
    # =========================================================================

    def check_overdue_reviews(
        self,
        now: datetime | None = None,
        min_hours: float = REMIND_AFTER_HOURS,
    ) -> list[dict[str, Any]]:
        """Open assignments older than ``min_hours``, most overdue first."""
        now = now or utcnow()
        with get_db() as conn:
            return self._overdue(conn, now, min_hours)

    def _overdue(
        self,
        conn: Connection,
        now: datetime,
        min_hours: float,
        assignment_id: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = """
            SELECT a.id AS assignment_id, a.submission_id, a.reviewer_id, a.assigned_at,
                   a.last_reminder_at, a.reminder_count, s.title
            FROM review_assignments a
            JOIN prompt_submissions s ON s.id = a.submission_id
            WHERE a.status IN ('assigned', 'in_progress')
              AND s.status IN ('pending', 'in_review')
              AND a.assigned_at <= :cutoff
        """
        params: dict[str, Any] = {"cutoff": to_iso(now - timedelta(hours=min_hours))}
        if assignment_id:
            sql += " AND a.id = :assignment_id"
            params["assignment_id"] = assignment_id

        overdue = []
        for row in conn.execute(text(sql), params).fetchall():
            item = dict(row._mapping)
            item["hours_overdue"] = round(hours_between(parse_iso(item["assigned_at"]), now), 2)
            overdue.append(item)
        overdue.sort(key=lambda item: -item["hours_overdue"])
        return overdue

    def _load_overdue(self, conn: Connection, assignment_id: str, now: datetime) -> dict[str, Any]:
        found = self._overdue(conn, now, 0, assignment_id=assignment_id)
        if not found:
            raise NotFoundError("Open assignment", assignment_id)
        return found[0]

    def send_reminder(
        self,
        assignment_id: str,
        reminder_type: str = "gentle",
        now: datetime | None = None,
    ) -> bool:
        """Remind the reviewer of an open assignment.

        Returns:
            False when a reminder already went out in the last
            REMINDER_COOLDOWN_HOURS
        """
        if reminder_type not in _REMINDER_SUBJECTS:
            raise ValidationError("reminder_type", f"Must be one of: {', '.join(_REMINDER_SUBJECTS)}")
        now = now or utcnow()
        with get_db() as conn:
            sent = self._send_reminder(conn, self._load_overdue(conn, assignment_id, now), reminder_type, now)
            conn.commit()
        return sent

    def _send_reminder(self, conn: Connection, overdue: dict[str, Any], reminder_type: str, now: datetime) -> bool:
        last = parse_iso(overdue["last_reminder_at"])
        if last is not None and hours_between(last, now) < REMINDER_COOLDOWN_HOURS:
            return False

        self.notifications.create_review_notification(
            overdue["reviewer_id"],
            "reminder",
            _REMINDER_SUBJECTS[reminder_type].format(title=overdue["title"]),
            f"Your review for \"{overdue['title']}\" is overdue by {round(overdue['hours_overdue'])} hours",
            submission_id=overdue["submission_id"],
            conn=conn,
        )
        conn.execute(
            text("""
            UPDATE review_assignments
            SET last_reminder_at = :ts, reminder_count = reminder_count + 1
            WHERE id = :id
            """),
            {"ts": to_iso(now), "id": overdue["assignment_id"]},
        )
        self._log(conn, overdue["submission_id"], None, "reminder_sent",
                  {"reviewer_id": overdue["reviewer_id"], "reminder_type": reminder_type})
        return True

    def escalate_review(
        self,
        assignment_id: str,
        reason: str = "overdue",
        now: datetime | None = None,
    ) -> dict[str, Any] | None:
        """Escalate an open assignment under the highest matching rule.

        Returns:
            The escalation log entry, or None when no active rule covers the
            overdue hours or the assignment already has an open escalation
        """
        now = now or utcnow()
        with get_db() as conn:
            escalation = self._escalate(conn, self._load_overdue(conn, assignment_id, now), reason, now)
            conn.commit()
        return escalation

    def _escalate(
        self,
        conn: Connection,
        overdue: dict[str, Any],
        reason: str,
        now: datetime,
    ) -> dict[str, Any] | None:
        open_escalation = conn.execute(
            text("SELECT 1 FROM escalation_log WHERE assignment_id = :id AND resolved = 0"),
            {"id": overdue["assignment_id"]},
        ).fetchone()
        if open_escalation:
            return None

        rule = conn.execute(
            text("""
            SELECT * FROM escalation_rules
            WHERE trigger_condition = :reason AND threshold_hours <= :hours AND is_active = 1
            ORDER BY escalation_level DESC
            LIMIT 1
            """),
            {"reason": reason, "hours": overdue["hours_overdue"]},
        ).fetchone()
        if rule is None:
            return None

        target = rule.escalate_to_user_id or self._escalation_target(
            conn, rule.escalate_to_role, overdue["reviewer_id"], now
        )
        escalation = {
            "id": generate_uuid(),
            "submission_id": overdue["submission_id"],
            "assignment_id": overdue["assignment_id"],
            "reviewer_id": overdue["reviewer_id"],
            "rule_id": rule.id,
            "escalation_level": rule.escalation_level,
            "escalated_to_id": target,
            "reason": reason,
            "hours_overdue": overdue["hours_overdue"],
            "notification_sent": target is not None,
            "resolved": False,
            "resolved_at": None,
            "resolved_by": None,
            "resolution_notes": None,
            "created_at": to_iso(now),
        }
        conn.execute(
            text("""
            INSERT INTO escalation_log
            (id, submission_id, assignment_id, reviewer_id, rule_id, escalation_level, escalated_to_id,
             reason, hours_overdue, notification_sent, resolved, created_at)
            VALUES (:id, :submission_id, :assignment_id, :reviewer_id, :rule_id, :escalation_level,
                    :escalated_to_id, :reason, :hours_overdue, :sent, 0, :created_at)
            """),
            {**escalation, "sent": 1 if target else 0},
        )
        if target:
            self.notifications.create_review_notification(
                target,
                "reminder",
                f"[ESCALATION Level {rule.escalation_level}] Review Overdue: {overdue['title']}",
                f"Review by {overdue['reviewer_id']} is overdue by {round(overdue['hours_overdue'])} hours. "
                f"{rule.notification_template}",
                submission_id=overdue["submission_id"],
                conn=conn,
            )
        self._log(conn, overdue["submission_id"], None, "escalated",
                  {"reviewer_id": overdue["reviewer_id"], "escalated_to": target,
                   "level": rule.escalation_level, "reason": reason})
        log.warning("review_escalated", submission_id=overdue["submission_id"],
                    reviewer_id=overdue["reviewer_id"], level=rule.escalation_level, escalated_to=target)
        return escalation

    @staticmethod
    def _escalation_target(conn: Connection, role_name: str | None, reviewer_id: str, now: datetime) -> str | None:
        """Longest-standing active holder of the role, other than the reviewer."""
        if not role_name:
            return None
        row = conn.execute(
            text("""
            SELECT ura.user_id FROM user_role_assignments ura
            JOIN roles r ON r.id = ura.role_id
            WHERE r.name = :role AND ura.is_active = 1 AND ura.user_id != :reviewer
              AND (ura.valid_until IS NULL OR ura.valid_until > :now)
            ORDER BY ura.created_at, ura.user_id
            LIMIT 1
            """),
            {"role": role_name, "reviewer": reviewer_id, "now": to_iso(now)},
        ).fetchone()
        return row.user_id if row else None

    def process_reminders(self, now: datetime | None = None) -> dict[str, int]:
        """Remind or escalate every overdue assignment once.

        Past ESCALATE_AFTER_HOURS an assignment escalates; without a rule to
        escalate under it gets a critical reminder instead.
        """
        now = now or utcnow()
        counts = {"checked": 0, "sent": 0, "escalated": 0}
        with get_db() as conn:
            for overdue in self._overdue(conn, now, REMIND_AFTER_HOURS):
                counts["checked"] += 1
                hours = overdue["hours_overdue"]
                if hours >= ESCALATE_AFTER_HOURS:
                    if self._escalate(conn, overdue, "overdue", now) is not None:
                        counts["escalated"] += 1
                        continue
                    reminder_type = "critical"
                elif hours >= URGENT_AFTER_HOURS:
                    reminder_type = "urgent"
                else:
                    reminder_type = "gentle"
                if self._send_reminder(conn, overdue, reminder_type, now):
                    counts["sent"] += 1
            conn.commit()

        if counts["sent"] or counts["escalated"]:
            log.info("review_reminders_processed", **counts)
        return counts

    def resolve_escalation(self, escalation_id: str, resolved_by: str, notes: str | None = None) -> dict[str, Any]:
        ts = now_iso()
        with get_db() as conn:
            row = conn.execute(
                text("SELECT resolved FROM escalation_log WHERE id = :id"), {"id": escalation_id}
            ).fetchone()
            if row is None:
                raise NotFoundError("Escalation", escalation_id)
            if row.resolved:
                raise ConflictError("Escalation is already resolved", {"escalation_id": escalation_id})
            conn.execute(
                text("""
                UPDATE escalation_log
                SET resolved = 1, resolved_at = :ts, resolved_by = :by, resolution_notes = :notes
                WHERE id = :id
                """),
                {"ts": ts, "by": resolved_by, "notes": notes, "id": escalation_id},
            )
            conn.commit()
            updated = conn.execute(text("SELECT * FROM escalation_log WHERE id = :id"), {"id": escalation_id}).fetchone()
        return row_to_dict(updated, bool_fields=("notification_sent", "resolved"))

    def get_active_escalations(self, limit: int = 50) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM escalation_log WHERE resolved = 0 ORDER BY created_at DESC LIMIT :limit"),
                {"limit": limit},
            )
            return [row_to_dict(r, bool_fields=("notification_sent", "resolved")) for r in result.fetchall()]

    # =========================================================================
    # Internals
    # =========================================================================

    def get_audit_log(self, submission_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM submission_audit_log WHERE submission_id = :s ORDER BY created_at"),
                {"s": submission_id},
            )
            return [row_to_dict(r, json_fields=("details",)) for r in result.fetchall()]

    @staticmethod
    def _insert_submission(conn: Connection, submission: SubmissionRecord) -> None:
        conn.execute(
            text("""
            INSERT INTO prompt_submissions
            (id, title, workflow, role, department, description, prompt_content, sample_output,
             submitter_id, status, required_approvals, reviewer_level, submission_version,
             parent_submission_id, approved_at, created_at, updated_at)
            VALUES (:id, :title, :workflow, :role, :department, :description, :prompt_content,
                    :sample_output, :submitter_id, :status, :required_approvals, :reviewer_level,
                    :submission_version, :parent_submission_id, :approved_at, :created_at, :updated_at)
            """),
            submission.to_dict(),
        )

    def _set_status(self, conn: Connection, submission: SubmissionRecord, status: str, actor_id: str | None) -> None:
        previous = submission.status
        submission.status = status
        submission.updated_at = now_iso()
        conn.execute(
            text("UPDATE prompt_submissions SET status = :status, updated_at = :ts WHERE id = :id"),
            {"status": status, "ts": submission.updated_at, "id": submission.id},
        )
        self._log(conn, submission.id, actor_id, "status_changed", {"from": previous, "to": status})

    @staticmethod
    def _log(
        conn: Connection,
        submission_id: str,
        actor_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        conn.execute(
            text("""
            INSERT INTO submission_audit_log (id, submission_id, actor_id, action, details, created_at)
            VALUES (:id, :submission_id, :actor_id, :action, :details, :created_at)
            """),
            {
                "id": generate_uuid(),
                "submission_id": submission_id,
                "actor_id": actor_id,
                "action": action,
                "details": dumps(details),
                "created_at": now_iso(),
            },
        )


# Global service instance
_peer_review_service: PeerReviewService | None = None


def get_peer_review_service() -> PeerReviewService:
    """Get or create the global peer review service."""
    global _peer_review_service
    if _peer_review_service is None:
        from promptdesk.core.config import get_settings
        _peer_review_service = PeerReviewService(
            default_required_approvals=get_settings().default_required_approvals,
        )
    return _peer_review_service


def reset_peer_review_service() -> None:
    global _peer_review_service
    _peer_review_service = None
