"""Tests for peer review: matching, reviews, approval criteria and comments."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from promptdesk.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from promptdesk.peer_review.service import MAX_THREAD_DEPTH, PeerReviewService, reviewer_score
from promptdesk.storage.database import get_db
from promptdesk.storage.models import utcnow
from promptdesk.storage.repositories.notification_repo import REVIEW, NotificationRepository

APPROVE = {"accuracy": 5, "clarity": 4, "usefulness": 5, "completeness": 4, "overall": 5}
MEH = {"accuracy": 3, "clarity": 2, "usefulness": 3, "completeness": 3, "overall": 2}


@pytest.fixture
def service() -> PeerReviewService:
    return PeerReviewService()


@pytest.fixture
def notifications() -> NotificationRepository:
    return NotificationRepository()


@pytest.fixture
def submission(service):
    return service.create_submission(
        "author-1",
        "Incident postmortem template",
        workflow="incident",
        role="sre",
        prompt_content="Write a blameless postmortem from these notes.",
    )


def _reviewers(service, *specs):
    for reviewer_id, level, workflows in specs:
        service.upsert_reviewer(reviewer_id, workflows=workflows, expertise_level=level)


# =============================================================================
# Matching
# =============================================================================


class TestReviewerMatching:
    """Test reviewer scoring and selection."""

    def test_score_components(self):
        """Domain match, level bonus and load all feed the score."""
        assert reviewer_score("incident", "sre", ["incident"], [], "expert", 0) == 15
        assert reviewer_score("incident", "sre", [], ["sre"], "senior", 2) == 11
        assert reviewer_score("incident", "sre", [], [], "junior", 0) == 1

    def test_find_available_ranks_by_score(self, service):
        _reviewers(
            service,
            ("generalist", "expert", []),
            ("specialist", "senior", ["incident"]),
            ("junior-1", "junior", ["incident"]),
        )

        ranked = service.find_available_reviewers("incident", "sre")

        assert [r["reviewer_id"] for r in ranked] == ["specialist", "junior-1", "generalist"]
        assert ranked[0]["match_score"] == 13

    def test_unavailable_and_full_reviewers_excluded(self, service):
        service.upsert_reviewer("away", workflows=["incident"], is_available=False)
        service.upsert_reviewer("busy", workflows=["incident"], max_concurrent_reviews=1)
        service.upsert_reviewer("free", workflows=["incident"])
        first = service.create_submission("s", "First", "incident", "sre", "Body text here")
        service.assign_reviewer(first.id, "busy")

        ids = [r["reviewer_id"] for r in service.find_available_reviewers("incident", "sre")]
        assert ids == ["free"]

    def test_required_level_filter(self, service):
        _reviewers(service, ("a", "senior", []), ("b", "expert", []))
        ranked = service.find_available_reviewers("x", "y", required_level="expert")
        assert [r["reviewer_id"] for r in ranked] == ["b"]

    def test_upsert_validates_level(self, service):
        with pytest.raises(ValidationError):
            service.upsert_reviewer("r", expertise_level="guru")


# =============================================================================
# Submissions and Assignment
# =============================================================================


class TestSubmissions:
    """Test submission lifecycle and assignment."""

    def test_defaults_from_workflow_config(self, service):
        """Test workflow config supplies approval defaults."""
        service.set_workflow_config("legal", min_reviewers=3, required_approvals=3, reviewer_level="expert")
        submission = service.create_submission("a", "Contract summary", "legal", "counsel", "Summarize this")

        assert submission.required_approvals == 3
        assert submission.reviewer_level == "expert"
        assert submission.status == "pending"

    def test_missing_fields_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.create_submission("a", "  ", "incident", "sre", "body")
        assert exc_info.value.field == "title"

    def test_auto_assign_fills_minimum_and_skips_submitter(self, service, submission, notifications):
        """Auto-assignment picks the best reviewers but never the submitter."""
        _reviewers(
            service,
            ("author-1", "expert", ["incident"]),
            ("r1", "expert", ["incident"]),
            ("r2", "senior", ["incident"]),
            ("r3", "junior", []),
        )

        assigned = service.auto_assign_reviewers(submission.id, assigned_by="lead")

        assert [a["reviewer_id"] for a in assigned] == ["r1", "r2"]
        assert service.get_submission(submission.id).status == "in_review"
        assert service.get_reviewer("r1")["current_review_count"] == 1
        assert notifications.unread_count(REVIEW, "r1") == 1
        assert service.auto_assign_reviewers(submission.id) == []

    def test_assign_rejects_submitter_and_duplicates(self, service, submission):
        with pytest.raises(ValidationError):
            service.assign_reviewer(submission.id, "author-1")
        service.assign_reviewer(submission.id, "r1")
        with pytest.raises(ConflictError):
            service.assign_reviewer(submission.id, "r1")

    def test_reviewer_queue(self, service, submission):
        service.assign_reviewer(submission.id, "r1")
        queue = service.get_reviewer_queue("r1")
        assert len(queue) == 1
        assert queue[0]["title"] == "Incident postmortem template"

    def test_withdraw_only_by_submitter(self, service, submission):
        with pytest.raises(PermissionDeniedError):
            service.withdraw(submission.id, "someone")
        assert service.withdraw(submission.id, "author-1").status == "withdrawn"
        with pytest.raises(ConflictError):
            service.assign_reviewer(submission.id, "r1")

    def test_list_submissions_filters(self, service, submission):
        service.create_submission("author-2", "Other", "sales", "rep", "Body text")
        assert [s.id for s in service.list_submissions(workflow="incident")] == [submission.id]
        assert len(service.list_submissions(status="pending")) == 2

    def test_unknown_submission(self, service):
        with pytest.raises(NotFoundError):
            service.get_submission("missing")


# =============================================================================
# Reviews and Approval
# =============================================================================


class TestReviews:
    """Test review submission and approval criteria."""

    def test_two_senior_approvals_approve(self, service, submission, notifications):
        """Test a submission is approved after the required approvals."""
        _reviewers(service, ("r1", "senior", ["incident"]), ("r2", "expert", ["incident"]))
        service.auto_assign_reviewers(submission.id)

        first = service.submit_review(submission.id, "r1", APPROVE, "approve", strengths="Clear")
        assert first["submission_status"] == "in_review"

        second = service.submit_review(submission.id, "r2", APPROVE, "approve")
        assert second["submission_status"] == "approved"

        approved = service.get_submission(submission.id)
        assert approved.approved_at is not None
        types = [n["notification_type"] for n in notifications.list_for_user(REVIEW, "author-1")]
        assert "approved" in types
        assert service.get_reviewer("r1")["current_review_count"] == 0

    def test_review_count_never_goes_negative(self, service, submission):
        """Completing a review with an already empty load keeps the count at zero."""
        _reviewers(service, ("r1", "senior", []))
        service.assign_reviewer(submission.id, "r1")
        with get_db() as conn:
            conn.execute(text("UPDATE reviewer_expertise SET current_review_count = 0 WHERE reviewer_id = 'r1'"))
            conn.commit()

        service.submit_review(submission.id, "r1", APPROVE, "approve")

        assert service.get_reviewer("r1")["current_review_count"] == 0

    def test_junior_approvals_do_not_count_for_senior_level(self, service, submission):
        _reviewers(service, ("j1", "junior", []), ("j2", "junior", []))
        service.assign_reviewer(submission.id, "j1")
        service.assign_reviewer(submission.id, "j2")
        service.submit_review(submission.id, "j1", APPROVE, "approve")
        result = service.submit_review(submission.id, "j2", APPROVE, "approve")

        assert result["submission_status"] == "in_review"
        assert service.check_submission_approval_criteria(submission.id) is False

    def test_request_changes_then_resubmit(self, service, submission, notifications):
        """Test the resubmission creates a new version and notifies reviewers."""
        _reviewers(service, ("r1", "senior", []))
        service.assign_reviewer(submission.id, "r1")
        result = service.submit_review(submission.id, "r1", MEH, "request_changes", suggestions="Add a timeline")
        assert result["submission_status"] == "changes_requested"

        child = service.resubmit(submission.id, "author-1", prompt_content="Write a postmortem with a timeline.")

        assert child.submission_version == 2
        assert child.parent_submission_id == submission.id
        assert child.title == submission.title
        assert service.get_submission(submission.id).status == "resubmitted"
        types = [n["notification_type"] for n in notifications.list_for_user(REVIEW, "r1")]
        assert "resubmission" in types

    def test_resubmit_requires_closed_review(self, service, submission):
        with pytest.raises(ConflictError):
            service.resubmit(submission.id, "author-1")

    def test_reject_closes_submission(self, service, submission):
        service.assign_reviewer(submission.id, "r1")
        assert service.submit_review(submission.id, "r1", MEH, "reject")["submission_status"] == "rejected"
        with pytest.raises(ConflictError):
            service.submit_review(submission.id, "r1", MEH, "approve")

    def test_unassigned_reviewer_cannot_review(self, service, submission):
        with pytest.raises(PermissionDeniedError):
            service.submit_review(submission.id, "stranger", APPROVE, "approve")

    def test_rating_validation(self, service, submission):
        service.assign_reviewer(submission.id, "r1")
        with pytest.raises(ValidationError) as exc_info:
            service.submit_review(submission.id, "r1", {**APPROVE, "clarity": 6}, "approve")
        assert exc_info.value.field == "clarity_rating"
        with pytest.raises(ValidationError):
            service.submit_review(submission.id, "r1", APPROVE, "maybe")

    def test_reviewer_stats(self, service, submission):
        service.assign_reviewer(submission.id, "r1")
        service.submit_review(submission.id, "r1", APPROVE, "approve")

        stats = service.get_reviewer_stats("r1")
        assert stats["completed_reviews"] == 1
        assert stats["avg_overall_rating"] == 5
        assert stats["approval_rate"] == 100.0

    def test_audit_log_records_transitions(self, service, submission):
        service.assign_reviewer(submission.id, "r1", assigned_by="lead")
        actions = [e["action"] for e in service.get_audit_log(submission.id)]
        assert actions[0] == "created"
        assert "reviewer_assigned" in actions
        assert "status_changed" in actions


# =============================================================================
# Comments
# =============================================================================


class TestComments:
    """Test threaded review comments."""

    def test_threaded_replies(self, service, submission, notifications):
        """Replies nest under their parent and notify the submitter."""
        root = service.add_comment(submission.id, "r1", "Is the timeline required?", comment_type="question")
        reply = service.add_comment(submission.id, "author-1", "Yes, always.", parent_comment_id=root["id"])

        assert reply["thread_depth"] == 1
        tree = service.get_comments(submission.id)
        assert len(tree) == 1
        assert tree[0]["replies"][0]["id"] == reply["id"]
        assert notifications.unread_count(REVIEW, "author-1") == 1
        assert notifications.unread_count(REVIEW, "r1") == 1

    def test_max_thread_depth(self, service, submission):
        parent = service.add_comment(submission.id, "r1", "Level zero")
        for _ in range(MAX_THREAD_DEPTH):
            parent = service.add_comment(submission.id, "r1", "Deeper", parent_comment_id=parent["id"])

        with pytest.raises(ValidationError):
            service.add_comment(submission.id, "r1", "Too deep", parent_comment_id=parent["id"])

    def test_comment_validation(self, service, submission):
        with pytest.raises(ValidationError):
            service.add_comment(submission.id, "r1", "   ")
        with pytest.raises(ValidationError):
            service.add_comment(submission.id, "r1", "Hi", comment_type="rant")
        with pytest.raises(NotFoundError):
            service.add_comment(submission.id, "r1", "Hi", parent_comment_id="missing")

    def test_resolve_comment(self, service, submission):
        comment = service.add_comment(submission.id, "r1", "Typo in line 2", comment_type="suggestion")
        resolved = service.resolve_comment(comment["id"], "author-1")

        assert resolved["is_resolved"] is True
        assert resolved["resolved_by"] == "author-1"
        with pytest.raises(NotFoundError):
            service.resolve_comment("missing", "author-1")


# =============================================================================
# Reminders and Escalation
# =============================================================================


def _later(hours: float):
    return utcnow() + timedelta(hours=hours)


def _reminders(notifications, user_id):
    return [n for n in notifications.list_for_user(REVIEW, user_id) if n["notification_type"] == "reminder"]


class TestRemindersAndEscalation:
    """Test overdue detection, reminders and escalation of stale assignments."""

    @pytest.fixture
    def assignment(self, service, submission):
        return service.assign_reviewer(submission.id, "r1")

    def test_overdue_listing(self, service, assignment):
        assert service.check_overdue_reviews(now=_later(1)) == []

        overdue = service.check_overdue_reviews(now=_later(30))

        assert [o["assignment_id"] for o in overdue] == [assignment["id"]]
        assert 29.9 < overdue[0]["hours_overdue"] < 30.1
        assert overdue[0]["title"] == "Incident postmortem template"

    def test_gentle_then_urgent_reminder_with_cooldown(self, service, assignment, notifications):
        """Reminders escalate in tone and are not repeated within the cooldown."""
        assert service.process_reminders(now=_later(25)) == {"checked": 1, "sent": 1, "escalated": 0}
        first = _reminders(notifications, "r1")
        assert len(first) == 1
        assert first[0]["title"] == 'Reminder: Review pending for "Incident postmortem template"'
        assert "overdue by 25 hours" in first[0]["message"]

        assert service.process_reminders(now=_later(30))["sent"] == 0

        assert service.process_reminders(now=_later(50))["sent"] == 1
        titles = [n["title"] for n in _reminders(notifications, "r1")]
        assert any(t.startswith("URGENT:") for t in titles)
        assert service.get_assignments(assignment["submission_id"])[0]["reminder_count"] == 2

    def test_send_reminder_directly(self, service, assignment, notifications):
        assert service.send_reminder(assignment["id"], "urgent", now=_later(49)) is True
        assert service.send_reminder(assignment["id"], "urgent", now=_later(50)) is False
        with pytest.raises(ValidationError):
            service.send_reminder(assignment["id"], "polite")
        assert len(_reminders(notifications, "r1")) == 1

    def test_escalates_to_manager_after_72_hours(self, service, assignment, notifications, grant_role):
        """Long-overdue reviews escalate once to the manager role holder."""
        grant_role("manager-1", "manager")

        assert service.process_reminders(now=_later(73)) == {"checked": 1, "sent": 0, "escalated": 1}

        escalations = service.get_active_escalations()
        assert len(escalations) == 1
        assert escalations[0]["escalated_to_id"] == "manager-1"
        assert escalations[0]["escalation_level"] == 3
        assert escalations[0]["notification_sent"] is True
        manager_titles = [n["title"] for n in _reminders(notifications, "manager-1")]
        assert manager_titles == ["[ESCALATION Level 3] Review Overdue: Incident postmortem template"]

        # an open escalation is not repeated; the reviewer gets a critical reminder instead
        assert service.process_reminders(now=_later(80)) == {"checked": 1, "sent": 1, "escalated": 0}
        assert _reminders(notifications, "r1")[0]["title"].startswith("CRITICAL:")
        assert len(service.get_active_escalations()) == 1

    def test_escalation_without_role_holder(self, service, assignment):
        escalation = service.escalate_review(assignment["id"], now=_later(75))

        assert escalation["escalated_to_id"] is None
        assert escalation["notification_sent"] is False
        assert service.escalate_review(assignment["id"], now=_later(76)) is None

    def test_no_matching_rule_sends_critical_reminder(self, service, assignment, notifications):
        with get_db() as conn:
            conn.execute(text("UPDATE escalation_rules SET is_active = 0"))
            conn.commit()

        assert service.process_reminders(now=_later(73)) == {"checked": 1, "sent": 1, "escalated": 0}
        assert service.get_active_escalations() == []
        assert _reminders(notifications, "r1")[0]["title"].startswith("CRITICAL:")

    def test_resolve_escalation(self, service, assignment):
        escalation = service.escalate_review(assignment["id"], now=_later(73))

        resolved = service.resolve_escalation(escalation["id"], "manager-1", "Reassigned to r2")

        assert resolved["resolved"] is True
        assert resolved["resolved_by"] == "manager-1"
        assert resolved["resolution_notes"] == "Reassigned to r2"
        assert service.get_active_escalations() == []
        with pytest.raises(ConflictError):
            service.resolve_escalation(escalation["id"], "manager-1")
        with pytest.raises(NotFoundError):
            service.resolve_escalation("missing", "manager-1")

    def test_completed_reviews_are_not_reminded(self, service, submission, assignment):
        service.submit_review(submission.id, "r1", APPROVE, "approve")

        assert service.process_reminders(now=_later(30)) == {"checked": 0, "sent": 0, "escalated": 0}
        with pytest.raises(NotFoundError):
            service.send_reminder(assignment["id"], now=_later(30))
