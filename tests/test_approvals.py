"""Tests for the approval queue, actions and SLA tracking."""

from datetime import datetime, timedelta, timezone

import pytest

from promptdesk.approvals.service import ApprovalService, elapsed_sla_hours, select_sla_config
from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.prompts.service import PromptService
from promptdesk.storage.models import to_iso

T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

CONFIGS = [
    {"id": "std", "config_name": "default_standard", "department": None, "target_hours": 48, "warning_hours": 36},
    {"id": "high", "config_name": "high_priority", "department": None, "target_hours": 24, "warning_hours": 18},
    {"id": "eng", "config_name": "engineering_standard", "department": "Engineering",
     "target_hours": 72, "warning_hours": 60},
    {"id": "crit", "config_name": "critical", "department": None, "target_hours": 12, "warning_hours": 9},
]


@pytest.fixture
def service() -> ApprovalService:
    return ApprovalService()


@pytest.fixture
def prompt():
    return PromptService().create_prompt("author-1", {
        "title": "Release notes drafter",
        "content": "Draft release notes from the merged pull requests.",
        "department": "Product",
    })


@pytest.fixture
def queued(service, prompt):
    return service.submit_for_approval(prompt.id, "author-1", now=T0)


# =============================================================================
# SLA selection
# =============================================================================


class TestSlaSelection:
    """Test SLA configuration choice."""

    def test_priority_thresholds(self):
        assert select_sla_config(CONFIGS, 9, None)["id"] == "crit"
        assert select_sla_config(CONFIGS, 8, "Engineering")["id"] == "high"
        assert select_sla_config(CONFIGS, 5, None)["id"] == "std"

    def test_department_config_for_normal_priority(self):
        assert select_sla_config(CONFIGS, 5, "Engineering")["target_hours"] == 72

    def test_builtin_fallback(self):
        """With no configurations a 48/36 hour fallback applies."""
        sla = select_sla_config([], 5, None)
        assert sla == {"id": None, "target_hours": 48.0, "warning_hours": 36.0}

    def test_elapsed_excludes_pauses(self):
        tracking = {
            "started_at": to_iso(T0),
            "total_paused_hours": 2.0,
            "is_paused": True,
            "paused_at": to_iso(T0 + timedelta(hours=8)),
        }
        assert elapsed_sla_hours(tracking, T0 + timedelta(hours=10)) == pytest.approx(6.0)


# =============================================================================
# Submission and Actions
# =============================================================================


class TestApprovalQueue:
    """Test queue submission and approval actions."""

    def test_submit_starts_sla_clock(self, service, queued):
        """Test submission creates tracking with the default SLA."""
        tracking = service.get_sla_tracking(queued.id)

        assert queued.status == "pending"
        assert queued.department == "Product"
        assert tracking["target_hours"] == 48
        assert tracking["due_at"] == to_iso(T0 + timedelta(hours=48))
        assert tracking["is_within_sla"] is True
        assert [h["to_status"] for h in service.get_history(queued.id)] == ["pending"]

    def test_submit_validation(self, service, prompt):
        with pytest.raises(ValidationError):
            service.submit_for_approval(prompt.id, "author-1", priority=11)
        with pytest.raises(ValidationError):
            service.submit_for_approval(prompt.id, "author-1", submission_type="urgent")
        with pytest.raises(ValidationError):
            service.submit_for_approval(None, "author-1")
        with pytest.raises(NotFoundError):
            service.submit_for_approval("missing", "author-1")

    def test_approve_publishes_prompt(self, service, queued, prompt):
        """Approval publishes the prompt, completes the SLA and notifies."""
        result = service.process_approval_action(
            queued.id, "approve", "reviewer-1", comments="Looks good", now=T0 + timedelta(hours=5),
        )

        assert result["item"].status == "approved"
        assert result["item"].completed_at == to_iso(T0 + timedelta(hours=5))
        assert PromptService().get_prompt("author-1", prompt.id)["prompt"].status == "published"

        tracking = service.get_sla_tracking(queued.id)
        assert tracking["completed_at"] is not None
        assert tracking["elapsed_hours"] == pytest.approx(5.0)
        assert tracking["is_within_sla"] is True

        notes = service.get_notifications("author-1")
        assert notes[0]["notification_type"] == "approval_granted"
        history = get_audit_service().get_resource_history("approval_queue", queued.id)
        assert {e.action for e in history} == {"submit", "approve"}

    def test_conditional_approval(self, service, queued, prompt):
        service.process_approval_action(queued.id, "approve", "reviewer-1", approval_scope="conditional",
                                        conditions=["Add disclaimer"])
        assert PromptService().get_prompt("author-1", prompt.id)["prompt"].status == "conditionally_approved"
        assert service.get_actions(queued.id)[0]["conditions"] == ["Add disclaimer"]

    def test_terminal_items_reject_further_actions(self, service, queued):
        service.process_approval_action(queued.id, "reject", "reviewer-1", comments="Off-brand")
        with pytest.raises(ConflictError):
            service.process_approval_action(queued.id, "approve", "reviewer-1")

    def test_assign_moves_to_review(self, service, queued):
        item = service.assign_reviewer(queued.id, "reviewer-1", "manager-1")

        assert item.status == "in_review"
        assert item.assigned_to == "reviewer-1"
        assert service.get_notifications("reviewer-1")[0]["notification_type"] == "assignment"

    def test_assign_requires_assignee(self, service, queued):
        with pytest.raises(ValidationError):
            service.process_approval_action(queued.id, "assign", "manager-1")

    def test_escalate_raises_priority(self, service, queued):
        item = service.process_approval_action(queued.id, "escalate", "manager-1")["item"]
        assert item.priority == 7
        assert item.escalation_level == 1
        item = service.process_approval_action(queued.id, "escalate", "manager-1")["item"]
        item = service.process_approval_action(queued.id, "escalate", "manager-1")["item"]
        assert item.priority == 10

    def test_withdraw_does_not_complete_sla(self, service, queued):
        service.process_approval_action(queued.id, "withdraw", "author-1")
        assert service.get_sla_tracking(queued.id)["completed_at"] is None

    def test_unknown_action(self, service, queued):
        with pytest.raises(ValidationError):
            service.process_approval_action(queued.id, "shrug", "x")

    def test_request_revision_records_request(self, service, queued, prompt):
        """A structured revision request sends the prompt back to the author."""
        revision = service.request_revision(
            queued.id, "reviewer-1", "content", "Clarify the audience", fields_to_revise=["content"],
        )

        assert revision["status"] == "open"
        assert service.get_queue_item(queued.id).status == "revision_requested"
        assert service.get_revision_requests(queued.id)[0]["fields_to_revise"] == ["content"]
        assert PromptService().get_prompt("author-1", prompt.id)["prompt"].status == "revision_needed"

    def test_bulk_approve_reports_failures(self, service, prompt, queued):
        other = service.submit_for_approval(prompt.id, "author-1", submission_type="revision")
        service.process_approval_action(other.id, "reject", "reviewer-1")

        result = service.bulk_approve([queued.id, other.id, "missing"], "reviewer-1")

        assert result["succeeded"] == [queued.id]
        assert [f["id"] for f in result["failed"]] == [other.id, "missing"]

    def test_queue_ordering_and_filters(self, service, prompt):
        low = service.submit_for_approval(prompt.id, "author-1", priority=2)
        high = service.submit_for_approval(prompt.id, "author-1", priority=9)

        assert [i.id for i in service.get_queue()] == [high.id, low.id]
        assert [i.id for i in service.get_queue(min_priority=5)] == [high.id]

    def test_queue_statistics(self, service, queued):
        service.process_approval_action(queued.id, "approve", "reviewer-1", now=T0 + timedelta(hours=4))
        stats = service.get_queue_statistics()

        assert stats["total"] == 1
        assert stats["by_status"]["approved"] == 1
        assert stats["avg_approval_hours"] == 4.0


# =============================================================================
# SLA Monitoring
# =============================================================================


class TestSlaCompliance:
    """Test warning and breach detection."""

    def test_warning_then_breach_notified_once(self, service, queued):
        """Each threshold notifies exactly once."""
        assert service.check_sla_compliance(T0 + timedelta(hours=10)) == {"checked": 1, "warnings": 0, "breaches": 0}
        assert service.check_sla_compliance(T0 + timedelta(hours=37))["warnings"] == 1
        assert service.check_sla_compliance(T0 + timedelta(hours=40))["warnings"] == 0

        counts = service.check_sla_compliance(T0 + timedelta(hours=50))
        assert counts["breaches"] == 1
        assert service.check_sla_compliance(T0 + timedelta(hours=60))["breaches"] == 0

        tracking = service.get_sla_tracking(queued.id)
        assert tracking["is_within_sla"] is False
        assert tracking["breach_hours"] == pytest.approx(12.0)
        assert service.get_queue_item(queued.id).is_sla_breached
        types = [n["notification_type"] for n in service.get_notifications("author-1")]
        assert types.count("sla_warning") == 1
        assert types.count("sla_breach") == 1

    def test_paused_clock_is_skipped_and_extends_due(self, service, queued):
        service.pause_sla(queued.id, now=T0 + timedelta(hours=10))
        assert service.check_sla_compliance(T0 + timedelta(hours=60))["checked"] == 0

        tracking = service.resume_sla(queued.id, now=T0 + timedelta(hours=20))
        assert tracking["total_paused_hours"] == pytest.approx(10.0)
        assert tracking["due_at"] == to_iso(T0 + timedelta(hours=58))

    def test_pause_twice_conflicts(self, service, queued):
        service.pause_sla(queued.id, now=T0)
        with pytest.raises(ConflictError):
            service.pause_sla(queued.id, now=T0)

    def test_completed_items_not_checked(self, service, queued):
        service.process_approval_action(queued.id, "approve", "reviewer-1", now=T0 + timedelta(hours=1))
        assert service.check_sla_compliance(T0 + timedelta(hours=100))["checked"] == 0

    def test_mark_notification_read(self, service, queued):
        service.process_approval_action(queued.id, "approve", "reviewer-1")
        note = service.get_notifications("author-1")[0]
        service.mark_notification_read(note["id"])
        assert service.get_notifications("author-1", unread_only=True) == []
        with pytest.raises(NotFoundError):
            service.mark_notification_read("missing")
