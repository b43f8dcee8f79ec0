"""Tests for data governance: retention, classification, masking and privacy."""

from datetime import timedelta

import pytest

from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.governance.service import (
    GovernanceService,
    generate_request_number,
    mask_sensitive_data,
    sensitivity_score,
)
from promptdesk.peer_review.service import PeerReviewService
from promptdesk.storage.database import get_table_stats
from promptdesk.storage.models import utcnow


@pytest.fixture
def governance() -> GovernanceService:
    return GovernanceService()


@pytest.fixture
def submissions():
    service = PeerReviewService()
    return [
        service.create_submission("subject-1", f"Submission {i}", "support", "agent", "Prompt body")
        for i in range(3)
    ]


class TestMasking:
    """Test value masking helpers and rules."""

    @pytest.mark.parametrize("method,expected", [
        ("redact", "***REDACTED***"),
        ("partial", "jo************om"),
        ("null", None),
        ("static", "[MASKED]"),
        ("unknown", "john@example.com"),
    ])
    def test_mask_methods(self, method, expected):
        assert mask_sensitive_data("john@example.com", method) == expected

    def test_redact_preserves_length(self):
        assert mask_sensitive_data("secret", "redact", preserve_length=True) == "******"

    def test_partial_short_values(self):
        assert mask_sensitive_data("abcd", "partial") == "****"

    def test_hash_is_sha256(self):
        assert len(mask_sensitive_data(12345, "hash")) == 64

    def test_apply_masking_uses_active_rules(self, governance):
        """Only active rules for the resource type are applied."""
        governance.create_masking_rule("mask-email", "user", "email", "partial")
        inactive = governance.create_masking_rule("mask-name", "user", "name", "static")
        governance.set_masking_rule_active(inactive["id"], False)

        masked = governance.apply_masking("user", {"email": "john@example.com", "name": "John", "id": 7})

        assert masked == {"email": "jo************om", "name": "John", "id": 7}

    def test_duplicate_rule_name(self, governance):
        governance.create_masking_rule("mask-email", "user", "email", "redact")
        with pytest.raises(ConflictError):
            governance.create_masking_rule("mask-email", "user", "email", "hash")

    def test_delete_unknown_rule(self, governance):
        with pytest.raises(NotFoundError):
            governance.delete_masking_rule("missing")


class TestRetention:
    """Test retention policies."""

    def test_create_validates(self, governance):
        with pytest.raises(ValidationError):
            governance.create_retention_policy("p", "spreadsheets", 30)
        with pytest.raises(ValidationError):
            governance.create_retention_policy("p", "prompts", 0)
        with pytest.raises(ValidationError):
            governance.create_retention_policy("p", "prompts", 30, execution_schedule="yearly")

    def test_soft_delete_records_lifecycle_events(self, governance, submissions):
        """Soft-delete policies record events but keep the rows."""
        policy = governance.create_retention_policy("old-submissions", "prompts", 30)

        result = governance.apply_retention_policy(policy["id"], now=utcnow() + timedelta(days=31))

        assert result["success"] is True
        assert result["records_affected"] == 3
        assert get_table_stats()["prompt_submissions"] == 3
        events = governance.get_lifecycle_events(event_type="archived")
        assert {e["action_taken"] for e in events} == {"soft_delete"}
        assert governance.get_retention_policy(policy["id"])["last_executed_at"] is not None

    def test_hard_delete_removes_rows(self, governance, submissions):
        policy = governance.create_retention_policy("purge", "prompts", 30, soft_delete=False)
        governance.apply_retention_policy(policy["id"], now=utcnow() + timedelta(days=31))
        assert get_table_stats()["prompt_submissions"] == 0

    def test_recent_records_untouched(self, governance, submissions):
        policy = governance.create_retention_policy("old-submissions", "prompts", 30)
        assert governance.apply_retention_policy(policy["id"])["records_affected"] == 0

    def test_unmapped_data_type_affects_nothing(self, governance):
        policy = governance.create_retention_policy("audit", "audit_logs", 1)
        result = governance.apply_retention_policy(policy["id"], now=utcnow() + timedelta(days=5))
        assert result["records_affected"] == 0

    def test_inactive_policy(self, governance):
        policy = governance.create_retention_policy("p", "prompts", 30)
        governance.set_policy_active(policy["id"], False)
        assert governance.apply_retention_policy(policy["id"]) == {
            "success": False,
            "error": "Policy not found or inactive",
        }

    def test_run_due_policies(self, governance):
        """Only policies past their next execution time run."""
        now = utcnow()
        governance.create_retention_policy("hourly", "analytics", 10, execution_schedule="hourly", now=now)
        governance.create_retention_policy("weekly", "reviews", 10, execution_schedule="weekly", now=now)

        results = governance.run_due_policies(now + timedelta(hours=2))

        assert [r["policy_name"] for r in results] == ["hourly"]
        assert governance.run_due_policies(now + timedelta(hours=2)) == []


class TestClassification:
    """Test classification, inventory and lineage."""

    def test_pii_raises_sensitivity(self):
        assert sensitivity_score("internal", False) == 3
        assert sensitivity_score("internal", True) == 7
        assert sensitivity_score("highly_restricted", True) == 10

    def test_reclassify_replaces_entry(self, governance):
        governance.classify_data("prompt", "p1", "internal")
        updated = governance.classify_data("prompt", "p1", "confidential", contains_pii=True, pii_types=["email"])

        assert updated["classification_level"] == "confidential"
        assert updated["sensitivity_score"] == 7
        assert updated["pii_types"] == ["email"]
        assert len(governance.list_classifications()) == 1

    def test_inventory(self, governance):
        governance.classify_data("prompt", "p1", "internal")
        governance.classify_data("prompt", "p2", "public")
        governance.classify_data("report", "r1", "internal")

        inventory = governance.get_data_inventory()
        assert inventory["total_classified"] == 3
        assert inventory["by_classification_level"] == {"internal": 2, "public": 1}
        assert inventory["by_resource_type"] == {"prompt": 2, "report": 1}

    def test_invalid_level(self, governance):
        with pytest.raises(ValidationError):
            governance.classify_data("prompt", "p1", "secret")

    def test_lineage_directions(self, governance):
        governance.record_lineage("prompt", "p1", "prompt", "p2", "derived_from")
        governance.record_lineage("prompt", "p2", "report", "r1", "exported_to")

        lineage = governance.get_lineage("prompt", "p2")
        assert [link["source_id"] for link in lineage["upstream"]] == ["p1"]
        assert [link["target_id"] for link in lineage["downstream"]] == ["r1"]
        assert governance.get_lineage("prompt", "p2", direction="upstream")["downstream"] == []

    def test_self_lineage_rejected(self, governance):
        with pytest.raises(ValidationError):
            governance.record_lineage("prompt", "p1", "prompt", "p1", "references")


class TestPrivacyRequests:
    """Test privacy request handling."""

    def test_request_number_format(self):
        number = generate_request_number(utcnow())
        prefix, millis, suffix = number.split("-")
        assert prefix == "PR"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_deadline_defaults_to_thirty_days(self, governance):
        now = utcnow()
        request = governance.create_privacy_request("access", "subject-1", now=now)
        assert request["status"] == "pending"
        assert request["deadline_at"] > request["created_at"]

    def test_deletion_request_processes_submissions(self, governance, submissions):
        """A deletion request records a lifecycle event per submission."""
        request = governance.create_privacy_request("deletion", "subject-1", requester_email="s@example.com")

        result = governance.process_privacy_request(request["id"], actor_id="dpo")

        assert result["records_processed"] == 3
        stored = governance.get_privacy_request(request["id"])
        assert stored["status"] == "completed"
        assert stored["records_found"] == 3
        assert len(governance.get_lifecycle_events(event_type="deleted")) == 3

    def test_closed_requests_cannot_change(self, governance):
        request = governance.create_privacy_request("opt_out", "subject-1")
        governance.process_privacy_request(request["id"])
        with pytest.raises(ConflictError):
            governance.process_privacy_request(request["id"])
        with pytest.raises(ConflictError):
            governance.update_privacy_request_status(request["id"], "in_progress")

    def test_status_update(self, governance):
        request = governance.create_privacy_request("access", "subject-1")
        updated = governance.update_privacy_request_status(request["id"], "verified", notes="ID checked")
        assert updated["status"] == "verified"
        assert updated["notes"] == "ID checked"
        with pytest.raises(ValidationError):
            governance.update_privacy_request_status(request["id"], "lost")

    def test_unknown_request_type(self, governance):
        with pytest.raises(ValidationError):
            governance.create_privacy_request("export_everything", "subject-1")


class TestReportsAndScore:
    """Test governance reports and the compliance score."""

    def test_score_without_policies(self, governance):
        assert governance.calculate_compliance_score() == 50

    def test_score_without_requests(self, governance):
        governance.create_retention_policy("p", "prompts", 30)
        assert governance.calculate_compliance_score() == 75

    def test_score_counts_on_time_completions(self, governance):
        governance.create_retention_policy("p", "prompts", 30)
        done = governance.create_privacy_request("access", "a")
        governance.process_privacy_request(done["id"])
        governance.create_privacy_request("access", "b")

        assert governance.calculate_compliance_score() == 50

    def test_privacy_report(self, governance):
        governance.create_privacy_request("access", "a", now=utcnow() - timedelta(days=40))
        governance.create_privacy_request("deletion", "b")

        report = governance.generate_governance_report("privacy_requests", actor_id="dpo")

        assert report["report_data"]["total_requests"] == 2
        assert report["report_data"]["overdue"] == 1
        assert governance.list_governance_reports()[0]["report_data"]["by_type"] == {"access": 1, "deletion": 1}

    def test_retention_report_lists_never_executed(self, governance):
        governance.create_retention_policy("p", "prompts", 30)
        data = governance.generate_governance_report("retention_compliance")["report_data"]
        assert data["never_executed"] == ["p"]

    def test_storage_analysis(self, governance):
        data = governance.generate_governance_report("storage_analysis")["report_data"]
        assert data["tables"]["roles"] == 5

    def test_unknown_report_type(self, governance):
        with pytest.raises(ValidationError):
            governance.generate_governance_report("everything")
