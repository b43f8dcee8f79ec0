"""
Tests for the audit trail.

Covers the hash chain, tamper detection, snapshots, compliance reports,
export and retention.
"""

import csv
import io
import json
import threading
from datetime import timedelta

import pytest
from sqlalchemy import text

from promptdesk.audit.schemas import AuditCategory, AuditEventType, AuditSeverity
from promptdesk.audit.service import (
    GENESIS_HASH,
    AuditTrailService,
    compute_event_hash,
    detect_changes,
    hash_data,
)
from promptdesk.core.errors import NotFoundError, ValidationError
from promptdesk.storage.database import get_db
from promptdesk.storage.models import utcnow


@pytest.fixture
def audit() -> AuditTrailService:
    return AuditTrailService()


def _log(audit, action="update", actor="user-1", **kwargs):
    return audit.log_event(
        AuditEventType.PROMPT_UPDATE,
        AuditCategory.CONTENT,
        action,
        actor_id=actor,
        resource_type="prompt",
        resource_id=kwargs.pop("resource_id", "p-1"),
        **kwargs,
    )


class TestHashing:
    """Test the pure hashing helpers."""

    def test_event_hash_is_deterministic(self):
        first = compute_event_hash("evt_1", "u", "create", "2025-01-01T00:00:00.000000+00:00", GENESIS_HASH)
        second = compute_event_hash("evt_1", "u", "create", "2025-01-01T00:00:00.000000+00:00", GENESIS_HASH)
        assert first == second
        assert len(first) == 64

    def test_missing_actor_hashes_as_empty(self):
        assert compute_event_hash("e", None, "a", "t", "p") == compute_event_hash("e", "", "a", "t", "p")

    def test_hash_data_ignores_key_order(self):
        assert hash_data({"a": 1, "b": [1, 2]}) == hash_data({"b": [1, 2], "a": 1})

    def test_detect_changes(self):
        assert detect_changes({"title": "A", "tags": ["x"]}, {"title": "B", "tags": ["x"], "new": 1}) == [
            "new",
            "title",
        ]


class TestAuditChain:
    """Test chained logging and verification."""

    def test_events_link_to_predecessor(self, audit):
        """Each event's previous_hash is the prior event's hash."""
        first = _log(audit)
        second = _log(audit, action="publish")

        assert second.sequence_number == first.sequence_number + 1
        assert second.previous_hash == first.event_hash
        assert second.event_id.startswith("evt_")

    def test_changes_recorded(self, audit):
        event = _log(audit, old_values={"title": "Old"}, new_values={"title": "New"})
        assert event.changes == ["title"]

    def test_invalid_enum_rejected(self, audit):
        with pytest.raises(ValidationError) as exc_info:
            audit.log_event("made_up", AuditCategory.CONTENT, "x")
        assert exc_info.value.field == "event_type"

    def test_verify_intact_chain(self, audit):
        for _ in range(3):
            _log(audit)

        result = audit.verify_audit_chain(checked_by="auditor")

        assert result["is_valid"] is True
        assert result["verified_events"] == result["total_events"]
        assert result["broken_links"] == []

    def test_tampering_detected(self, audit):
        """Rewriting a stored event breaks verification at that event."""
        _log(audit)
        victim = _log(audit, action="publish")
        _log(audit)

        with get_db() as conn:
            conn.execute(
                text("UPDATE audit_events SET action = 'delete' WHERE event_id = :id"),
                {"id": victim.event_id},
            )
            conn.commit()

        result = audit.verify_audit_chain()

        assert result["is_valid"] is False
        assert result["broken_links"] == [
            {"event_id": victim.event_id, "sequence_number": victim.sequence_number, "reason": "hash_mismatch"}
        ]

    def test_verify_range_links_to_prior_event(self, audit):
        """A range starting mid-chain links against the preceding event."""
        _log(audit)
        start = utcnow()
        _log(audit)
        _log(audit)

        result = audit.verify_audit_chain(start=start)

        assert result["is_valid"] is True
        assert result["total_events"] == 2


class TestQueries:
    """Test event queries and statistics."""

    def test_query_filters(self, audit):
        _log(audit, actor="alice")
        _log(audit, actor="bob", resource_id="p-2")
        audit.log_event(AuditEventType.USER_LOGIN, AuditCategory.SECURITY, "login", actor_id="alice")

        assert len(audit.query_events(actor_id="alice")) == 2
        assert len(audit.query_events(category="security")) == 1
        assert [e.actor_id for e in audit.get_resource_history("prompt", "p-2")] == ["bob"]

    def test_user_activity(self, audit):
        _log(audit, actor="carol")
        assert len(audit.get_user_activity("carol", days=1)) == 1

    def test_statistics(self, audit):
        _log(audit)
        audit.log_event(AuditEventType.ACCESS_DENIED, AuditCategory.SECURITY, "deny", success=False)

        stats = audit.get_statistics()
        assert stats["by_category"]["security"] == 1
        assert stats["success_rate"] < 100


class TestSnapshots:
    def test_snapshot_verifies(self, audit):
        snapshot = audit.create_snapshot("prompt", "p-1", {"title": "Draft", "version": 2}, actor_id="u")

        assert audit.verify_snapshot(snapshot["id"]) is True
        assert audit.get_snapshots("prompt", "p-1")[0]["snapshot_data"] == {"title": "Draft", "version": 2}

    def test_unknown_snapshot(self, audit):
        with pytest.raises(NotFoundError):
            audit.verify_snapshot("missing")


class TestComplianceReports:
    """Test compliance report generation."""

    def test_report_flags_high_failure_rate(self, audit):
        start = utcnow() - timedelta(minutes=1)
        _log(audit)
        audit.log_event(AuditEventType.ACCESS_DENIED, AuditCategory.SECURITY, "deny",
                        actor_id="x", success=False, severity=AuditSeverity.HIGH)

        report = audit.generate_compliance_report("quarterly", "Q1", start, utcnow() + timedelta(minutes=1))

        assert report["event_count"] == 2
        assert report["user_count"] == 2
        assert report["findings"]["failed_actions"] == 1
        assert "High failure rate detected" in report["findings"]["compliance_issues"]
        assert audit.list_compliance_reports()[0]["id"] == report["id"]

    def test_report_period_validation(self, audit):
        now = utcnow()
        with pytest.raises(ValidationError):
            audit.generate_compliance_report("adhoc", "Bad", now, now - timedelta(days=1))


class TestExportAndRetention:
    """Test export rendering and retention."""

    def test_csv_export(self, audit):
        _log(audit, actor="alice")
        content = audit.export_events("csv", actor_id="exporter")

        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0][0] == "Event ID"
        assert rows[1][3] == "alice"

    def test_json_export_is_audited(self, audit):
        _log(audit)
        events = json.loads(audit.export_events("json"))

        assert events[0]["action"] == "update"
        assert audit.query_events(event_type="data_export")[0].metadata == {"format": "json", "event_count": 1}

    def test_export_format_validation(self, audit):
        with pytest.raises(ValidationError):
            audit.export_events("xml")

    def test_retention_deletes_old_events(self, audit):
        _log(audit)
        audit.log_event(AuditEventType.COMPLIANCE_REPORT, AuditCategory.COMPLIANCE, "generate")

        deleted = audit.apply_audit_retention(now=utcnow() + timedelta(days=400))

        assert deleted == {"content": 1}
        assert len(audit.query_events(category="compliance")) == 1

    def test_legal_hold_skips_category(self, audit):
        _log(audit)
        audit.set_legal_hold("content", True, actor_id="legal")

        assert audit.apply_audit_retention(now=utcnow() + timedelta(days=400)) == {}
        with pytest.raises(ValidationError):
            audit.set_legal_hold("nonsense", True)

    def test_chain_verifies_after_retention(self, audit):
        """Events removed by retention leave checkpoints the survivors link to."""
        for category in (AuditCategory.CONTENT, AuditCategory.COMPLIANCE) * 2:
            audit.log_event(AuditEventType.PROMPT_UPDATE, category, "update", actor_id="u")

        assert audit.apply_audit_retention(now=utcnow() + timedelta(days=400)) == {"content": 2}

        result = audit.verify_audit_chain()
        assert result["is_valid"] is True
        assert result["total_events"] == 2

    def test_retention_of_newest_event_keeps_chain_valid(self, audit):
        audit.log_event(AuditEventType.COMPLIANCE_REPORT, AuditCategory.COMPLIANCE, "generate")
        _log(audit)

        audit.apply_audit_retention(now=utcnow() + timedelta(days=400))

        assert audit.verify_audit_chain()["is_valid"] is True


class TestChainDeletion:
    """Test detection of events deleted outside retention."""

    @staticmethod
    def _delete(event):
        with get_db() as conn:
            conn.execute(text("DELETE FROM audit_events WHERE event_id = :id"), {"id": event.event_id})
            conn.commit()

    def test_deleted_middle_event_breaks_chain(self, audit):
        _log(audit)
        victim = _log(audit)
        successor = _log(audit)

        self._delete(victim)

        result = audit.verify_audit_chain()
        assert result["is_valid"] is False
        assert result["broken_links"] == [
            {"event_id": successor.event_id, "sequence_number": successor.sequence_number, "reason": "chain_break"}
        ]

    def test_truncated_tail_detected(self, audit):
        _log(audit)
        newest = _log(audit)

        self._delete(newest)

        result = audit.verify_audit_chain()
        assert result["is_valid"] is False
        assert result["broken_links"][-1]["reason"] == "missing_events"


class TestConcurrentAppends:
    def test_parallel_logging_keeps_single_chain(self, audit):
        """Appends from many threads get distinct, gapless sequence numbers."""
        errors = []

        def worker():
            try:
                for _ in range(10):
                    _log(audit)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        sequence_numbers = sorted(e.sequence_number for e in audit.query_events(limit=200))
        assert sequence_numbers == list(range(1, 81))
        assert audit.verify_audit_chain()["is_valid"] is True
