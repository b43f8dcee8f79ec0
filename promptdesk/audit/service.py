"""
Audit trail service.

Every event is chained to its predecessor: ``event_hash`` is the SHA-256 of
``event_id|actor_id|action|created_at|previous_hash`` and ``previous_hash``
is the hash of the event with the preceding sequence number ("GENESIS" for
the first). Rewriting any stored event breaks the chain at that point.
"""

from __future__ import annotations

import csv
import hashlib
import io
import json
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.core.errors import NotFoundError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db
from promptdesk.storage.models import (
    AuditEventRecord,
    dumps,
    generate_uuid,
    loads,
    now_iso,
    to_iso,
    utcnow,
)

from .schemas import AuditCategory, AuditEventType, AuditSeverity, SnapshotType

log = get_logger(__name__)

GENESIS_HASH = "GENESIS"
DEFAULT_LIMIT = 100

CSV_HEADERS = [
    "Event ID",
    "Event Type",
    "Action",
    "Actor ID",
    "Resource Type",
    "Resource ID",
    "Success",
    "Created At",
]


def compute_event_hash(
    event_id: str,
    actor_id: str | None,
    action: str,
    created_at: str,
    previous_hash: str,
) -> str:
    """Hash the chained fields of an audit event."""
    payload = f"{event_id}|{actor_id or ''}|{action}|{created_at}|{previous_hash}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def hash_data(data: Any) -> str:
    """SHA-256 of the canonical JSON rendering of data."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def detect_changes(old: dict[str, Any] | None, new: dict[str, Any] | None) -> list[str]:
    """Keys whose JSON rendering differs between two states."""
    old = old or {}
    new = new or {}
    changed = []
    for key in sorted(set(old) | set(new)):
        if json.dumps(old.get(key), sort_keys=True, default=str) != json.dumps(
            new.get(key), sort_keys=True, default=str
        ):
            changed.append(key)
    return changed


def _enum_value(enum_cls: type, value: Any, field: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"Must be one of: {allowed}") from None


class AuditTrailService:
    """Append-only, hash-chained audit log with snapshots and reports."""

    # =========================================================================
    # Logging
    # =========================================================================

    def log_event(
        self,
        event_type: AuditEventType | str,
        category: AuditCategory | str,
        action: str,
        actor_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        success: bool = True,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        error_message: str | None = None,
        conn: Connection | None = None,
    ) -> AuditEventRecord:
        """Append an event to the chain.

        Args:
            event_type: One of AuditEventType
            category: One of AuditCategory
            action: Free-form action verb
            actor_id: Who performed the action
            resource_type: Kind of resource affected
            resource_id: Resource identifier
            severity: One of AuditSeverity
            success: Whether the action succeeded
            old_values: State before the change
            new_values: State after the change
            metadata: Extra context
            error_message: Failure reason
            conn: Join the caller's transaction (the caller commits)

        Returns:
            The stored AuditEventRecord
        """
        event_type = _enum_value(AuditEventType, event_type, "event_type")
        category = _enum_value(AuditCategory, category, "event_category")
        severity = _enum_value(AuditSeverity, severity, "severity")

        if conn is None:
            with get_db() as own:
                record = self._append(
                    own, event_type, category, action, actor_id, resource_type,
                    resource_id, severity, success, old_values, new_values,
                    metadata, error_message,
                )
                own.commit()
        else:
            record = self._append(
                conn, event_type, category, action, actor_id, resource_type,
                resource_id, severity, success, old_values, new_values,
                metadata, error_message,
            )

        log.debug(
            "audit_event_logged",
            event_id=record.event_id,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        return record

    def _append(
        self,
        conn: Connection,
        event_type: str,
        category: str,
        action: str,
        actor_id: str | None,
        resource_type: str | None,
        resource_id: str | None,
        severity: str,
        success: bool,
        old_values: dict[str, Any] | None,
        new_values: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
        error_message: str | None,
    ) -> AuditEventRecord:
        # Write the head row first so the read below happens under its lock.
        conn.execute(text("UPDATE audit_chain_head SET sequence_number = sequence_number + 1 WHERE id = 1"))
        head = conn.execute(
            text("SELECT sequence_number, last_hash FROM audit_chain_head WHERE id = 1")
        ).fetchone()
        sequence_number = head.sequence_number
        previous_hash = head.last_hash

        event_id = f"evt_{uuid.uuid4().hex}"
        created_at = now_iso()
        record = AuditEventRecord(
            event_id=event_id,
            sequence_number=sequence_number,
            event_type=event_type,
            event_category=category,
            action=action,
            previous_hash=previous_hash,
            event_hash=compute_event_hash(event_id, actor_id, action, created_at, previous_hash),
            severity=severity,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            changes=detect_changes(old_values, new_values) if (old_values or new_values) else [],
            metadata=metadata or {},
            success=success,
            error_message=error_message,
            created_at=created_at,
        )

        conn.execute(
            text("""
            INSERT INTO audit_events (
                id, event_id, sequence_number, event_type, event_category, severity,
                action, actor_id, resource_type, resource_id, old_values, new_values,
                changes, metadata, success, error_message, previous_hash, event_hash,
                created_at
            ) VALUES (
                :id, :event_id, :sequence_number, :event_type, :event_category, :severity,
                :action, :actor_id, :resource_type, :resource_id, :old_values, :new_values,
                :changes, :metadata, :success, :error_message, :previous_hash, :event_hash,
                :created_at
            )
            """),
            record.to_dict(),
        )
        conn.execute(
            text("UPDATE audit_chain_head SET last_hash = :hash WHERE id = 1"),
            {"hash": record.event_hash},
        )
        return record

    # =========================================================================
    # Integrity
    # =========================================================================

    @staticmethod
    def _link_hash(conn: Connection, known: dict[int, str], sequence_number: int) -> str | None:
        """Hash of the event at ``sequence_number``, stored or checkpointed."""
        if sequence_number < 1:
            return GENESIS_HASH
        if sequence_number in known:
            return known[sequence_number]
        row = conn.execute(
            text("""
            SELECT event_hash FROM audit_events WHERE sequence_number = :seq
            UNION ALL
            SELECT event_hash FROM audit_chain_checkpoints WHERE sequence_number = :seq
            """),
            {"seq": sequence_number},
        ).fetchone()
        return row.event_hash if row else None

    def verify_audit_chain(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        checked_by: str | None = None,
    ) -> dict[str, Any]:
        """Recompute hashes and links for events in a time range.

        Each event is linked against the event with the preceding sequence
        number. When that event was removed by retention its checkpoint
        supplies the hash; a predecessor missing from both is a break.
        Verifying the whole chain also checks that the newest event is the
        chain head.

        Returns:
            Dict with is_valid, total_events, verified_events, broken_links
        """
        sql = "SELECT * FROM audit_events WHERE 1=1"
        params: dict[str, Any] = {}
        if start is not None:
            sql += " AND created_at >= :start"
            params["start"] = to_iso(start)
        if end is not None:
            sql += " AND created_at <= :end"
            params["end"] = to_iso(end)
        sql += " ORDER BY sequence_number ASC"

        with get_db() as conn:
            events = [AuditEventRecord.from_row(r._mapping) for r in conn.execute(text(sql), params)]

            hashes = {event.sequence_number: event.event_hash for event in events}
            broken: list[dict[str, Any]] = []
            verified = 0
            for event in events:
                ok = True
                expected_previous = self._link_hash(conn, hashes, event.sequence_number - 1)
                if event.previous_hash != expected_previous:
                    broken.append({
                        "event_id": event.event_id,
                        "sequence_number": event.sequence_number,
                        "reason": "chain_break",
                    })
                    ok = False
                recomputed = compute_event_hash(
                    event.event_id, event.actor_id, event.action,
                    event.created_at, event.previous_hash,
                )
                if recomputed != event.event_hash:
                    broken.append({
                        "event_id": event.event_id,
                        "sequence_number": event.sequence_number,
                        "reason": "hash_mismatch",
                    })
                    ok = False
                if ok:
                    verified += 1

            if start is None and end is None:
                tip = conn.execute(
                    text("SELECT sequence_number FROM audit_chain_head WHERE id = 1")
                ).fetchone().sequence_number
                if tip and self._link_hash(conn, hashes, tip) is None:
                    broken.append({"event_id": None, "sequence_number": tip, "reason": "missing_events"})

            result = {
                "is_valid": not broken,
                "total_events": len(events),
                "verified_events": verified,
                "broken_links": broken,
            }

            conn.execute(
                text("""
                INSERT INTO audit_integrity_checks
                (id, range_start, range_end, total_events, verified_events, is_valid,
                 broken_links, checked_by, created_at)
                VALUES (:id, :range_start, :range_end, :total, :verified, :is_valid,
                        :broken, :checked_by, :created_at)
                """),
                {
                    "id": generate_uuid(),
                    "range_start": params.get("start"),
                    "range_end": params.get("end"),
                    "total": len(events),
                    "verified": verified,
                    "is_valid": 1 if not broken else 0,
                    "broken": dumps(broken),
                    "checked_by": checked_by,
                    "created_at": now_iso(),
                },
            )
            conn.commit()

        if broken:
            log.warning("audit_chain_broken", broken_links=len(broken), total_events=len(events))
        else:
            log.info("audit_chain_verified", total_events=len(events))
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def query_events(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        actor_id: str | None = None,
        event_type: str | None = None,
        category: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        severity: str | None = None,
        limit: int | None = DEFAULT_LIMIT,
    ) -> list[AuditEventRecord]:
        """Filter events, newest first."""
        sql = "SELECT * FROM audit_events WHERE 1=1"
        params: dict[str, Any] = {}
        if start is not None:
            sql += " AND created_at >= :start"
            params["start"] = to_iso(start)
        if end is not None:
            sql += " AND created_at <= :end"
            params["end"] = to_iso(end)
        for column, value in (
            ("actor_id", actor_id),
            ("event_type", event_type),
            ("event_category", category),
            ("resource_type", resource_type),
            ("resource_id", resource_id),
            ("severity", severity),
        ):
            if value is not None:
                sql += f" AND {column} = :{column}"
                params[column] = value
        sql += " ORDER BY sequence_number DESC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        with get_db() as conn:
            result = conn.execute(text(sql), params)
            return [AuditEventRecord.from_row(row._mapping) for row in result.fetchall()]

    def get_resource_history(self, resource_type: str, resource_id: str) -> list[AuditEventRecord]:
        return self.query_events(resource_type=resource_type, resource_id=resource_id, limit=None)

    def get_user_activity(self, actor_id: str, days: int = 30) -> list[AuditEventRecord]:
        return self.query_events(actor_id=actor_id, start=utcnow() - timedelta(days=days), limit=None)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def create_snapshot(
        self,
        resource_type: str,
        resource_id: str,
        data: dict[str, Any],
        snapshot_type: SnapshotType | str = SnapshotType.SCHEDULED,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """Store a point-in-time copy of a resource with its content hash."""
        snapshot_type = _enum_value(SnapshotType, snapshot_type, "snapshot_type")
        snapshot = {
            "id": generate_uuid(),
            "resource_type": resource_type,
            "resource_id": resource_id,
            "snapshot_type": snapshot_type,
            "snapshot_data": data,
            "snapshot_hash": hash_data(data),
            "created_by": actor_id,
            "created_at": now_iso(),
        }
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO audit_snapshots
                (id, resource_type, resource_id, snapshot_type, snapshot_data,
                 snapshot_hash, created_by, created_at)
                VALUES (:id, :resource_type, :resource_id, :snapshot_type, :snapshot_data,
                        :snapshot_hash, :created_by, :created_at)
                """),
                {**snapshot, "snapshot_data": json.dumps(data, sort_keys=True, default=str)},
            )
            conn.commit()
        return snapshot

    def get_snapshots(self, resource_type: str, resource_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT * FROM audit_snapshots
                WHERE resource_type = :resource_type AND resource_id = :resource_id
                ORDER BY created_at DESC
                """),
                {"resource_type": resource_type, "resource_id": resource_id},
            )
            snapshots = []
            for row in result.fetchall():
                data = dict(row._mapping)
                data["snapshot_data"] = loads(data["snapshot_data"], {})
                snapshots.append(data)
            return snapshots

    def verify_snapshot(self, snapshot_id: str) -> bool:
        """Check a stored snapshot still matches its hash."""
        with get_db() as conn:
            row = conn.execute(
                text("SELECT snapshot_data, snapshot_hash FROM audit_snapshots WHERE id = :id"),
                {"id": snapshot_id},
            ).fetchone()
        if row is None:
            raise NotFoundError("Snapshot", snapshot_id)
        return hash_data(loads(row.snapshot_data)) == row.snapshot_hash

    # =========================================================================
    # Reports and Statistics
    # =========================================================================

    @staticmethod
    def analyze_compliance(events: list[AuditEventRecord]) -> dict[str, Any]:
        """Summarize compliance-relevant signals over a set of events."""
        findings = {
            "total_events": len(events),
            "high_severity_events": sum(1 for e in events if e.severity == "high"),
            "critical_severity_events": sum(1 for e in events if e.severity == "critical"),
            "failed_actions": sum(1 for e in events if not e.success),
            "data_exports": sum(1 for e in events if e.event_type == "data_export"),
            "security_changes": sum(1 for e in events if e.event_type == "security_change"),
            "compliance_issues": [],
        }
        if findings["failed_actions"] > len(events) * 0.1:
            findings["compliance_issues"].append("High failure rate detected")
        if findings["data_exports"] > 50:
            findings["compliance_issues"].append("Unusual number of data exports")
        return findings

    @staticmethod
    def summarize(events: list[AuditEventRecord], findings: dict[str, Any]) -> str:
        return (
            f"Audit report covering {len(events)} events. "
            f"{findings['high_severity_events']} high severity events, "
            f"{findings['critical_severity_events']} critical events. "
            f"{len(findings['compliance_issues'])} compliance issues identified."
        )

    @staticmethod
    def calculate_statistics(events: list[AuditEventRecord]) -> dict[str, Any]:
        by_category: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for event in events:
            by_category[event.event_category] = by_category.get(event.event_category, 0) + 1
            by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        successes = sum(1 for e in events if e.success)
        return {
            "by_category": by_category,
            "by_type": by_type,
            "total_events": len(events),
            "success_rate": (successes / len(events) * 100) if events else 0.0,
        }

    def get_statistics(self, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
        return self.calculate_statistics(self.query_events(start=start, end=end, limit=None))

    def generate_compliance_report(
        self,
        report_type: str,
        report_name: str,
        start: datetime,
        end: datetime,
        compliance_framework: str | None = None,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """Analyze events in a period and store a compliance report.

        Returns:
            The stored report as a dict
        """
        if end < start:
            raise ValidationError("end_date", "End date must be after start date")

        events = self.query_events(start=start, end=end, limit=10000)
        findings = self.analyze_compliance(events)
        report = {
            "id": generate_uuid(),
            "report_type": report_type,
            "report_name": report_name,
            "compliance_framework": compliance_framework,
            "time_period_start": to_iso(start),
            "time_period_end": to_iso(end),
            "event_count": len(events),
            "user_count": len({e.actor_id for e in events if e.actor_id}),
            "findings": findings,
            "summary": self.summarize(events, findings),
            "statistics": self.calculate_statistics(events),
            "generated_by": actor_id,
            "created_at": now_iso(),
        }

        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO compliance_reports
                (id, report_type, report_name, compliance_framework, time_period_start,
                 time_period_end, event_count, user_count, findings, summary, statistics,
                 generated_by, created_at)
                VALUES (:id, :report_type, :report_name, :compliance_framework,
                        :time_period_start, :time_period_end, :event_count, :user_count,
                        :findings, :summary, :statistics, :generated_by, :created_at)
                """),
                {**report, "findings": dumps(findings), "statistics": dumps(report["statistics"])},
            )
            self.log_event(
                AuditEventType.COMPLIANCE_REPORT,
                AuditCategory.COMPLIANCE,
                "generate",
                actor_id=actor_id,
                resource_type="compliance_report",
                resource_id=report["id"],
                metadata={"report_type": report_type, "event_count": len(events)},
                conn=conn,
            )
            conn.commit()

        return report

    def list_compliance_reports(self, report_type: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        sql = "SELECT * FROM compliance_reports"
        params: dict[str, Any] = {"limit": limit}
        if report_type:
            sql += " WHERE report_type = :report_type"
            params["report_type"] = report_type
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            reports = []
            for row in conn.execute(text(sql), params).fetchall():
                data = dict(row._mapping)
                data["findings"] = loads(data["findings"], {})
                data["statistics"] = loads(data["statistics"])
                reports.append(data)
            return reports

    # =========================================================================
    # Export and Retention
    # =========================================================================

    def export_events(self, format: str = "json", actor_id: str | None = None, **filters: Any) -> str:
        """Render filtered events as CSV or JSON and audit the export."""
        if format not in ("json", "csv"):
            raise ValidationError("format", "Must be one of: json, csv")

        events = self.query_events(**filters)
        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_HEADERS)
            for e in events:
                writer.writerow([
                    e.event_id,
                    e.event_type,
                    e.action,
                    e.actor_id or "",
                    e.resource_type or "",
                    e.resource_id or "",
                    "Yes" if e.success else "No",
                    e.created_at,
                ])
            content = buffer.getvalue()
        else:
            content = json.dumps([e.to_dict() | {
                "old_values": e.old_values,
                "new_values": e.new_values,
                "changes": e.changes,
                "metadata": e.metadata,
                "success": e.success,
            } for e in events], indent=2)

        self.log_event(
            AuditEventType.DATA_EXPORT,
            AuditCategory.DATA,
            "export",
            actor_id=actor_id,
            resource_type="audit_events",
            metadata={"format": format, "event_count": len(events)},
        )
        return content

    def apply_audit_retention(self, now: datetime | None = None) -> dict[str, int]:
        """Delete events older than their category's active retention policy.

        Categories under legal hold are skipped. The hash of every deleted
        event is kept in audit_chain_checkpoints so the surviving events
        still verify.

        Returns:
            Mapping of category to events deleted
        """
        now = now or utcnow()
        deleted: dict[str, int] = {}
        with get_db() as conn:
            policies = conn.execute(
                text("""
                SELECT event_category, retention_days FROM audit_retention_policies
                WHERE is_active = 1 AND legal_hold = 0
                """)
            ).fetchall()
            for policy in policies:
                cutoff = to_iso(now - timedelta(days=policy.retention_days))
                conn.execute(
                    text("""
                    INSERT INTO audit_chain_checkpoints
                    (sequence_number, event_id, event_category, event_hash, pruned_at)
                    SELECT sequence_number, event_id, event_category, event_hash, :pruned_at
                    FROM audit_events
                    WHERE event_category = :category AND created_at < :cutoff
                    """),
                    {"category": policy.event_category, "cutoff": cutoff, "pruned_at": to_iso(now)},
                )
                result = conn.execute(
                    text("""
                    DELETE FROM audit_events
                    WHERE event_category = :category AND created_at < :cutoff
                    """),
                    {"category": policy.event_category, "cutoff": cutoff},
                )
                if result.rowcount:
                    deleted[policy.event_category] = result.rowcount
            conn.commit()

        if deleted:
            log.info("audit_retention_applied", deleted=deleted)
        return deleted

    def get_retention_policies(self) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(text("SELECT * FROM audit_retention_policies ORDER BY event_category"))
            return [dict(row._mapping) for row in result.fetchall()]

    def set_legal_hold(self, category: str, hold: bool, actor_id: str | None = None) -> None:
        category = _enum_value(AuditCategory, category, "event_category")
        with get_db() as conn:
            result = conn.execute(
                text("UPDATE audit_retention_policies SET legal_hold = :hold WHERE event_category = :category"),
                {"hold": 1 if hold else 0, "category": category},
            )
            if result.rowcount == 0:
                raise NotFoundError("Retention policy", category)
            self.log_event(
                AuditEventType.SECURITY_CHANGE,
                AuditCategory.COMPLIANCE,
                "legal_hold_set" if hold else "legal_hold_released",
                actor_id=actor_id,
                resource_type="audit_retention_policy",
                resource_id=category,
                severity=AuditSeverity.HIGH,
                conn=conn,
            )
            conn.commit()


# Global service instance
_audit_service: AuditTrailService | None = None


def get_audit_service() -> AuditTrailService:
    """Get or create the global audit trail service."""
    global _audit_service
    if _audit_service is None:
        _audit_service = AuditTrailService()
    return _audit_service


def reset_audit_service() -> None:
    global _audit_service
    _audit_service = None
