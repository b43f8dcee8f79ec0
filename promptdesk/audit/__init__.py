"""Audit domain - hash-chained event log, snapshots, compliance reports."""

from .router import router
from .service import (
    GENESIS_HASH,
    AuditTrailService,
    compute_event_hash,
    detect_changes,
    get_audit_service,
    reset_audit_service,
)
from .schemas import (
    # Enums
    AuditEventType,
    AuditCategory,
    AuditSeverity,
    SnapshotType,
    ExportFormat,
    # Models
    AuditEventOut,
    ChainVerification,
    ComplianceReportOut,
)

__all__ = [
    # Router
    "router",
    # Service
    "AuditTrailService",
    "get_audit_service",
    "reset_audit_service",
    "compute_event_hash",
    "detect_changes",
    "GENESIS_HASH",
    # Enums
    "AuditEventType",
    "AuditCategory",
    "AuditSeverity",
    "SnapshotType",
    "ExportFormat",
    # Models
    "AuditEventOut",
    "ChainVerification",
    "ComplianceReportOut",
]
