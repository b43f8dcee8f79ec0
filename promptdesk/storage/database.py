"""
Database connection management and initialization.

Supports both SQLite (local dev) and PostgreSQL (production) via DATABASE_URL.
"""

from __future__ import annotations

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Connection

from promptdesk.core.logging import get_logger

log = get_logger(__name__)

# Global engine instance
_engine: Engine | None = None
_DB_PATH: Path | None = None


def _is_postgres() -> bool:
    """Check if using PostgreSQL database."""
    database_url = os.getenv("DATABASE_URL", "")
    return database_url.startswith("postgres")


def get_database_url() -> str:
    """Get database URL from environment or default to SQLite.

    Handles the postgres:// URL format by converting to postgresql://.
    """
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        # SQLAlchemy requires postgresql://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    db_path = get_db_path()
    return f"sqlite:///{db_path}"


def get_db_path() -> Path:
    """Get the SQLite database file path (used when DATABASE_URL not set)."""
    global _DB_PATH
    if _DB_PATH is None:
        # storage/database.py -> promptdesk/ -> project_root/
        project_root = Path(__file__).parent.parent.parent
        data_dir = project_root / "data"
        data_dir.mkdir(exist_ok=True)
        _DB_PATH = data_dir / "promptdesk.db"
    return _DB_PATH


def set_db_path(path: Path | str) -> None:
    """Set a custom database path (useful for testing)."""
    global _DB_PATH, _engine
    _DB_PATH = Path(path)
    _engine = None  # Reset engine when path changes


def get_engine() -> Engine:
    """Get SQLAlchemy engine for database operations."""
    global _engine
    if _engine is None:
        database_url = get_database_url()

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        _engine = create_engine(database_url, echo=False, connect_args=connect_args)
    return _engine


def reset_engine() -> None:
    """Reset the engine (useful for testing or reconfiguration)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


@contextmanager
def get_db() -> Generator[Connection, None, None]:
    """Get a database connection.

    Usage:
        with get_db() as conn:
            result = conn.execute(text("SELECT * FROM prompts"))
            rows = result.fetchall()
    """
    engine = get_engine()
    with engine.connect() as conn:
        if not _is_postgres():
            conn.execute(text("PRAGMA foreign_keys = ON"))
        yield conn


def init_db() -> None:
    """Initialize database schema.

    Creates all tables if they don't exist. Safe to call multiple times.
    Report tables are sqlmodel-managed, see promptdesk.core.database.
    """
    engine = get_engine()

    if not _is_postgres():
        raw_conn = engine.raw_connection()
        try:
            raw_conn.executescript(_SCHEMA)
            raw_conn.commit()
        finally:
            raw_conn.close()
    else:
        with engine.connect() as conn:
            statements = []
            current_stmt = []
            for line in _SCHEMA.split("\n"):
                stripped = line.strip()
                if stripped.startswith("--"):
                    continue
                current_stmt.append(line)
                if stripped.endswith(";"):
                    statements.append("\n".join(current_stmt))
                    current_stmt = []

            for statement in statements:
                statement = statement.strip().rstrip(";")
                if statement:
                    conn.execute(text(statement))
            conn.commit()


# =============================================================================
# Database Schema (SQLite, PostgreSQL-compatible design)
# =============================================================================
# Timestamps are ISO 8601 UTC strings written by the application.
# JSON columns are TEXT, (de)serialized by the services.

_SCHEMA = """
-- =============================================================================
-- PROMPT LIBRARY
-- =============================================================================

CREATE TABLE IF NOT EXISTS prompts (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    content TEXT NOT NULL,
    role TEXT,
    department TEXT,
    workflow TEXT,
    prompt_type TEXT NOT NULL DEFAULT 'general',
    status TEXT NOT NULL DEFAULT 'draft',
    visibility TEXT NOT NULL DEFAULT 'private',
    author_id TEXT NOT NULL,
    created_by TEXT,
    department_id TEXT,
    team_id TEXT,
    is_template INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    archived_at TEXT,
    usage_count INTEGER NOT NULL DEFAULT 0,
    rating_average REAL NOT NULL DEFAULT 0,
    rating_count INTEGER NOT NULL DEFAULT 0,
    tags TEXT,                          -- JSON array
    metadata TEXT,                      -- JSON object
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS prompt_versions (
    id TEXT PRIMARY KEY,
    prompt_id TEXT NOT NULL,
    version_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    prompt_text TEXT NOT NULL,
    change_summary TEXT,
    change_type TEXT NOT NULL,          -- major, minor, patch, rollback
    author_id TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(prompt_id, version_number),
    FOREIGN KEY (prompt_id) REFERENCES prompts(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS tag_registry (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    description TEXT,
    tag_type TEXT NOT NULL DEFAULT 'custom',  -- category, technical, domain, custom, ...
    color TEXT,
    is_system_tag INTEGER NOT NULL DEFAULT 0,
    created_by TEXT,
    usage_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS prompt_tag_assignments (
    id TEXT PRIMARY KEY,
    prompt_id TEXT NOT NULL,
    tag_id TEXT NOT NULL,
    assigned_by TEXT,
    assignment_source TEXT NOT NULL DEFAULT 'manual',  -- manual, auto_suggest, ai_generated
    created_at TEXT NOT NULL,
    UNIQUE(prompt_id, tag_id),
    FOREIGN KEY (prompt_id) REFERENCES prompts(id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tag_registry(id) ON DELETE CASCADE
);

-- =============================================================================
-- PEER REVIEW
-- =============================================================================

CREATE TABLE IF NOT EXISTS prompt_submissions (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    workflow TEXT NOT NULL,
    role TEXT NOT NULL,
    department TEXT,
    description TEXT,
    prompt_content TEXT NOT NULL,
    sample_output TEXT,
    submitter_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    required_approvals INTEGER NOT NULL DEFAULT 2,
    reviewer_level TEXT NOT NULL DEFAULT 'senior',
    submission_version INTEGER NOT NULL DEFAULT 1,
    parent_submission_id TEXT,
    approved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS review_assignments (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL,
    reviewer_id TEXT NOT NULL,
    assigned_by TEXT,
    reviewer_level TEXT,                -- junior, senior, expert at assignment time
    status TEXT NOT NULL DEFAULT 'assigned',  -- assigned, in_progress, completed, declined
    assigned_at TEXT NOT NULL,
    completed_at TEXT,
    last_reminder_at TEXT,
    reminder_count INTEGER NOT NULL DEFAULT 0,
    UNIQUE(submission_id, reviewer_id),
    FOREIGN KEY (submission_id) REFERENCES prompt_submissions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS peer_reviews (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL,
    reviewer_id TEXT NOT NULL,
    accuracy_rating INTEGER NOT NULL,
    clarity_rating INTEGER NOT NULL,
    usefulness_rating INTEGER NOT NULL,
    completeness_rating INTEGER NOT NULL,
    overall_rating INTEGER NOT NULL,
    strengths TEXT,
    weaknesses TEXT,
    suggestions TEXT,
    recommendation TEXT NOT NULL,       -- approve, request_changes, reject
    created_at TEXT NOT NULL,
    FOREIGN KEY (submission_id) REFERENCES prompt_submissions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS review_comments (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL,
    author_id TEXT NOT NULL,
    parent_comment_id TEXT,
    comment_text TEXT NOT NULL,
    comment_type TEXT NOT NULL DEFAULT 'general',
    thread_depth INTEGER NOT NULL DEFAULT 0,
    is_resolved INTEGER NOT NULL DEFAULT 0,
    resolved_by TEXT,
    resolved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (submission_id) REFERENCES prompt_submissions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS review_notifications (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    submission_id TEXT,
    notification_type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    read_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS submission_audit_log (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL,
    actor_id TEXT,
    action TEXT NOT NULL,
    details TEXT,                       -- JSON object
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reviewer_expertise (
    reviewer_id TEXT PRIMARY KEY,
    workflows TEXT,                     -- JSON array
    roles TEXT,                         -- JSON array
    expertise_level TEXT NOT NULL DEFAULT 'senior',  -- junior, senior, expert
    max_concurrent_reviews INTEGER NOT NULL DEFAULT 5,
    current_review_count INTEGER NOT NULL DEFAULT 0,
    is_available INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_review_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS workflow_review_config (
    workflow TEXT PRIMARY KEY,
    min_reviewers INTEGER NOT NULL DEFAULT 2,
    required_approvals INTEGER NOT NULL DEFAULT 2,
    reviewer_level TEXT NOT NULL DEFAULT 'senior',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS escalation_rules (
    id TEXT PRIMARY KEY,
    rule_name TEXT NOT NULL UNIQUE,
    trigger_condition TEXT NOT NULL,    -- no_response, overdue, declined, quality_issue
    threshold_hours INTEGER NOT NULL,
    escalation_level INTEGER NOT NULL,
    escalate_to_role TEXT,
    escalate_to_user_id TEXT,
    notification_template TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'normal',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS escalation_log (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL,
    assignment_id TEXT,
    reviewer_id TEXT,
    rule_id TEXT,
    escalation_level INTEGER NOT NULL,
    escalated_to_id TEXT,
    reason TEXT NOT NULL,
    hours_overdue REAL,
    notification_sent INTEGER NOT NULL DEFAULT 0,
    resolved INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT,
    resolved_by TEXT,
    resolution_notes TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (submission_id) REFERENCES prompt_submissions(id) ON DELETE CASCADE
);

-- =============================================================================
-- APPROVAL WORKFLOW
-- =============================================================================

CREATE TABLE IF NOT EXISTS approval_queue (
    id TEXT PRIMARY KEY,
    prompt_id TEXT,
    submission_id TEXT,
    submitter_id TEXT NOT NULL,
    submission_type TEXT NOT NULL DEFAULT 'new',  -- new, revision, update, resubmission
    status TEXT NOT NULL DEFAULT 'pending',
    priority INTEGER NOT NULL DEFAULT 5,          -- 1..10
    department TEXT,
    workflow TEXT,
    assigned_to TEXT,
    assigned_at TEXT,
    escalation_level INTEGER NOT NULL DEFAULT 0,
    is_sla_breached INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    metadata TEXT,
    submitted_at TEXT NOT NULL,
    status_changed_at TEXT NOT NULL,
    completed_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS approval_actions (
    id TEXT PRIMARY KEY,
    queue_id TEXT NOT NULL,
    action_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    decision TEXT,
    approval_scope TEXT,
    conditions TEXT,                    -- JSON array
    comments TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (queue_id) REFERENCES approval_queue(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS approval_history (
    id TEXT PRIMARY KEY,
    queue_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    changed_by TEXT,
    reason TEXT,
    time_in_previous_status_hours REAL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (queue_id) REFERENCES approval_queue(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS revision_requests (
    id TEXT PRIMARY KEY,
    queue_id TEXT NOT NULL,
    requested_by TEXT NOT NULL,
    revision_type TEXT NOT NULL,
    description TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'normal',
    fields_to_revise TEXT,              -- JSON array
    status TEXT NOT NULL DEFAULT 'open',  -- open, addressed, closed
    created_at TEXT NOT NULL,
    resolved_at TEXT,
    FOREIGN KEY (queue_id) REFERENCES approval_queue(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sla_configurations (
    id TEXT PRIMARY KEY,
    config_name TEXT UNIQUE NOT NULL,
    department TEXT,
    target_hours REAL NOT NULL,
    warning_hours REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sla_tracking (
    id TEXT PRIMARY KEY,
    queue_id TEXT UNIQUE NOT NULL,
    sla_config_id TEXT,
    target_hours REAL NOT NULL,
    warning_hours REAL NOT NULL,
    started_at TEXT NOT NULL,
    due_at TEXT NOT NULL,
    completed_at TEXT,
    elapsed_hours REAL NOT NULL DEFAULT 0,
    is_within_sla INTEGER NOT NULL DEFAULT 1,
    breach_hours REAL NOT NULL DEFAULT 0,
    warning_sent INTEGER NOT NULL DEFAULT 0,
    breach_notified INTEGER NOT NULL DEFAULT 0,
    is_paused INTEGER NOT NULL DEFAULT 0,
    paused_at TEXT,
    total_paused_hours REAL NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (queue_id) REFERENCES approval_queue(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS approval_notifications (
    id TEXT PRIMARY KEY,
    queue_id TEXT,
    recipient_id TEXT NOT NULL,
    notification_type TEXT NOT NULL,
    subject TEXT NOT NULL,
    message TEXT,
    priority TEXT NOT NULL DEFAULT 'normal',  -- low, normal, high, urgent
    is_read INTEGER NOT NULL DEFAULT 0,
    read_at TEXT,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- AUDIT TRAIL
-- =============================================================================

CREATE TABLE IF NOT EXISTS audit_events (
    id TEXT PRIMARY KEY,
    event_id TEXT UNIQUE NOT NULL,      -- evt_<32 hex>
    sequence_number INTEGER UNIQUE NOT NULL,
    event_type TEXT NOT NULL,
    event_category TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'info',
    action TEXT NOT NULL,
    actor_id TEXT,
    resource_type TEXT,
    resource_id TEXT,
    old_values TEXT,
    new_values TEXT,
    changes TEXT,                       -- JSON array of changed keys
    metadata TEXT,
    success INTEGER NOT NULL DEFAULT 1,
    error_message TEXT,
    previous_hash TEXT NOT NULL,
    event_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Single row holding the chain tip; appends lock it until commit.
CREATE TABLE IF NOT EXISTS audit_chain_head (
    id INTEGER PRIMARY KEY,
    sequence_number INTEGER NOT NULL,
    last_hash TEXT NOT NULL
);

INSERT INTO audit_chain_head (id, sequence_number, last_hash)
SELECT 1, 0, 'GENESIS' WHERE NOT EXISTS (SELECT 1 FROM audit_chain_head WHERE id = 1);

-- Links of events removed by retention, so later events still verify.
CREATE TABLE IF NOT EXISTS audit_chain_checkpoints (
    sequence_number INTEGER PRIMARY KEY,
    event_id TEXT NOT NULL,
    event_category TEXT NOT NULL,
    event_hash TEXT NOT NULL,
    pruned_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_snapshots (
    id TEXT PRIMARY KEY,
    resource_type TEXT NOT NULL,
    resource_id TEXT NOT NULL,
    snapshot_type TEXT NOT NULL,
    snapshot_data TEXT NOT NULL,
    snapshot_hash TEXT NOT NULL,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_integrity_checks (
    id TEXT PRIMARY KEY,
    range_start TEXT,
    range_end TEXT,
    total_events INTEGER NOT NULL,
    verified_events INTEGER NOT NULL,
    is_valid INTEGER NOT NULL,
    broken_links TEXT,                  -- JSON array
    checked_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS compliance_reports (
    id TEXT PRIMARY KEY,
    report_type TEXT NOT NULL,
    report_name TEXT NOT NULL,
    compliance_framework TEXT,
    time_period_start TEXT NOT NULL,
    time_period_end TEXT NOT NULL,
    event_count INTEGER NOT NULL,
    user_count INTEGER NOT NULL,
    findings TEXT NOT NULL,             -- JSON object
    summary TEXT NOT NULL,
    statistics TEXT,                    -- JSON object
    generated_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_retention_policies (
    id TEXT PRIMARY KEY,
    event_category TEXT UNIQUE NOT NULL,
    retention_days INTEGER NOT NULL,
    legal_hold INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- RBAC
-- =============================================================================

CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    display_name TEXT NOT NULL,
    description TEXT,
    role_level INTEGER NOT NULL DEFAULT 0,  -- 0..100
    is_system_role INTEGER NOT NULL DEFAULT 0,
    is_assignable INTEGER NOT NULL DEFAULT 1,
    color_code TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS permissions (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,          -- <resource>.<action>
    resource TEXT NOT NULL,
    action TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS role_permissions (
    role_id TEXT NOT NULL,
    permission_id TEXT NOT NULL,
    granted_by TEXT,
    granted_at TEXT NOT NULL,
    PRIMARY KEY (role_id, permission_id),
    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE,
    FOREIGN KEY (permission_id) REFERENCES permissions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_role_assignments (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    role_id TEXT NOT NULL,
    assigned_by TEXT,
    department TEXT,
    workflow TEXT,
    valid_from TEXT NOT NULL,
    valid_until TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    assignment_reason TEXT,
    revoked_at TEXT,
    revoked_by TEXT,
    revoke_reason TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(user_id, role_id),
    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS department_scoped_permissions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    department TEXT NOT NULL,
    permission_level TEXT NOT NULL,     -- read, write, manage, admin
    granted_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id, department)
);

CREATE TABLE IF NOT EXISTS role_templates (
    id TEXT PRIMARY KEY,
    template_name TEXT UNIQUE NOT NULL,
    display_name TEXT NOT NULL,
    description TEXT,
    role_level INTEGER NOT NULL,
    permissions TEXT NOT NULL,          -- JSON array of permission names
    usage_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rbac_change_log (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    action TEXT NOT NULL,
    actor_id TEXT,
    target_user_id TEXT,
    role_id TEXT,
    permission_id TEXT,
    details TEXT,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- DATA GOVERNANCE
-- =============================================================================

CREATE TABLE IF NOT EXISTS data_retention_policies (
    id TEXT PRIMARY KEY,
    policy_name TEXT UNIQUE NOT NULL,
    data_type TEXT NOT NULL,
    retention_days INTEGER NOT NULL CHECK (retention_days > 0),
    soft_delete INTEGER NOT NULL DEFAULT 1,
    execution_schedule TEXT NOT NULL DEFAULT 'daily',  -- hourly, daily, weekly, monthly
    is_active INTEGER NOT NULL DEFAULT 1,
    description TEXT,
    last_executed_at TEXT,
    next_execution_at TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS data_classifications (
    id TEXT PRIMARY KEY,
    resource_type TEXT NOT NULL,
    resource_id TEXT NOT NULL,
    classification_level TEXT NOT NULL,
    sensitivity_score INTEGER NOT NULL,
    contains_pii INTEGER NOT NULL DEFAULT 0,
    pii_types TEXT,
    tags TEXT,
    classified_by TEXT,
    review_due_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(resource_type, resource_id)
);

CREATE TABLE IF NOT EXISTS data_lineage (
    id TEXT PRIMARY KEY,
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    transformation TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS data_masking_rules (
    id TEXT PRIMARY KEY,
    rule_name TEXT UNIQUE NOT NULL,
    resource_type TEXT NOT NULL,
    field_name TEXT NOT NULL,
    masking_method TEXT NOT NULL,       -- redact, partial, hash, null, static
    preserve_length INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS privacy_requests (
    id TEXT PRIMARY KEY,
    request_number TEXT UNIQUE NOT NULL,
    request_type TEXT NOT NULL,
    subject_user_id TEXT NOT NULL,
    requester_email TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    description TEXT,
    deadline_at TEXT NOT NULL,
    completed_at TEXT,
    records_found INTEGER NOT NULL DEFAULT 0,
    records_processed INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS data_lifecycle_events (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,           -- archived, deleted, purged, anonymized, masked, restored
    resource_type TEXT NOT NULL,
    resource_id TEXT NOT NULL,
    policy_id TEXT,
    action_taken TEXT NOT NULL,
    performed_by TEXT,
    reason TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS governance_reports (
    id TEXT PRIMARY KEY,
    report_type TEXT NOT NULL,
    report_data TEXT NOT NULL,
    generated_by TEXT,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- USAGE ANALYTICS AND SEARCH
-- =============================================================================

CREATE TABLE IF NOT EXISTS analytics_events (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    event_name TEXT NOT NULL,
    user_id TEXT,
    prompt_id TEXT,
    department_id TEXT,
    session_id TEXT,
    duration_seconds REAL,
    properties TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS search_cache (
    id TEXT PRIMARY KEY,
    cache_key TEXT UNIQUE NOT NULL,
    search_params TEXT,
    result_data TEXT NOT NULL,
    result_count INTEGER NOT NULL DEFAULT 0,
    hit_count INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    last_accessed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS search_analytics (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    search_query TEXT,
    filters_applied TEXT,
    results_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS filter_facets (
    facet_type TEXT NOT NULL,           -- role, department, workflow, type, status
    facet_value TEXT NOT NULL,
    prompt_count INTEGER NOT NULL DEFAULT 0,
    last_computed_at TEXT NOT NULL,
    PRIMARY KEY (facet_type, facet_value)
);

CREATE TABLE IF NOT EXISTS query_cache (
    id TEXT PRIMARY KEY,
    cache_key TEXT UNIQUE NOT NULL,
    query_result TEXT NOT NULL,
    hit_count INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    last_accessed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS connection_pool_stats (
    id TEXT PRIMARY KEY,
    total_connections INTEGER NOT NULL,
    active_connections INTEGER NOT NULL,
    idle_connections INTEGER NOT NULL,
    waiting_connections INTEGER NOT NULL,
    recorded_at TEXT NOT NULL
);

-- =============================================================================
-- INDEXES
-- =============================================================================

CREATE INDEX IF NOT EXISTS idx_prompts_author ON prompts(author_id);
CREATE INDEX IF NOT EXISTS idx_prompts_listing ON prompts(is_archived, visibility, created_at);
CREATE INDEX IF NOT EXISTS idx_prompt_versions_prompt ON prompt_versions(prompt_id, version_number);

CREATE INDEX IF NOT EXISTS idx_submissions_submitter ON prompt_submissions(submitter_id);
CREATE INDEX IF NOT EXISTS idx_submissions_status ON prompt_submissions(status, created_at);
CREATE INDEX IF NOT EXISTS idx_assignments_reviewer ON review_assignments(reviewer_id, status);
CREATE INDEX IF NOT EXISTS idx_reviews_submission ON peer_reviews(submission_id);
CREATE INDEX IF NOT EXISTS idx_comments_submission ON review_comments(submission_id, created_at);
CREATE INDEX IF NOT EXISTS idx_review_notifications_user ON review_notifications(user_id, is_read);
CREATE INDEX IF NOT EXISTS idx_escalations_open ON escalation_log(resolved, created_at);
CREATE INDEX IF NOT EXISTS idx_tag_assignments_tag ON prompt_tag_assignments(tag_id, created_at);

CREATE INDEX IF NOT EXISTS idx_queue_status ON approval_queue(status, priority);
CREATE INDEX IF NOT EXISTS idx_queue_assignee ON approval_queue(assigned_to);
CREATE INDEX IF NOT EXISTS idx_history_queue ON approval_history(queue_id, created_at);
CREATE INDEX IF NOT EXISTS idx_sla_open ON sla_tracking(completed_at, is_paused);
CREATE INDEX IF NOT EXISTS idx_approval_notifications_recipient ON approval_notifications(recipient_id, is_read);

CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_events(created_at, sequence_number);
CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_events(resource_type, resource_id);
CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_events(actor_id);
CREATE INDEX IF NOT EXISTS idx_audit_category ON audit_events(event_category, severity);

CREATE INDEX IF NOT EXISTS idx_assignments_user ON user_role_assignments(user_id, is_active);
CREATE INDEX IF NOT EXISTS idx_rbac_log_created ON rbac_change_log(created_at);

CREATE INDEX IF NOT EXISTS idx_lifecycle_resource ON data_lifecycle_events(resource_type, resource_id);
CREATE INDEX IF NOT EXISTS idx_lineage_source ON data_lineage(source_type, source_id);
CREATE INDEX IF NOT EXISTS idx_lineage_target ON data_lineage(target_type, target_id);
CREATE INDEX IF NOT EXISTS idx_privacy_subject ON privacy_requests(subject_user_id, status);

CREATE INDEX IF NOT EXISTS idx_events_created ON analytics_events(created_at);
CREATE INDEX IF NOT EXISTS idx_events_name ON analytics_events(event_name, created_at);
CREATE INDEX IF NOT EXISTS idx_search_cache_expiry ON search_cache(expires_at);
CREATE INDEX IF NOT EXISTS idx_query_cache_expiry ON query_cache(expires_at);
"""


def _list_tables(conn: Connection) -> list[str]:
    if _is_postgres():
        result = conn.execute(text(
            "SELECT table_name as name FROM information_schema.tables "
            "WHERE table_schema = 'public'"
        ))
    else:
        result = conn.execute(text(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ))
    return [row[0] for row in result.fetchall()]


def reset_db() -> None:
    """Drop all tables and recreate schema. USE WITH CAUTION."""
    with get_db() as conn:
        if not _is_postgres():
            conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in _list_tables(conn):
            if _is_postgres():
                conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))
            else:
                conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
        conn.commit()

    log.warning("database_reset")
    init_db()


def get_table_stats() -> dict[str, int]:
    """Get row counts for all tables (useful for diagnostics)."""
    with get_db() as conn:
        stats = {}
        for table in _list_tables(conn):
            result = conn.execute(text(f"SELECT COUNT(*) as count FROM {table}"))
            stats[table] = result.fetchone()[0]
        return stats


# =============================================================================
# Seed Data
# =============================================================================

SLA_CONFIGURATIONS = [
    # (config_name, department, target_hours, warning_hours)
    ("default_standard", None, 48, 36),
    ("high_priority", None, 24, 18),
    ("engineering_standard", "Engineering", 72, 60),
    ("critical", None, 12, 9),
]

AUDIT_RETENTION_DAYS = {
    "content": 365,
    "workflow": 730,
    "user_management": 2555,
    "security": 2555,
    "data": 1825,
    "system": 1095,
    "compliance": 3650,
}

ESCALATION_RULES = [
    # (rule_name, trigger_condition, threshold_hours, escalation_level, escalate_to_role, template, priority)
    ("Overdue 72h", "overdue", 72, 3, "manager", "Critical: Review overdue by 72 hours", "urgent"),
]

SYSTEM_TAGS = [
    # (name, slug, tag_type, description, color)
    ("Customer Service", "customer-service", "category", "Customer support content", "#3B82F6"),
    ("Technical", "technical", "category", "Technical content", "#8B5CF6"),
    ("Marketing", "marketing", "category", "Marketing content", "#EC4899"),
    ("Sales", "sales", "category", "Sales content", "#10B981"),
    ("High Quality", "high-quality", "quality", "Verified high-quality prompts", "#22C55E"),
    ("Beginner Friendly", "beginner-friendly", "quality", "Easy to use", "#06B6D4"),
]

SYSTEM_ROLES = [
    # (name, display_name, description, role_level, color_code)
    ("admin", "Administrator", "Full system access", 100, "#DC2626"),
    ("manager", "Manager", "Team and content management", 60, "#D97706"),
    ("reviewer", "Reviewer", "Reviews and approves submitted prompts", 60, "#D97706"),
    ("user", "User", "Creates and uses prompts", 20, "#059669"),
    ("viewer", "Viewer", "Read-only access", 10, "#6B7280"),
]

PERMISSIONS = [
    ("prompts.create", "Create prompts"),
    ("prompts.read", "View prompts"),
    ("prompts.update", "Edit prompts"),
    ("prompts.delete", "Archive prompts"),
    ("prompts.approve", "Approve prompts"),
    ("users.read", "View users"),
    ("users.create", "Create users"),
    ("users.update", "Edit users"),
    ("users.delete", "Remove users"),
    ("analytics.read", "View analytics"),
    ("analytics.export", "Export analytics"),
    ("roles.manage", "Manage roles and permissions"),
    ("audit.read", "View audit trail"),
    ("sandbox.access", "Use the testing sandbox"),
    ("library.access", "Browse the prompt library"),
    ("collaborate.submit", "Submit prompts for peer review"),
    ("collaborate.review", "Review peer submissions"),
    ("enterprise.access", "Access enterprise features"),
]

ROLE_PERMISSIONS = {
    "admin": [name for name, _ in PERMISSIONS],
    "manager": [
        "prompts.create", "prompts.read", "prompts.update", "prompts.approve",
        "users.read", "analytics.read", "analytics.export",
        "sandbox.access", "library.access",
        "collaborate.submit", "collaborate.review", "enterprise.access",
    ],
    "user": [
        "prompts.create", "prompts.read", "prompts.update", "analytics.read",
        "sandbox.access", "library.access", "collaborate.submit",
    ],
    "reviewer": [
        "prompts.read", "prompts.approve", "analytics.read",
        "library.access", "collaborate.review",
    ],
    "viewer": ["prompts.read", "library.access"],
}

ROLE_TEMPLATES = [
    # (template_name, display_name, description, role_level, permissions)
    (
        "engineering_lead", "Engineering Lead", "Leads an engineering prompt portfolio", 70,
        ["prompts.create", "prompts.read", "prompts.update", "prompts.approve",
         "analytics.read", "sandbox.access", "library.access",
         "collaborate.submit", "collaborate.review"],
    ),
    (
        "content_creator", "Content Creator", "Authors and tests prompts", 30,
        ["prompts.create", "prompts.read", "prompts.update",
         "sandbox.access", "library.access", "collaborate.submit"],
    ),
    (
        "quality_reviewer", "Quality Reviewer", "Reviews prompt quality", 50,
        ["prompts.read", "prompts.approve", "analytics.read",
         "library.access", "collaborate.review"],
    ),
]


def seed_defaults() -> None:
    """Seed SLA configurations, audit retention, roles, permissions and templates."""
    from promptdesk.storage.models import generate_uuid, now_iso

    ts = now_iso()
    with get_db() as conn:
        for name, department, target, warning in SLA_CONFIGURATIONS:
            conn.execute(
                text("""
                INSERT INTO sla_configurations
                (id, config_name, department, target_hours, warning_hours, is_active, created_at)
                VALUES (:id, :name, :department, :target, :warning, 1, :ts)
                ON CONFLICT (config_name) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "department": department,
                 "target": target, "warning": warning, "ts": ts},
            )

        for category, days in AUDIT_RETENTION_DAYS.items():
            conn.execute(
                text("""
                INSERT INTO audit_retention_policies
                (id, event_category, retention_days, legal_hold, is_active, created_at)
                VALUES (:id, :category, :days, 0, 1, :ts)
                ON CONFLICT (event_category) DO NOTHING
                """),
                {"id": generate_uuid(), "category": category, "days": days, "ts": ts},
            )

        for name, condition, threshold, level, role, template, priority in ESCALATION_RULES:
            conn.execute(
                text("""
                INSERT INTO escalation_rules
                (id, rule_name, trigger_condition, threshold_hours, escalation_level, escalate_to_role,
                 notification_template, priority, is_active, created_at)
                VALUES (:id, :name, :condition, :threshold, :level, :role, :template, :priority, 1, :ts)
                ON CONFLICT (rule_name) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "condition": condition, "threshold": threshold,
                 "level": level, "role": role, "template": template, "priority": priority, "ts": ts},
            )

        for name, slug, tag_type, description, color in SYSTEM_TAGS:
            conn.execute(
                text("""
                INSERT INTO tag_registry
                (id, name, slug, description, tag_type, color, is_system_tag, usage_count, created_at)
                VALUES (:id, :name, :slug, :description, :tag_type, :color, 1, 0, :ts)
                ON CONFLICT (slug) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "slug": slug, "description": description,
                 "tag_type": tag_type, "color": color, "ts": ts},
            )

        for name, display_name, description, level, color in SYSTEM_ROLES:
            conn.execute(
                text("""
                INSERT INTO roles
                (id, name, display_name, description, role_level, is_system_role,
                 is_assignable, color_code, created_at, updated_at)
                VALUES (:id, :name, :display_name, :description, :level, 1, 1, :color, :ts, :ts)
                ON CONFLICT (name) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "display_name": display_name,
                 "description": description, "level": level, "color": color, "ts": ts},
            )

        for name, description in PERMISSIONS:
            resource, action = name.split(".", 1)
            conn.execute(
                text("""
                INSERT INTO permissions (id, name, resource, action, description, created_at)
                VALUES (:id, :name, :resource, :action, :description, :ts)
                ON CONFLICT (name) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "resource": resource,
                 "action": action, "description": description, "ts": ts},
            )

        for role_name, permission_names in ROLE_PERMISSIONS.items():
            for permission_name in permission_names:
                conn.execute(
                    text("""
                    INSERT INTO role_permissions (role_id, permission_id, granted_by, granted_at)
                    SELECT r.id, p.id, 'system', :ts
                    FROM roles r, permissions p
                    WHERE r.name = :role_name AND p.name = :permission_name
                    ON CONFLICT (role_id, permission_id) DO NOTHING
                    """),
                    {"role_name": role_name, "permission_name": permission_name, "ts": ts},
                )

        for name, display_name, description, level, permission_names in ROLE_TEMPLATES:
            conn.execute(
                text("""
                INSERT INTO role_templates
                (id, template_name, display_name, description, role_level, permissions,
                 usage_count, created_at)
                VALUES (:id, :name, :display_name, :description, :level, :permissions, 0, :ts)
                ON CONFLICT (template_name) DO NOTHING
                """),
                {"id": generate_uuid(), "name": name, "display_name": display_name,
                 "description": description, "level": level,
                 "permissions": json.dumps(permission_names), "ts": ts},
            )

        conn.commit()


def init_db_with_seed() -> None:
    """Initialize database and seed default configuration."""
    init_db()
    seed_defaults()
