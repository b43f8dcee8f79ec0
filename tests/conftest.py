"""Pytest fixtures for test suite."""

import tempfile
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from promptdesk.analytics.service import reset_analytics_service
from promptdesk.approvals.service import reset_approval_service
from promptdesk.audit.service import reset_audit_service
from promptdesk.core.database import init_sqlmodel_tables
from promptdesk.governance.service import reset_governance_service
from promptdesk.peer_review.service import reset_peer_review_service
from promptdesk.prompts.service import reset_prompt_service
from promptdesk.rbac.service import get_rbac_service, reset_rbac_service
from promptdesk.reports.service import seed_report_templates
from promptdesk.search.service import reset_search_service
from promptdesk.storage.cache import reset_query_cache
from promptdesk.storage.database import get_engine, init_db, reset_engine, seed_defaults, set_db_path
from promptdesk.storage.pool import reset_connection_pool
from promptdesk.tags.service import reset_tag_service


def _reset_singletons() -> None:
    reset_prompt_service()
    reset_search_service()
    reset_peer_review_service()
    reset_approval_service()
    reset_audit_service()
    reset_rbac_service()
    reset_governance_service()
    reset_analytics_service()
    reset_tag_service()
    reset_query_cache()
    reset_connection_pool()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def temp_database():
    """Use a fresh, seeded temporary database for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        temp_path = Path(f.name)

    _reset_singletons()
    set_db_path(temp_path)
    init_db()
    init_sqlmodel_tables()
    seed_defaults()
    yield temp_path

    _reset_singletons()
    reset_engine()
    temp_path.unlink(missing_ok=True)


@pytest.fixture
def session(temp_database) -> Session:
    """SQLModel session with the report templates seeded."""
    with Session(get_engine()) as session:
        seed_report_templates(session)
        yield session


# =============================================================================
# Users and Roles
# =============================================================================


@pytest.fixture
def grant_role() -> Callable[[str, str], str]:
    """Assign a seeded system role (by name) to a user."""

    def _grant(user_id: str, role_name: str) -> str:
        service = get_rbac_service()
        role = service.get_role_by_name(role_name)
        service.assign_role(user_id, role["id"], assigned_by="system")
        return user_id

    return _grant


@pytest.fixture
def admin(grant_role) -> str:
    return grant_role("admin-1", "admin")


@pytest.fixture
def reviewer(grant_role) -> str:
    return grant_role("reviewer-1", "reviewer")


@pytest.fixture
def author(grant_role) -> str:
    return grant_role("author-1", "user")


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def client(temp_database) -> TestClient:
    """Test client running the full application lifespan."""
    from promptdesk.main import create_app

    with TestClient(create_app()) as client:
        yield client
