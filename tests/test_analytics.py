"""Tests for usage analytics: tracking, usage metrics, trending and comparisons."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import text

from promptdesk.analytics.service import PROMPT_VIEW, AnalyticsService, percent_change
from promptdesk.prompts.service import PromptService
from promptdesk.storage.database import get_db
from promptdesk.storage.models import parse_iso, utcnow


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def analytics() -> AnalyticsService:
    return AnalyticsService()


@pytest.fixture
def window():
    """A two minute window around now."""
    now = utcnow()
    return now - timedelta(minutes=1), now + timedelta(minutes=1)


# =============================================================================
# Helpers
# =============================================================================

class TestPercentChange:
    """Test period-over-period change."""

    def test_growth_and_decline(self):
        assert percent_change(150, 100) == 50.0
        assert percent_change(75, 100) == -25.0

    def test_from_zero(self):
        assert percent_change(5, 0) == 100.0
        assert percent_change(0, 0) == 0.0


# =============================================================================
# Usage Metrics
# =============================================================================

class TestUsageMetrics:
    """Test event tracking and usage aggregation."""

    def test_usage_counts_by_event(self, analytics, window):
        analytics.track_prompt_view("p1", user_id="u1")
        analytics.track_prompt_view("p1", user_id="u2")
        analytics.track_prompt_use("p1", user_id="u1")
        analytics.track_sandbox_test(user_id="u3", prompt_id="p1")
        analytics.track_review_submit("s1", user_id="u2")

        metrics = analytics.get_usage_metrics(*window)

        assert metrics == {
            "total_events": 5,
            "unique_users": 3,
            "prompt_views": 2,
            "prompt_uses": 1,
            "sandbox_sessions": 1,
            "reviews_completed": 1,
        }

    def test_events_outside_window_ignored(self, analytics):
        analytics.track_event("prompt", PROMPT_VIEW, user_id="u1")
        past = utcnow() - timedelta(days=10)
        assert analytics.get_usage_metrics(past - timedelta(days=1), past)["total_events"] == 0

    def test_department_metrics(self, analytics, window):
        """Departments are ordered by activity with engagement per user."""
        for user in ("u1", "u1", "u2"):
            analytics.track_prompt_use("p1", user_id=user, department_id="Sales")
        analytics.track_prompt_view("p2", user_id="u3", department_id="Legal")
        analytics.track_prompt_view("p2", user_id="u3")

        metrics = analytics.get_department_metrics(*window)

        assert [m["department_id"] for m in metrics] == ["Sales", "Legal"]
        assert metrics[0]["prompt_uses"] == 3
        assert metrics[0]["avg_engagement"] == 1.5

    def test_most_used_prompts(self, analytics):
        """Uses weigh more than views in the trending score."""
        prompts = PromptService()
        used = prompts.create_prompt("a", {"title": "Used prompt", "content": "Some useful content"})
        viewed = prompts.create_prompt("a", {"title": "Viewed prompt", "content": "Some viewed content"})
        prompts.record_use("u1", used.id)
        prompts.record_use("u2", used.id)
        for _ in range(3):
            analytics.track_prompt_view(viewed.id, user_id="u3")

        ranked = analytics.get_most_used_prompts(limit=5)

        assert [p["title"] for p in ranked] == ["Used prompt", "Viewed prompt"]
        assert ranked[0]["use_count"] == 2
        assert ranked[0]["trending_score"] == 60
        assert ranked[1]["view_count"] == 3

    def test_adoption_time_series(self, analytics):
        for user in ("u1", "u2", "u1"):
            analytics.track_sandbox_test(user_id=user)

        series = analytics.get_adoption_time_series("sandbox_test", days=2)

        assert len(series) == 3
        assert series[-1]["unique_users"] == 2
        assert series[0]["unique_users"] == 0

    def test_feature_usage_breakdown(self, analytics):
        analytics.track_feature_usage("export", "click", user_id="u1")
        analytics.track_feature_usage("export", "download", user_id="u2")
        analytics.track_feature_usage("search", "click", user_id="u1")

        breakdown = analytics.get_feature_usage_breakdown()

        assert breakdown[0] == {
            "feature_name": "export",
            "usage_count": 2,
            "unique_users": 2,
            "actions": {"click": 1, "download": 1},
        }

    def test_cohort_analysis(self, analytics, window):
        analytics.track_prompt_view("p1", user_id="u1")
        analytics.track_prompt_view("p1", user_id="u2")
        analytics.track_prompt_use("p1", user_id="u2")

        cohort = analytics.get_cohort_analysis(*window)

        assert cohort["total_users"] == 2
        assert cohort["active_today"] == 2
        assert cohort["retention_rate"] == 100.0
        assert cohort["avg_events_per_user"] == 1.5


# =============================================================================
# Performance and Comparison
# =============================================================================

class TestPerformanceMetrics:
    """Test quality metrics and period comparison."""

    def test_sandbox_success_rate(self, analytics, window):
        analytics.track_sandbox_test(user_id="u1", success=True)
        analytics.track_sandbox_test(user_id="u1", success=False)

        metrics = analytics.get_performance_metrics(*window)

        assert metrics["sandbox_success_rate"] == 50.0
        assert metrics["avg_ai_accuracy"] == 0
        assert metrics["revision_frequency"] == 0.0

    def test_compare_periods_against_empty_previous(self, analytics, window):
        analytics.track_prompt_view("p1", user_id="u1")

        comparison = analytics.compare_periods(*window)

        assert comparison["current"]["total_events"] == 1
        assert comparison["previous"]["total_events"] == 0
        assert comparison["changes"]["total_events"] == 100.0
        assert comparison["changes"]["avg_ai_accuracy"] == 0.0
        assert comparison["previous_period"]["end"] == comparison["current_period"]["start"]

    def test_event_on_period_boundary_counts_once(self, analytics):
        """An event exactly at the start of the current period is not in the previous one."""
        analytics.track_prompt_view("p1", user_id="u1")
        with get_db() as conn:
            boundary = parse_iso(conn.execute(text("SELECT created_at FROM analytics_events")).scalar_one())

        comparison = analytics.compare_periods(boundary, boundary + timedelta(hours=1))

        assert comparison["current"]["total_events"] == 1
        assert comparison["previous"]["total_events"] == 0
        assert analytics.get_usage_metrics(boundary - timedelta(hours=1), boundary)["total_events"] == 1
