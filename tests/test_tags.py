"""Tests for the tag registry, prompt tagging and trending tags."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.prompts.service import PromptService
from promptdesk.storage.database import get_db
from promptdesk.storage.models import to_iso, utcnow
from promptdesk.tags.service import TagService, slugify


@pytest.fixture
def service() -> TagService:
    return TagService()


@pytest.fixture
def prompts() -> PromptService:
    return PromptService()


def _prompt(prompts: PromptService, title: str = "Draft a release note") -> str:
    return prompts.create_prompt("author-1", {"title": title, "content": "Write release notes for {version}"}).id


def _tag_id(service: TagService, slug: str) -> str:
    return next(t["id"] for t in service.list_tags() if t["slug"] == slug)


def _backdate(prompt_id: str, tag_id: str, days: float) -> None:
    with get_db() as conn:
        conn.execute(
            text("UPDATE prompt_tag_assignments SET created_at = :ts WHERE prompt_id = :p AND tag_id = :t"),
            {"ts": to_iso(utcnow() - timedelta(days=days)), "p": prompt_id, "t": tag_id},
        )
        conn.commit()


# =============================================================================
# Registry
# =============================================================================


class TestTagRegistry:
    """Test tag creation, lookup and search."""

    def test_slugify(self):
        assert slugify("  Customer  Service!! ") == "customer-service"
        assert slugify("GPT-4 / Claude") == "gpt-4-claude"

    def test_system_tags_seeded(self, service):
        system = service.list_tags(system_only=True)
        assert {t["slug"] for t in system} >= {"technical", "marketing", "high-quality"}
        assert all(t["is_system_tag"] for t in system)

    def test_create_tag(self, service):
        tag = service.create_tag("author-1", "Incident Response", tag_type="workflow")

        assert tag["slug"] == "incident-response"
        assert tag["color"] == "#6B7280"
        assert service.get_tag(tag["id"])["created_by"] == "author-1"
        assert [t["id"] for t in service.list_tags(tag_type="workflow")] == [tag["id"]]

    def test_duplicate_slug_conflicts(self, service):
        service.create_tag("author-1", "Data Science")
        with pytest.raises(ConflictError):
            service.create_tag("author-2", "data   science")

    @pytest.mark.parametrize("name,tag_type", [("x", "custom"), ("y" * 51, "custom"), ("--", "custom"), ("Ok", "misc")])
    def test_invalid_tags_rejected(self, service, name, tag_type):
        with pytest.raises(ValidationError):
            service.create_tag("author-1", name, tag_type=tag_type)

    def test_search_tags(self, service):
        results = service.search_tags("MARK")
        assert [t["slug"] for t in results] == ["marketing"]

    def test_unknown_tag(self, service):
        with pytest.raises(NotFoundError):
            service.get_tag("missing")


# =============================================================================
# Prompt Assignments
# =============================================================================


class TestPromptTagging:
    """Test assigning and removing tags on prompts."""

    def test_assign_and_remove_updates_usage(self, service, prompts):
        prompt_id = _prompt(prompts)
        tag_id = _tag_id(service, "technical")

        service.assign_tag(prompt_id, tag_id, "author-1")

        assert [t["slug"] for t in service.get_prompt_tags(prompt_id)] == ["technical"]
        assert service.get_tag(tag_id)["usage_count"] == 1
        assert service.list_tags()[0]["id"] == tag_id

        service.remove_tag(prompt_id, tag_id)

        assert service.get_prompt_tags(prompt_id) == []
        assert service.get_tag(tag_id)["usage_count"] == 0

    def test_duplicate_assignment_conflicts(self, service, prompts):
        prompt_id = _prompt(prompts)
        tag_id = _tag_id(service, "sales")
        service.assign_tag(prompt_id, tag_id, "author-1")
        with pytest.raises(ConflictError):
            service.assign_tag(prompt_id, tag_id, "author-1")
        assert service.get_tag(tag_id)["usage_count"] == 1

    def test_assign_requires_live_prompt_and_tag(self, service, prompts):
        prompt_id = _prompt(prompts)
        with pytest.raises(NotFoundError):
            service.assign_tag("missing", _tag_id(service, "sales"), "author-1")
        with pytest.raises(NotFoundError):
            service.assign_tag(prompt_id, "missing", "author-1")
        with pytest.raises(ValidationError):
            service.assign_tag(prompt_id, _tag_id(service, "sales"), "author-1", source="guess")

        prompts.delete_prompt("author-1", prompt_id)
        with pytest.raises(NotFoundError):
            service.assign_tag(prompt_id, _tag_id(service, "sales"), "author-1")

    def test_remove_missing_assignment(self, service, prompts):
        with pytest.raises(NotFoundError):
            service.remove_tag(_prompt(prompts), _tag_id(service, "sales"))


# =============================================================================
# Trending
# =============================================================================


class TestTrendingTags:
    """Test trend direction across the recent and previous windows."""

    def test_trend_directions(self, service, prompts):
        """Rising, falling and steady tags are labelled; idle tags are left out."""
        first, second, third = (_prompt(prompts, f"Prompt {i}") for i in range(3))
        technical, sales, marketing = (_tag_id(service, s) for s in ("technical", "sales", "marketing"))

        # technical: 2 recent, 0 previous
        service.assign_tag(first, technical, "author-1")
        service.assign_tag(second, technical, "author-1")
        # sales: 1 recent, 2 previous
        for prompt_id in (first, second, third):
            service.assign_tag(prompt_id, sales, "author-1")
        _backdate(first, sales, 10)
        _backdate(second, sales, 12)
        # marketing: 1 recent, 1 previous
        service.assign_tag(first, marketing, "author-1")
        service.assign_tag(second, marketing, "author-1")
        _backdate(second, marketing, 8)

        trending = service.get_trending_tags(days=7)

        assert [(t["slug"], t["trend"]) for t in trending] == [
            ("technical", "up"),
            ("sales", "down"),
            ("marketing", "stable"),
        ]
        assert trending[1]["recent_count"] == 1
        assert trending[1]["previous_count"] == 2

    def test_old_assignments_not_trending(self, service, prompts):
        prompt_id = _prompt(prompts)
        tag_id = _tag_id(service, "technical")
        service.assign_tag(prompt_id, tag_id, "author-1")
        _backdate(prompt_id, tag_id, 30)

        assert service.get_trending_tags(days=7) == []

    def test_limit_and_window_validation(self, service, prompts):
        prompt_id = _prompt(prompts)
        for slug in ("technical", "sales", "marketing"):
            service.assign_tag(prompt_id, _tag_id(service, slug), "author-1")

        assert len(service.get_trending_tags(limit=2)) == 2
        with pytest.raises(ValidationError):
            service.get_trending_tags(days=0)
