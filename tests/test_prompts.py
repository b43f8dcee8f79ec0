"""Tests for the prompt library: validation, CRUD, visibility and versions."""

import threading

import pytest

from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from promptdesk.prompts.service import PromptService
from promptdesk.prompts.validators import PromptValidator
from promptdesk.search.service import SearchService


@pytest.fixture
def service() -> PromptService:
    return PromptService()


def _create(service: PromptService, actor: str = "author-1", **fields):
    data = {
        "title": "Summarize support ticket",
        "content": "Summarize the following ticket in three bullet points.",
        "department": "Support",
        "workflow": "triage",
    }
    data.update(fields)
    return service.create_prompt(actor, data)


# =============================================================================
# Validation
# =============================================================================


class TestPromptValidator:
    """Test field validation rules."""

    def test_title_too_short(self):
        with pytest.raises(ValidationError) as exc_info:
            PromptValidator.validate_title("ab")
        assert exc_info.value.field == "title"

    def test_content_minimum_ignores_whitespace(self):
        """Padding with spaces does not satisfy the content minimum."""
        with pytest.raises(ValidationError):
            PromptValidator.validate_content("   short    ")

    def test_tag_length_bounds(self):
        assert PromptValidator.validate_tags([" ok "]) == ["ok"]
        with pytest.raises(ValidationError):
            PromptValidator.validate_tags(["x"])

    def test_create_fills_defaults(self):
        """Test defaults for type, status and visibility."""
        data = PromptValidator.validate_create({"title": "Title", "content": "Long enough content"})
        assert data["prompt_type"] == "general"
        assert data["status"] == "draft"
        assert data["visibility"] == "private"
        assert data["tags"] == []

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            PromptValidator.validate_create({"title": "Title", "content": "Long enough content", "status": "live"})
        assert "Must be one of" in exc_info.value.message

    def test_sort_validation(self):
        assert PromptValidator.validate_sort("title", "ASC") == ("title", "asc")
        with pytest.raises(ValidationError):
            PromptValidator.validate_sort("password", "asc")

    def test_pagination_limits(self):
        with pytest.raises(ValidationError):
            PromptValidator.validate_pagination(1, 101)
        with pytest.raises(ValidationError):
            PromptValidator.validate_pagination(0, 10)


# =============================================================================
# CRUD
# =============================================================================


class TestPromptService:
    """Test prompt CRUD operations."""

    def test_create_writes_initial_version(self, service):
        """Test creating a prompt stores version 1."""
        prompt = _create(service)

        result = service.get_prompt("author-1", prompt.id)
        assert result["prompt"].title == "Summarize support ticket"
        assert [v.version_number for v in result["versions"]] == [1]
        assert result["versions"][0].change_summary == "Initial version"

    def test_create_is_audited(self, service):
        prompt = _create(service)
        history = get_audit_service().get_resource_history("prompt", prompt.id)
        assert [e.action for e in history] == ["create"]

    def test_private_prompt_hidden_from_others(self, service):
        """Test that another user cannot read a private prompt."""
        prompt = _create(service)
        with pytest.raises(PermissionDeniedError):
            service.get_prompt("someone-else", prompt.id)

    def test_public_prompt_readable_by_anyone(self, service):
        prompt = _create(service, visibility="public")
        assert service.get_prompt(None, prompt.id)["prompt"].id == prompt.id

    def test_approver_can_read_private_prompt(self, service, reviewer):
        prompt = _create(service)
        assert service.get_prompt(reviewer, prompt.id)["prompt"].id == prompt.id

    def test_list_filters_and_paginates(self, service):
        """Test listing only returns visible prompts matching filters."""
        for i in range(3):
            _create(service, title=f"Public prompt {i}", visibility="public")
        _create(service, actor="other", title="Other private")
        _create(service, title="Finance prompt", department="Finance", visibility="public")

        result = service.list_prompts("author-1", {"department": "Support"}, page=1, limit=2)
        assert result["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
        assert len(result["data"]) == 2

        anonymous = service.list_prompts(None, {"search": "finance"})
        assert [p.title for p in anonymous["data"]] == ["Finance prompt"]

    def test_update_content_creates_version(self, service):
        """Test that changing content creates a new version."""
        prompt = _create(service)
        service.update_prompt("author-1", prompt.id, {"content": "Rewrite the ticket as a short summary."})
        service.update_prompt("author-1", prompt.id, {"title": "Ticket summarizer"})

        versions = service.get_versions("author-1", prompt.id)
        assert versions["pagination"]["total"] == 2
        assert versions["data"][0].version_number == 2

    def test_update_requires_owner_or_permission(self, service):
        prompt = _create(service)
        with pytest.raises(PermissionDeniedError):
            service.update_prompt("intruder", prompt.id, {"title": "Hijacked"})

    def test_update_ignores_unknown_fields(self, service):
        prompt = _create(service)
        updated = service.update_prompt("author-1", prompt.id, {"usage_count": 999})
        assert updated.usage_count == 0

    def test_delete_archives(self, service):
        """Test that delete soft-archives and hides the prompt from listings."""
        prompt = _create(service, visibility="public")
        archived = service.delete_prompt("author-1", prompt.id)

        assert archived.is_archived
        assert archived.status == "archived"
        assert service.list_prompts(None)["pagination"]["total"] == 0
        with pytest.raises(NotFoundError):
            service.get_prompt("someone", prompt.id)
        with pytest.raises(NotFoundError):
            service.delete_prompt("author-1", prompt.id)

    def test_revert_copies_old_version_forward(self, service):
        """Test reverting restores old content as a new version."""
        prompt = _create(service)
        original = service.get_versions("author-1", prompt.id)["data"][0]
        service.update_prompt("author-1", prompt.id, {"content": "Completely different instructions here."})

        reverted = service.revert_prompt("author-1", prompt.id, original.id, reason="regression")

        assert reverted.content == "Summarize the following ticket in three bullet points."
        latest = service.get_versions("author-1", prompt.id)["data"][0]
        assert latest.version_number == 3
        assert latest.change_type == "rollback"
        assert latest.change_summary == "Reverted to version 1: regression"

    def test_revert_unknown_version(self, service):
        prompt = _create(service)
        with pytest.raises(NotFoundError):
            service.revert_prompt("author-1", prompt.id, "missing")

    def test_rating_running_average(self, service):
        prompt = _create(service)
        service.rate_prompt("a", prompt.id, 5)
        rated = service.rate_prompt("b", prompt.id, 2)
        assert rated.rating_count == 2
        assert rated.rating_average == 3.5

        with pytest.raises(ValidationError):
            service.rate_prompt("c", prompt.id, 6)

    def test_record_use_increments_counter(self, service):
        prompt = _create(service)
        service.record_use("u1", prompt.id)
        assert service.record_use("u2", prompt.id).usage_count == 2

    def test_archived_prompt_cannot_be_rated(self, service):
        prompt = _create(service)
        service.delete_prompt("author-1", prompt.id)
        with pytest.raises(NotFoundError):
            service.rate_prompt("a", prompt.id, 4)

    def test_concurrent_ratings_all_count(self, service):
        """Ratings submitted at the same moment are all folded in."""
        prompt = _create(service)
        barrier = threading.Barrier(10)
        errors = []

        def rate():
            barrier.wait()
            try:
                service.rate_prompt("rater", prompt.id, 5)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=rate) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        stored = service.get_prompt("author-1", prompt.id)["prompt"]
        assert stored.rating_count == 10
        assert stored.rating_average == 5

    @pytest.mark.parametrize("action", ["use", "rate"])
    def test_use_and_rating_refresh_search_cache(self, service, action):
        """Popularity and rating changes drop cached search results."""
        prompt = _create(service, visibility="public")
        search = SearchService()
        search.search({}, {"sort_by": "popularity"})
        assert search.search({}, {"sort_by": "popularity"})["cached"] is True

        if action == "use":
            service.record_use("u1", prompt.id)
        else:
            service.rate_prompt("u1", prompt.id, 4)

        assert search.search({}, {"sort_by": "popularity"})["cached"] is False
