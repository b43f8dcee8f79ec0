"""Tests for prompt search, result caching and facets."""

from datetime import timedelta

import pytest

from promptdesk.core.errors import ValidationError
from promptdesk.prompts.service import PromptService
from promptdesk.search.service import SearchService, build_cache_key
from promptdesk.storage.models import utcnow


@pytest.fixture
def prompts() -> PromptService:
    return PromptService()


@pytest.fixture
def search() -> SearchService:
    return SearchService(cache_ttl_seconds=300, facet_refresh_minutes=30)


@pytest.fixture
def library(prompts):
    """A small library: four public prompts and one private."""
    specs = [
        ("Code review checklist", "Engineering", "developer", "technical"),
        ("Refactor legacy module", "Engineering", "developer", "technical"),
        ("Quarterly sales summary", "Sales", "analyst", "analytical"),
        ("Customer apology email", "Support", "agent", "customer_service"),
    ]
    created = []
    for title, department, role, prompt_type in specs:
        created.append(prompts.create_prompt("author-1", {
            "title": title,
            "content": f"{title}: detailed instructions for the model.",
            "department": department,
            "role": role,
            "prompt_type": prompt_type,
            "visibility": "public",
        }))
    created.append(prompts.create_prompt("author-2", {
        "title": "Private engineering notes",
        "content": "Only the author should find this prompt.",
        "department": "Engineering",
    }))
    return created


class TestSearch:
    """Test filtering, visibility and ordering."""

    def test_list_filters(self, search, library):
        """Test IN-list filters narrow results."""
        result = search.search({"departments": ["Engineering"]})
        assert result["total"] == 2
        assert {r["title"] for r in result["results"]} == {"Code review checklist", "Refactor legacy module"}

    def test_private_prompts_only_visible_to_author(self, search, library):
        assert search.search({"departments": ["Engineering"]}, actor_id="author-2")["total"] == 3
        assert search.search({"query": "private"})["total"] == 0

    def test_query_matches_content_and_ranks_title_hits_first(self, search, prompts, library):
        """Title matches outrank content-only matches for relevance sort."""
        prompts.create_prompt("author-1", {
            "title": "Meeting notes",
            "content": "Produce a sales summary of the meeting.",
            "visibility": "public",
        })
        result = search.search({"query": "SALES"})
        assert [r["title"] for r in result["results"]] == ["Quarterly sales summary", "Meeting notes"]

    def test_popularity_sort(self, search, prompts, library):
        prompts.record_use("u", library[2].id)
        result = search.search({}, {"sort_by": "popularity"})
        assert result["results"][0]["id"] == library[2].id

    def test_pagination(self, search, library):
        result = search.search({}, {"page": 2, "limit": 3})
        assert result["total"] == 4
        assert len(result["results"]) == 1

    def test_invalid_options(self, search):
        with pytest.raises(ValidationError):
            search.search({}, {"sort_by": "random"})
        with pytest.raises(ValidationError):
            search.search({}, {"limit": 500})

    def test_archived_prompts_excluded(self, search, prompts, library):
        prompts.delete_prompt("author-1", library[0].id)
        assert search.search({"departments": ["Engineering"]})["total"] == 1


class TestSearchCache:
    """Test the search result cache."""

    def test_identical_search_served_from_cache(self, search, library):
        """Test the second identical search is a cache hit."""
        first = search.search({"query": "summary"})
        second = search.search({"query": "summary"})

        assert first["cached"] is False
        assert second["cached"] is True
        assert second["total"] == first["total"]
        assert search.get_cache_stats() == {"entries": 1, "total_hits": 1}

    def test_cache_key_depends_on_actor(self, search, library):
        search.search({"query": "summary"}, actor_id="a")
        assert search.search({"query": "summary"}, actor_id="b")["cached"] is False

    def test_cache_expires(self, search, library):
        now = utcnow()
        search.search({"query": "summary"}, now=now)
        later = now + timedelta(seconds=301)
        assert search.search({"query": "summary"}, now=later)["cached"] is False

    def test_prompt_changes_invalidate_cache(self, search, prompts, library):
        """Test creating a prompt drops cached results."""
        search.search({"departments": ["Sales"]})
        prompts.create_prompt("author-1", {
            "title": "Sales forecast",
            "content": "Forecast next quarter sales by region.",
            "department": "Sales",
            "visibility": "public",
        })
        result = search.search({"departments": ["Sales"]})
        assert result["cached"] is False
        assert result["total"] == 2

    def test_clear_cache(self, search, library):
        search.search({"query": "code"})
        search.search({"query": "email"})
        assert search.clear_cache() == 2

    def test_build_cache_key_is_deterministic(self):
        assert build_cache_key({"b": 1, "a": 2}, {}) == build_cache_key({"a": 2, "b": 1}, {})
        assert build_cache_key({}, {}).startswith("search:")


class TestFacets:
    """Test facet computation."""

    def test_facets_count_non_archived_prompts(self, search, library):
        """Facets are global counts over the library."""
        facets = search.compute_facets()

        departments = {f["value"]: f["count"] for f in facets["department"]}
        assert departments == {"Engineering": 3, "Sales": 1, "Support": 1}
        assert facets["type"][0] == {"value": "technical", "count": 2}

    def test_facets_reused_until_stale(self, search, prompts, library):
        now = utcnow()
        search.compute_facets(now)
        assert search.compute_facets(now + timedelta(minutes=10))["department"][0]["value"] == "Engineering"

    def test_empty_library_facets(self, search):
        facets = search.refresh_facets()
        assert facets["department"] == []
        assert search.compute_facets()["role"] == []


class TestPopularSearches:
    """Test popular search aggregation."""

    def test_popular_searches_ranked_by_frequency(self, search, library):
        for query in ("code", "code", "email", "code", "email", "sales"):
            search.clear_cache()
            search.search({"query": query})

        popular = search.get_popular_searches(limit=2)
        assert popular == [{"query": "code", "count": 3}, {"query": "email", "count": 2}]
