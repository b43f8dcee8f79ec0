"""Search API routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from promptdesk.core.security import get_actor_id, require_permission

from .schemas import FacetValue, PopularSearch, SearchRequest, SearchResponse
from .service import get_search_service

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
def search(request: SearchRequest, actor_id: str | None = Depends(get_actor_id)) -> dict[str, Any]:
    """Search prompts. Identical searches within the cache TTL are served from cache."""
    options = request.options.model_dump()
    options["sort_by"] = request.options.sort_by.value
    return get_search_service().search(request.filters.model_dump(), options, actor_id)


@router.get("/facets", response_model=dict[str, list[FacetValue]])
def get_facets() -> dict[str, Any]:
    return get_search_service().compute_facets()


@router.post("/facets/refresh", response_model=dict[str, list[FacetValue]])
def refresh_facets() -> dict[str, Any]:
    return get_search_service().refresh_facets()


@router.get("/popular", response_model=list[PopularSearch])
def get_popular_searches(limit: int = Query(default=10, ge=1, le=100)) -> list[dict[str, Any]]:
    return get_search_service().get_popular_searches(limit)


@router.get("/cache/stats")
def get_cache_stats() -> dict[str, Any]:
    return get_search_service().get_cache_stats()


@router.delete("/cache")
def clear_cache(_: str = Depends(require_permission("roles.manage"))) -> dict[str, int]:
    return {"removed": get_search_service().clear_cache()}
