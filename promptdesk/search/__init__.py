"""Search domain - faceted prompt search with result caching."""

from .router import router
from .service import (
    FACET_COLUMNS,
    SearchService,
    build_cache_key,
    get_search_service,
    reset_search_service,
)
from .schemas import SearchFilters, SearchOptions, SearchRequest, SearchResponse

__all__ = [
    "router",
    "SearchService",
    "get_search_service",
    "reset_search_service",
    "build_cache_key",
    "FACET_COLUMNS",
    "SearchFilters",
    "SearchOptions",
    "SearchRequest",
    "SearchResponse",
]
