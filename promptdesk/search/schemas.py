"""Search request and response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SearchSort(str, Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    POPULARITY = "popularity"
    RATING = "rating"


class SearchFilters(BaseModel):
    query: str | None = None
    roles: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    workflows: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    statuses: list[str] = Field(default_factory=list)
    author_id: str | None = None
    visibility: str | None = None


class SearchOptions(BaseModel):
    sort_by: SearchSort = SearchSort.RELEVANCE
    sort_order: str = Field(default="desc", pattern="^(asc|desc)$")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class SearchRequest(BaseModel):
    filters: SearchFilters = Field(default_factory=SearchFilters)
    options: SearchOptions = Field(default_factory=SearchOptions)


class FacetValue(BaseModel):
    value: str
    count: int


class SearchResponse(BaseModel):
    results: list[dict[str, Any]]
    total: int
    facets: dict[str, list[FacetValue]]
    cached: bool = False


class PopularSearch(BaseModel):
    query: str
    count: int
