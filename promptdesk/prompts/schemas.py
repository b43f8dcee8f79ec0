"""Prompt library request and response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class CreatePromptRequest(BaseModel):
    """Request to create a prompt.

    Field rules (length, allowed types and statuses, tag sizes) are enforced
    by PromptValidator so that failures carry the field name.
    """

    title: str
    content: str
    description: str | None = None
    role: str | None = None
    department: str | None = None
    workflow: str | None = None
    prompt_type: str = "general"
    status: str = "draft"
    visibility: str = "private"
    department_id: str | None = None
    team_id: str | None = None
    is_template: bool = False
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdatePromptRequest(BaseModel):
    """Partial update; only fields that are set are applied."""

    title: str | None = None
    content: str | None = None
    description: str | None = None
    role: str | None = None
    department: str | None = None
    workflow: str | None = None
    prompt_type: str | None = None
    status: str | None = None
    visibility: str | None = None
    department_id: str | None = None
    team_id: str | None = None
    is_template: bool | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class RevertRequest(BaseModel):
    version_id: str
    reason: str | None = None


class RatePromptRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class PromptOut(BaseModel):
    id: str
    title: str
    description: str | None = None
    content: str
    role: str | None = None
    department: str | None = None
    workflow: str | None = None
    prompt_type: str
    status: str
    visibility: str
    author_id: str
    created_by: str | None = None
    department_id: str | None = None
    team_id: str | None = None
    is_template: bool
    is_archived: bool
    archived_at: str | None = None
    usage_count: int
    rating_average: float
    rating_count: int
    tags: list[str]
    metadata: dict[str, Any]
    created_at: str
    updated_at: str


class PromptVersionOut(BaseModel):
    id: str
    prompt_id: str
    version_number: int
    title: str
    prompt_text: str
    change_summary: str | None = None
    change_type: str
    author_id: str | None = None
    created_at: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PromptList(BaseModel):
    data: list[PromptOut]
    pagination: Pagination


class PromptDetail(BaseModel):
    prompt: PromptOut
    versions: list[PromptVersionOut]


class VersionList(BaseModel):
    data: list[PromptVersionOut]
    pagination: Pagination
