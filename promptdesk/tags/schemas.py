"""Tag request and response models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class TagType(str, Enum):
    CATEGORY = "category"
    TECHNICAL = "technical"
    DOMAIN = "domain"
    CUSTOM = "custom"
    ORGANIZATIONAL = "organizational"
    WORKFLOW = "workflow"
    QUALITY = "quality"


class AssignmentSource(str, Enum):
    MANUAL = "manual"
    AUTO_SUGGEST = "auto_suggest"
    AI_GENERATED = "ai_generated"


class CreateTagRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: str | None = None
    tag_type: TagType = TagType.CUSTOM
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class AssignTagRequest(BaseModel):
    tag_id: str
    source: AssignmentSource = AssignmentSource.MANUAL


class TagOut(BaseModel):
    id: str
    name: str
    slug: str
    description: str | None
    tag_type: str
    color: str | None
    is_system_tag: bool
    created_by: str | None
    usage_count: int
    created_at: str


class TrendingTagOut(TagOut):
    recent_count: int
    previous_count: int
    trend: str
