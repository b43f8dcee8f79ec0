"""Input validation for prompt library requests."""

from __future__ import annotations

from typing import Any

from promptdesk.core.errors import ValidationError

PROMPT_TYPES = ["general", "technical", "creative", "analytical", "customer_service", "other", "Template"]
PROMPT_STATUSES = ["draft", "review", "approved", "rejected", "published", "archived", "Active", "Inactive"]
VISIBILITIES = ["private", "team", "department", "public"]
SORT_FIELDS = ["title", "created_at", "updated_at", "usage_count", "rating_average", "status", "prompt_type"]
SORT_ORDERS = ["asc", "desc"]

TITLE_MIN, TITLE_MAX = 3, 500
CONTENT_MIN = 10
TAG_MIN, TAG_MAX = 2, 50
MAX_LIMIT = 100


class PromptValidator:
    """Field and request validators. Each raises ValidationError on failure."""

    @staticmethod
    def validate_title(title: Any) -> str:
        if title is None or not str(title).strip():
            raise ValidationError("title", "Title is required")
        title = str(title).strip()
        if len(title) < TITLE_MIN:
            raise ValidationError("title", f"Title must be at least {TITLE_MIN} characters")
        if len(title) > TITLE_MAX:
            raise ValidationError("title", f"Title must be at most {TITLE_MAX} characters")
        return title

    @staticmethod
    def validate_content(content: Any) -> str:
        if content is None or not str(content).strip():
            raise ValidationError("content", "Content is required")
        content = str(content)
        if len(content.strip()) < CONTENT_MIN:
            raise ValidationError("content", f"Content must be at least {CONTENT_MIN} characters")
        return content

    @staticmethod
    def _one_of(field: str, value: str, allowed: list[str]) -> str:
        if value not in allowed:
            raise ValidationError(field, f"Must be one of: {', '.join(allowed)}")
        return value

    @classmethod
    def validate_prompt_type(cls, value: str) -> str:
        return cls._one_of("prompt_type", value, PROMPT_TYPES)

    @classmethod
    def validate_status(cls, value: str) -> str:
        return cls._one_of("status", value, PROMPT_STATUSES)

    @classmethod
    def validate_visibility(cls, value: str) -> str:
        return cls._one_of("visibility", value, VISIBILITIES)

    @staticmethod
    def validate_tags(tags: Any) -> list[str]:
        if tags is None:
            return []
        if not isinstance(tags, list):
            raise ValidationError("tags", "Tags must be a list")
        cleaned = []
        for tag in tags:
            if not isinstance(tag, str):
                raise ValidationError("tags", "Each tag must be a string")
            tag = tag.strip()
            if not TAG_MIN <= len(tag) <= TAG_MAX:
                raise ValidationError("tags", f"Each tag must be {TAG_MIN}-{TAG_MAX} characters")
            cleaned.append(tag)
        return cleaned

    @staticmethod
    def validate_pagination(page: int, limit: int) -> tuple[int, int]:
        if page < 1:
            raise ValidationError("page", "Page must be at least 1")
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError("limit", f"Limit must be between 1 and {MAX_LIMIT}")
        return page, limit

    @classmethod
    def validate_sort(cls, sort_by: str, sort_order: str) -> tuple[str, str]:
        cls._one_of("sort_by", sort_by, SORT_FIELDS)
        cls._one_of("sort_order", sort_order.lower(), SORT_ORDERS)
        return sort_by, sort_order.lower()

    @classmethod
    def validate_create(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Validate a create request, filling defaults."""
        validated = dict(data)
        validated["title"] = cls.validate_title(data.get("title"))
        validated["content"] = cls.validate_content(data.get("content"))
        validated["prompt_type"] = cls.validate_prompt_type(data.get("prompt_type") or "general")
        validated["status"] = cls.validate_status(data.get("status") or "draft")
        validated["visibility"] = cls.validate_visibility(data.get("visibility") or "private")
        validated["tags"] = cls.validate_tags(data.get("tags"))
        return validated

    @classmethod
    def validate_update(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Validate only the fields present in a partial update."""
        validated = dict(data)
        if "title" in data:
            validated["title"] = cls.validate_title(data["title"])
        if "content" in data:
            validated["content"] = cls.validate_content(data["content"])
        if data.get("prompt_type") is not None:
            cls.validate_prompt_type(data["prompt_type"])
        if data.get("status") is not None:
            cls.validate_status(data["status"])
        if data.get("visibility") is not None:
            cls.validate_visibility(data["visibility"])
        if "tags" in data:
            validated["tags"] = cls.validate_tags(data["tags"])
        return validated
