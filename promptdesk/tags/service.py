"""
Tag registry and prompt tagging.

Tags live in ``tag_registry`` with a unique slug derived from the name.
Assigning a tag to a prompt bumps the tag's ``usage_count``; trending
compares assignments in the latest window against the window before it.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text

from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db
from promptdesk.storage.models import generate_uuid, now_iso, row_to_dict, to_iso, utcnow

log = get_logger(__name__)

TAG_TYPES = ["category", "technical", "domain", "custom", "organizational", "workflow", "quality"]
ASSIGNMENT_SOURCES = ["manual", "auto_suggest", "ai_generated"]

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
DEFAULT_COLOR = "#6B7280"
TREND_WINDOW_DAYS = 7


def slugify(name: str) -> str:
    """Lowercase, runs of non-alphanumerics collapsed to single dashes."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _tag(row: Any) -> dict[str, Any]:
    return row_to_dict(row, bool_fields=("is_system_tag",))


class TagService:
    """Tag registry, prompt tag assignments and trending tags."""

    # =========================================================================
    # Registry
    # =========================================================================

    def create_tag(
        self,
        actor_id: str,
        name: str,
        description: str | None = None,
        tag_type: str = "custom",
        color: str | None = None,
    ) -> dict[str, Any]:
        name = (name or "").strip()
        if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
            raise ValidationError("name", f"Must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters")
        if tag_type not in TAG_TYPES:
            raise ValidationError("tag_type", f"Must be one of: {', '.join(TAG_TYPES)}")
        slug = slugify(name)
        if not slug:
            raise ValidationError("name", "Must contain letters or digits")

        tag = {
            "id": generate_uuid(),
            "name": name,
            "slug": slug,
            "description": description,
            "tag_type": tag_type,
            "color": color or DEFAULT_COLOR,
            "is_system_tag": False,
            "created_by": actor_id,
            "usage_count": 0,
            "created_at": now_iso(),
        }
        with get_db() as conn:
            if conn.execute(text("SELECT 1 FROM tag_registry WHERE slug = :slug"), {"slug": slug}).fetchone():
                raise ConflictError(f"Tag '{slug}' already exists", {"slug": slug})
            conn.execute(
                text("""
                INSERT INTO tag_registry
                (id, name, slug, description, tag_type, color, is_system_tag, created_by, usage_count, created_at)
                VALUES (:id, :name, :slug, :description, :tag_type, :color, 0, :created_by, 0, :created_at)
                """),
                tag,
            )
            conn.commit()

        log.info("tag_created", tag_id=tag["id"], slug=slug)
        return tag

    def get_tag(self, tag_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM tag_registry WHERE id = :id"), {"id": tag_id}).fetchone()
        if row is None:
            raise NotFoundError("Tag", tag_id)
        return _tag(row)

    def list_tags(self, tag_type: str | None = None, system_only: bool = False, limit: int = 100) -> list[dict[str, Any]]:
        """Tags, most used first."""
        sql = "SELECT * FROM tag_registry WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        if tag_type:
            sql += " AND tag_type = :tag_type"
            params["tag_type"] = tag_type
        if system_only:
            sql += " AND is_system_tag = 1"
        sql += " ORDER BY usage_count DESC, name LIMIT :limit"
        with get_db() as conn:
            return [_tag(r) for r in conn.execute(text(sql), params).fetchall()]

    def search_tags(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        params = {"q": f"%{query.lower()}%", "limit": limit}
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT * FROM tag_registry
                WHERE LOWER(name) LIKE :q OR slug LIKE :q
                ORDER BY usage_count DESC, name
                LIMIT :limit
                """),
                params,
            )
            return [_tag(r) for r in result.fetchall()]

    # =========================================================================
    # Prompt Assignments
    # =========================================================================

    def assign_tag(self, prompt_id: str, tag_id: str, actor_id: str, source: str = "manual") -> dict[str, Any]:
        """Tag a prompt.

        Raises:
            NotFoundError: Unknown or archived prompt, or unknown tag
            ConflictError: The prompt already carries the tag
        """
        if source not in ASSIGNMENT_SOURCES:
            raise ValidationError("source", f"Must be one of: {', '.join(ASSIGNMENT_SOURCES)}")

        assignment = {
            "id": generate_uuid(),
            "prompt_id": prompt_id,
            "tag_id": tag_id,
            "assigned_by": actor_id,
            "assignment_source": source,
            "created_at": now_iso(),
        }
        with get_db() as conn:
            prompt = conn.execute(
                text("SELECT is_archived FROM prompts WHERE id = :id"), {"id": prompt_id}
            ).fetchone()
            if prompt is None or prompt.is_archived:
                raise NotFoundError("Prompt", prompt_id)
            if conn.execute(text("SELECT 1 FROM tag_registry WHERE id = :id"), {"id": tag_id}).fetchone() is None:
                raise NotFoundError("Tag", tag_id)
            duplicate = conn.execute(
                text("SELECT 1 FROM prompt_tag_assignments WHERE prompt_id = :p AND tag_id = :t"),
                {"p": prompt_id, "t": tag_id},
            ).fetchone()
            if duplicate:
                raise ConflictError("Prompt already has this tag", {"prompt_id": prompt_id, "tag_id": tag_id})

            conn.execute(
                text("""
                INSERT INTO prompt_tag_assignments (id, prompt_id, tag_id, assigned_by, assignment_source, created_at)
                VALUES (:id, :prompt_id, :tag_id, :assigned_by, :assignment_source, :created_at)
                """),
                assignment,
            )
            conn.execute(
                text("UPDATE tag_registry SET usage_count = usage_count + 1 WHERE id = :id"), {"id": tag_id}
            )
            conn.commit()
        return assignment

    def remove_tag(self, prompt_id: str, tag_id: str) -> None:
        with get_db() as conn:
            result = conn.execute(
                text("DELETE FROM prompt_tag_assignments WHERE prompt_id = :p AND tag_id = :t"),
                {"p": prompt_id, "t": tag_id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Tag assignment", f"{prompt_id}/{tag_id}")
            conn.execute(
                text("""
                UPDATE tag_registry
                SET usage_count = CASE WHEN usage_count > 0 THEN usage_count - 1 ELSE 0 END
                WHERE id = :id
                """),
                {"id": tag_id},
            )
            conn.commit()

    def get_prompt_tags(self, prompt_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT t.* FROM tag_registry t
                JOIN prompt_tag_assignments a ON a.tag_id = t.id
                WHERE a.prompt_id = :p
                ORDER BY t.name
                """),
                {"p": prompt_id},
            )
            return [_tag(r) for r in result.fetchall()]

    # =========================================================================
    # Trending
    # =========================================================================

    def get_trending_tags(
        self,
        limit: int = 10,
        days: int = TREND_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Tags assigned in the last ``days``, busiest first.

        Each tag carries ``recent_count``, ``previous_count`` (the window
        before) and ``trend``: up, down or stable.
        """
        if days < 1:
            raise ValidationError("days", "Must be at least 1")
        now = now or utcnow()
        window = timedelta(days=days)
        with get_db() as conn:
            rows = conn.execute(
                text("""
                SELECT t.*,
                       SUM(CASE WHEN a.created_at >= :recent_start THEN 1 ELSE 0 END) AS recent_count,
                       SUM(CASE WHEN a.created_at < :recent_start THEN 1 ELSE 0 END) AS previous_count
                FROM tag_registry t
                JOIN prompt_tag_assignments a ON a.tag_id = t.id
                WHERE a.created_at >= :previous_start AND a.created_at < :end
                GROUP BY t.id
                """),
                {
                    "previous_start": to_iso(now - 2 * window),
                    "recent_start": to_iso(now - window),
                    "end": to_iso(now),
                },
            ).fetchall()

        trending = []
        for row in rows:
            tag = _tag(row)
            if not tag["recent_count"]:
                continue
            if tag["recent_count"] > tag["previous_count"]:
                tag["trend"] = "up"
            elif tag["recent_count"] < tag["previous_count"]:
                tag["trend"] = "down"
            else:
                tag["trend"] = "stable"
            trending.append(tag)
        trending.sort(key=lambda t: (-t["recent_count"], -t["usage_count"], t["name"]))
        return trending[:limit]


# Global service instance
_tag_service: TagService | None = None


def get_tag_service() -> TagService:
    global _tag_service
    if _tag_service is None:
        _tag_service = TagService()
    return _tag_service


def reset_tag_service() -> None:
    global _tag_service
    _tag_service = None
