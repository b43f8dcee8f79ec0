"""
Prompt library service.

Prompts are soft-archived, never deleted. Every content change produces an
immutable row in ``prompt_versions``; reverting copies an old version
forward as a new one.
"""

from __future__ import annotations

import math
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.analytics.service import PROMPT_CREATE, PROMPT_USE, get_analytics_service
from promptdesk.audit.schemas import AuditCategory, AuditEventType
from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.rbac.service import get_rbac_service
from promptdesk.search.service import SearchService
from promptdesk.storage.database import get_db
from promptdesk.storage.models import PromptRecord, PromptVersionRecord, now_iso

from .validators import PromptValidator

log = get_logger(__name__)

UPDATABLE_FIELDS = (
    "title", "description", "content", "role", "department", "workflow",
    "prompt_type", "status", "visibility", "department_id", "team_id",
    "is_template", "tags", "metadata",
)

# Fields captured in audit old/new values
_AUDITED_FIELDS = ("title", "content", "status", "visibility", "prompt_type", "tags")


def _audit_view(prompt: PromptRecord) -> dict[str, Any]:
    return {f: getattr(prompt, f) for f in _AUDITED_FIELDS}


class PromptService:
    """CRUD and version history for library prompts."""

    def __init__(self):
        self.validator = PromptValidator()

    # =========================================================================
    # Create / Read
    # =========================================================================

    def create_prompt(self, actor_id: str, data: dict[str, Any]) -> PromptRecord:
        """Create a prompt and its initial version.

        Args:
            actor_id: Author of the prompt
            data: Prompt fields (title and content required)

        Returns:
            The stored PromptRecord
        """
        data = self.validator.validate_create(data)
        prompt = PromptRecord(
            title=data["title"],
            content=data["content"],
            author_id=actor_id,
            created_by=actor_id,
            description=data.get("description"),
            role=data.get("role"),
            department=data.get("department"),
            workflow=data.get("workflow"),
            prompt_type=data["prompt_type"],
            status=data["status"],
            visibility=data["visibility"],
            department_id=data.get("department_id"),
            team_id=data.get("team_id"),
            is_template=bool(data.get("is_template", False)),
            tags=data["tags"],
            metadata=data.get("metadata") or {},
        )

        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO prompts (
                    id, title, description, content, role, department, workflow,
                    prompt_type, status, visibility, author_id, created_by, department_id,
                    team_id, is_template, is_archived, archived_at, usage_count,
                    rating_average, rating_count, tags, metadata, created_at, updated_at
                ) VALUES (
                    :id, :title, :description, :content, :role, :department, :workflow,
                    :prompt_type, :status, :visibility, :author_id, :created_by, :department_id,
                    :team_id, :is_template, :is_archived, :archived_at, :usage_count,
                    :rating_average, :rating_count, :tags, :metadata, :created_at, :updated_at
                )
                """),
                prompt.to_dict(),
            )
            self._write_version(conn, prompt, 1, "Initial version", "major", actor_id)
            get_audit_service().log_event(
                AuditEventType.PROMPT_CREATE,
                AuditCategory.CONTENT,
                "create",
                actor_id=actor_id,
                resource_type="prompt",
                resource_id=prompt.id,
                new_values=_audit_view(prompt),
                conn=conn,
            )
            get_analytics_service().track_event(
                "prompt", PROMPT_CREATE, user_id=actor_id, prompt_id=prompt.id,
                department_id=prompt.department_id, conn=conn,
            )
            SearchService.invalidate(conn)
            conn.commit()

        log.info("prompt_created", prompt_id=prompt.id, author_id=actor_id)
        return prompt

    def _load(self, prompt_id: str, conn: Connection | None = None) -> PromptRecord:
        sql = text("SELECT * FROM prompts WHERE id = :id")
        if conn is not None:
            row = conn.execute(sql, {"id": prompt_id}).fetchone()
        else:
            with get_db() as own:
                row = own.execute(sql, {"id": prompt_id}).fetchone()
        if row is None:
            raise NotFoundError("Prompt", prompt_id)
        return PromptRecord.from_row(row._mapping)

    def _can_read(self, actor_id: str | None, prompt: PromptRecord) -> bool:
        if prompt.visibility == "public" or actor_id in (prompt.author_id, prompt.created_by):
            return True
        return actor_id is not None and get_rbac_service().check_permission(actor_id, "prompts.approve")

    def _require_owner_or(self, actor_id: str, prompt: PromptRecord, permission: str) -> None:
        if actor_id in (prompt.author_id, prompt.created_by):
            return
        if not get_rbac_service().check_permission(actor_id, permission):
            raise PermissionDeniedError(permission.split(".", 1)[1], "prompt")

    def get_prompt(self, actor_id: str | None, prompt_id: str) -> dict[str, Any]:
        """Get a prompt with its versions (newest first) and record a view."""
        prompt = self._load(prompt_id)
        if prompt.is_archived and actor_id not in (prompt.author_id, prompt.created_by):
            raise NotFoundError("Prompt", prompt_id)
        if not self._can_read(actor_id, prompt):
            raise PermissionDeniedError("read", "prompt")

        versions = self._versions(prompt_id)
        get_analytics_service().track_prompt_view(
            prompt_id, user_id=actor_id, department_id=prompt.department_id
        )
        return {"prompt": prompt, "versions": versions}

    def list_prompts(
        self,
        actor_id: str | None,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        """List visible, non-archived prompts.

        Args:
            filters: role, department, workflow, prompt_type, status,
                visibility, author_id, search

        Returns:
            Dict with data (PromptRecords) and pagination
        """
        page, limit = self.validator.validate_pagination(page, limit)
        sort_by, sort_order = self.validator.validate_sort(sort_by, sort_order)
        filters = filters or {}

        where = ["is_archived = 0", "(visibility = 'public' OR author_id = :actor)"]
        params: dict[str, Any] = {"actor": actor_id or ""}
        for column in ("role", "department", "workflow", "prompt_type", "status", "visibility", "author_id"):
            value = filters.get(column)
            if value:
                where.append(f"{column} = :{column}")
                params[column] = value
        if filters.get("search"):
            where.append(
                "(LOWER(title) LIKE :search OR LOWER(COALESCE(description, '')) LIKE :search"
                " OR LOWER(content) LIKE :search)"
            )
            params["search"] = f"%{str(filters['search']).lower()}%"

        clause = " AND ".join(where)
        with get_db() as conn:
            total = conn.execute(text(f"SELECT COUNT(*) FROM prompts WHERE {clause}"), params).fetchone()[0]
            result = conn.execute(
                text(f"""
                SELECT * FROM prompts WHERE {clause}
                ORDER BY {sort_by} {sort_order.upper()}, id
                LIMIT :limit OFFSET :offset
                """),
                {**params, "limit": limit, "offset": (page - 1) * limit},
            )
            data = [PromptRecord.from_row(row._mapping) for row in result.fetchall()]

        return {
            "data": data,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    # =========================================================================
    # Update / Delete
    # =========================================================================

    def update_prompt(self, actor_id: str, prompt_id: str, updates: dict[str, Any]) -> PromptRecord:
        """Apply a partial update; a content change writes a new version."""
        prompt = self._load(prompt_id)
        if prompt.is_archived:
            raise NotFoundError("Prompt", prompt_id)
        self._require_owner_or(actor_id, prompt, "prompts.update")

        updates = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        updates = self.validator.validate_update(updates)
        if not updates:
            return prompt

        before = _audit_view(prompt)
        content_changed = "content" in updates and updates["content"] != prompt.content
        for key, value in updates.items():
            setattr(prompt, key, value)
        prompt.updated_at = now_iso()

        row = prompt.to_dict()
        columns = list(updates) + ["updated_at"]
        assignments = ", ".join(f"{c} = :{c}" for c in columns)

        with get_db() as conn:
            conn.execute(
                text(f"UPDATE prompts SET {assignments} WHERE id = :id"),
                {c: row[c] for c in columns} | {"id": prompt_id},
            )
            if content_changed:
                next_version = self._next_version(conn, prompt_id)
                self._write_version(conn, prompt, next_version, "Updated prompt content", "minor", actor_id)
            get_audit_service().log_event(
                AuditEventType.PROMPT_UPDATE,
                AuditCategory.CONTENT,
                "update",
                actor_id=actor_id,
                resource_type="prompt",
                resource_id=prompt_id,
                old_values=before,
                new_values=_audit_view(prompt),
                conn=conn,
            )
            SearchService.invalidate(conn)
            conn.commit()

        log.info("prompt_updated", prompt_id=prompt_id, fields=sorted(updates), new_version=content_changed)
        return prompt

    def delete_prompt(self, actor_id: str, prompt_id: str) -> PromptRecord:
        """Soft-archive a prompt."""
        prompt = self._load(prompt_id)
        if prompt.is_archived:
            raise NotFoundError("Prompt", prompt_id)
        self._require_owner_or(actor_id, prompt, "prompts.delete")

        ts = now_iso()
        with get_db() as conn:
            conn.execute(
                text("""
                UPDATE prompts SET is_archived = 1, status = 'archived', archived_at = :ts, updated_at = :ts
                WHERE id = :id
                """),
                {"ts": ts, "id": prompt_id},
            )
            get_audit_service().log_event(
                AuditEventType.PROMPT_DELETE,
                AuditCategory.CONTENT,
                "archive",
                actor_id=actor_id,
                resource_type="prompt",
                resource_id=prompt_id,
                old_values={"status": prompt.status, "is_archived": False},
                new_values={"status": "archived", "is_archived": True},
                conn=conn,
            )
            SearchService.invalidate(conn)
            conn.commit()

        prompt.is_archived = True
        prompt.status = "archived"
        prompt.archived_at = ts
        prompt.updated_at = ts
        log.info("prompt_archived", prompt_id=prompt_id)
        return prompt

    def record_use(self, actor_id: str | None, prompt_id: str) -> PromptRecord:
        prompt = self._load(prompt_id)
        if prompt.is_archived:
            raise NotFoundError("Prompt", prompt_id)
        with get_db() as conn:
            conn.execute(
                text("UPDATE prompts SET usage_count = usage_count + 1 WHERE id = :id"),
                {"id": prompt_id},
            )
            get_analytics_service().track_event(
                "prompt", PROMPT_USE, user_id=actor_id, prompt_id=prompt_id,
                department_id=prompt.department_id, conn=conn,
            )
            SearchService.invalidate(conn)
            prompt = self._load(prompt_id, conn)
            conn.commit()
        return prompt

    def rate_prompt(self, actor_id: str | None, prompt_id: str, rating: int) -> PromptRecord:
        """Fold a 1-5 rating into the running average.

        The average is updated in a single statement so concurrent ratings
        all count.
        """
        if not 1 <= rating <= 5:
            raise ValidationError("rating", "Rating must be between 1 and 5")
        prompt = self._load(prompt_id)
        if prompt.is_archived:
            raise NotFoundError("Prompt", prompt_id)
        with get_db() as conn:
            conn.execute(
                text("""
                UPDATE prompts SET
                    rating_average = (rating_average * rating_count + :rating) / (rating_count + 1.0),
                    rating_count = rating_count + 1
                WHERE id = :id
                """),
                {"rating": rating, "id": prompt_id},
            )
            SearchService.invalidate(conn)
            prompt = self._load(prompt_id, conn)
            conn.commit()
        return prompt

    # =========================================================================
    # Versions
    # =========================================================================

    def get_versions(
        self,
        actor_id: str | None,
        prompt_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        page, limit = self.validator.validate_pagination(page, limit)
        prompt = self._load(prompt_id)
        if not self._can_read(actor_id, prompt):
            raise PermissionDeniedError("read", "prompt")

        with get_db() as conn:
            total = conn.execute(
                text("SELECT COUNT(*) FROM prompt_versions WHERE prompt_id = :id"), {"id": prompt_id}
            ).fetchone()[0]
        versions = self._versions(prompt_id, limit, (page - 1) * limit)
        return {
            "data": versions,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    def revert_prompt(
        self,
        actor_id: str,
        prompt_id: str,
        version_id: str,
        reason: str | None = None,
    ) -> PromptRecord:
        """Restore an earlier version's title and content as a new version."""
        prompt = self._load(prompt_id)
        if prompt.is_archived:
            raise NotFoundError("Prompt", prompt_id)
        self._require_owner_or(actor_id, prompt, "prompts.update")

        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM prompt_versions WHERE id = :vid AND prompt_id = :pid"),
                {"vid": version_id, "pid": prompt_id},
            ).fetchone()
            if row is None:
                raise NotFoundError("Prompt version", version_id)
            target = PromptVersionRecord.from_row(row._mapping)

            before = _audit_view(prompt)
            prompt.title = target.title
            prompt.content = target.prompt_text
            prompt.updated_at = now_iso()
            conn.execute(
                text("UPDATE prompts SET title = :title, content = :content, updated_at = :ts WHERE id = :id"),
                {"title": prompt.title, "content": prompt.content, "ts": prompt.updated_at, "id": prompt_id},
            )

            summary = f"Reverted to version {target.version_number}"
            if reason:
                summary += f": {reason}"
            self._write_version(conn, prompt, self._next_version(conn, prompt_id), summary, "rollback", actor_id)
            get_audit_service().log_event(
                AuditEventType.PROMPT_UPDATE,
                AuditCategory.CONTENT,
                "revert",
                actor_id=actor_id,
                resource_type="prompt",
                resource_id=prompt_id,
                old_values=before,
                new_values=_audit_view(prompt),
                metadata={"reverted_to": target.version_number, "reason": reason},
                conn=conn,
            )
            SearchService.invalidate(conn)
            conn.commit()

        log.info("prompt_reverted", prompt_id=prompt_id, version=target.version_number)
        return prompt

    def _versions(self, prompt_id: str, limit: int | None = None, offset: int = 0) -> list[PromptVersionRecord]:
        sql = "SELECT * FROM prompt_versions WHERE prompt_id = :id ORDER BY version_number DESC"
        params: dict[str, Any] = {"id": prompt_id}
        if limit is not None:
            sql += " LIMIT :limit OFFSET :offset"
            params.update(limit=limit, offset=offset)
        with get_db() as conn:
            result = conn.execute(text(sql), params)
            return [PromptVersionRecord.from_row(r._mapping) for r in result.fetchall()]

    @staticmethod
    def _next_version(conn: Connection, prompt_id: str) -> int:
        row = conn.execute(
            text("SELECT MAX(version_number) FROM prompt_versions WHERE prompt_id = :id"),
            {"id": prompt_id},
        ).fetchone()
        return (row[0] or 0) + 1

    @staticmethod
    def _write_version(
        conn: Connection,
        prompt: PromptRecord,
        version_number: int,
        change_summary: str,
        change_type: str,
        author_id: str | None,
    ) -> PromptVersionRecord:
        version = PromptVersionRecord(
            prompt_id=prompt.id,
            version_number=version_number,
            title=prompt.title,
            prompt_text=prompt.content,
            change_type=change_type,
            change_summary=change_summary,
            author_id=author_id,
        )
        conn.execute(
            text("""
            INSERT INTO prompt_versions
            (id, prompt_id, version_number, title, prompt_text, change_summary, change_type,
             author_id, created_at)
            VALUES (:id, :prompt_id, :version_number, :title, :prompt_text, :change_summary,
                    :change_type, :author_id, :created_at)
            """),
            version.to_dict(),
        )
        return version


# Global service instance
_prompt_service: PromptService | None = None


def get_prompt_service() -> PromptService:
    """Get or create the global prompt service."""
    global _prompt_service
    if _prompt_service is None:
        _prompt_service = PromptService()
    return _prompt_service


def reset_prompt_service() -> None:
    global _prompt_service
    _prompt_service = None
