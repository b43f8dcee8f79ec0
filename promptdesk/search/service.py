"""
Prompt search with faceted filters and a result cache.

Results are cached in ``search_cache`` keyed by the base64 of the filters
and options (the actor included, since visibility depends on it). Facet
counts live in ``filter_facets`` and are recomputed when stale.
"""

from __future__ import annotations

import base64
import json
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.core.errors import ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.cache import QueryCache, get_query_cache
from promptdesk.storage.database import get_db
from promptdesk.storage.models import PromptRecord, dumps, generate_uuid, loads, parse_iso, to_iso, utcnow
from promptdesk.storage.pool import ConnectionPool, get_connection_pool

log = get_logger(__name__)

# facet_type -> prompts column
FACET_COLUMNS = {
    "role": "role",
    "department": "department",
    "workflow": "workflow",
    "type": "prompt_type",
    "status": "status",
}

# filter key -> prompts column, for IN-list filters
LIST_FILTERS = {
    "roles": "role",
    "departments": "department",
    "workflows": "workflow",
    "types": "prompt_type",
    "statuses": "status",
}

SORT_COLUMNS = {
    "relevance": "created_at",
    "date": "created_at",
    "popularity": "usage_count",
    "rating": "rating_average",
}

POPULAR_WINDOW = 1000


def build_cache_key(filters: dict[str, Any], options: dict[str, Any]) -> str:
    """``search:<base64(json(filters) + json(options))>``"""
    raw = json.dumps(filters, sort_keys=True, default=str) + json.dumps(options, sort_keys=True, default=str)
    return "search:" + base64.b64encode(raw.encode("utf-8")).decode("ascii")


class SearchService:
    """Faceted prompt search."""

    def __init__(
        self,
        cache_ttl_seconds: int = 300,
        facet_refresh_minutes: int = 30,
        pool: ConnectionPool | None = None,
        query_cache: QueryCache | None = None,
    ):
        self.cache_ttl_seconds = cache_ttl_seconds
        self.facet_refresh_minutes = facet_refresh_minutes
        self._pool = pool
        self._query_cache = query_cache

    @property
    def pool(self) -> ConnectionPool:
        return self._pool or get_connection_pool()

    @property
    def query_cache(self) -> QueryCache:
        return self._query_cache or get_query_cache()

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        filters: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Search non-archived prompts visible to the actor.

        Args:
            filters: roles, departments, workflows, types, statuses (lists),
                query, author_id, visibility
            options: sort_by (relevance, date, popularity, rating),
                sort_order (asc, desc), page, limit
            actor_id: Acting user; sees public prompts and their own

        Returns:
            Dict with results, total, facets and cached flag
        """
        filters = {k: v for k, v in (filters or {}).items() if v not in (None, [], "")}
        options = self._normalize_options(options or {})
        now = now or utcnow()

        cache_key = build_cache_key({**filters, "actor_id": actor_id}, options)
        cached = self._get_cached(cache_key, now)
        if cached is not None:
            return {**cached, "cached": True}

        results, total = self._run_query(filters, options, actor_id)
        payload = {
            "results": results,
            "total": total,
            "facets": self.compute_facets(now),
        }
        self._store_cached(cache_key, {**filters, **options}, payload, now)
        self._log_search(actor_id, filters, total)

        log.debug("search_executed", total=total, query=filters.get("query"))
        return {**payload, "cached": False}

    @staticmethod
    def _normalize_options(options: dict[str, Any]) -> dict[str, Any]:
        sort_by = options.get("sort_by") or "relevance"
        sort_order = (options.get("sort_order") or "desc").lower()
        page = int(options.get("page") or 1)
        limit = int(options.get("limit") or 20)
        if sort_by not in SORT_COLUMNS:
            raise ValidationError("sort_by", f"Must be one of: {', '.join(SORT_COLUMNS)}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order", "Must be one of: asc, desc")
        if page < 1:
            raise ValidationError("page", "Page must be at least 1")
        if not 1 <= limit <= 100:
            raise ValidationError("limit", "Limit must be between 1 and 100")
        return {"sort_by": sort_by, "sort_order": sort_order, "page": page, "limit": limit}

    def _run_query(
        self,
        filters: dict[str, Any],
        options: dict[str, Any],
        actor_id: str | None,
    ) -> tuple[list[dict[str, Any]], int]:
        where = ["is_archived = 0", "(visibility = 'public' OR author_id = :actor)"]
        params: dict[str, Any] = {"actor": actor_id or ""}

        for key, column in LIST_FILTERS.items():
            values = filters.get(key)
            if values:
                names = []
                for i, value in enumerate(values):
                    params[f"{key}_{i}"] = value
                    names.append(f":{key}_{i}")
                where.append(f"{column} IN ({', '.join(names)})")

        for key in ("author_id", "visibility"):
            if filters.get(key):
                where.append(f"{key} = :f_{key}")
                params[f"f_{key}"] = filters[key]

        query = filters.get("query")
        if query:
            params["q"] = f"%{str(query).lower()}%"
            where.append(
                "(LOWER(title) LIKE :q OR LOWER(COALESCE(description, '')) LIKE :q"
                " OR LOWER(content) LIKE :q)"
            )

        column = SORT_COLUMNS[options["sort_by"]]
        direction = "ASC" if options["sort_order"] == "asc" else "DESC"
        if options["sort_by"] == "relevance":
            order = "created_at DESC"
            if query:
                order = "CASE WHEN LOWER(title) LIKE :q THEN 0 ELSE 1 END, " + order
        else:
            order = f"{column} {direction}"

        clause = " AND ".join(where)
        limit = options["limit"]
        offset = (options["page"] - 1) * limit

        with self.pool.connection() as conn:
            total = conn.execute(text(f"SELECT COUNT(*) FROM prompts WHERE {clause}"), params).fetchone()[0]
            rows = conn.execute(
                text(f"SELECT * FROM prompts WHERE {clause} ORDER BY {order}, id LIMIT :limit OFFSET :offset"),
                {**params, "limit": limit, "offset": offset},
            ).fetchall()

        return [asdict(PromptRecord.from_row(r._mapping)) for r in rows], total

    # =========================================================================
    # Result Cache
    # =========================================================================

    def _get_cached(self, cache_key: str, now: datetime) -> dict[str, Any] | None:
        ts = to_iso(now)
        with get_db() as conn:
            conn.execute(text("DELETE FROM search_cache WHERE expires_at <= :now"), {"now": ts})
            row = conn.execute(
                text("SELECT result_data FROM search_cache WHERE cache_key = :key"),
                {"key": cache_key},
            ).fetchone()
            if row is not None:
                conn.execute(
                    text("""
                    UPDATE search_cache SET hit_count = hit_count + 1, last_accessed_at = :now
                    WHERE cache_key = :key
                    """),
                    {"now": ts, "key": cache_key},
                )
            conn.commit()
        return loads(row.result_data) if row is not None else None

    def _store_cached(self, cache_key: str, params: dict[str, Any], payload: dict[str, Any], now: datetime) -> None:
        ts = to_iso(now)
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO search_cache
                (id, cache_key, search_params, result_data, result_count, hit_count, expires_at,
                 last_accessed_at, created_at)
                VALUES (:id, :key, :params, :data, :count, 0, :expires, :now, :now)
                ON CONFLICT (cache_key) DO UPDATE SET
                    result_data = excluded.result_data,
                    result_count = excluded.result_count,
                    expires_at = excluded.expires_at,
                    last_accessed_at = excluded.last_accessed_at
                """),
                {
                    "id": generate_uuid(),
                    "key": cache_key,
                    "params": dumps(params),
                    "data": json.dumps(payload, default=str),
                    "count": payload["total"],
                    "expires": to_iso(now + timedelta(seconds=self.cache_ttl_seconds)),
                    "now": ts,
                },
            )
            conn.commit()

    def clear_cache(self) -> int:
        """Drop all cached search results.

        Returns:
            Number of entries removed
        """
        with get_db() as conn:
            result = conn.execute(text("DELETE FROM search_cache"))
            conn.commit()
        log.info("search_cache_cleared", removed=result.rowcount)
        return result.rowcount

    @staticmethod
    def invalidate(conn: Connection) -> None:
        """Drop cached results and facet counts inside the caller's transaction."""
        conn.execute(text("DELETE FROM search_cache"))
        conn.execute(text("DELETE FROM filter_facets"))

    def get_cache_stats(self) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT COUNT(*) AS entries, COALESCE(SUM(hit_count), 0) AS hits FROM search_cache")
            ).fetchone()
        return {"entries": row.entries, "total_hits": row.hits}

    # =========================================================================
    # Facets
    # =========================================================================

    def compute_facets(self, now: datetime | None = None) -> dict[str, list[dict[str, Any]]]:
        """Facet counts, recomputed when missing or stale."""
        now = now or utcnow()
        with get_db() as conn:
            rows = conn.execute(
                text("SELECT * FROM filter_facets ORDER BY facet_type, prompt_count DESC, facet_value")
            ).fetchall()

        stale_before = now - timedelta(minutes=self.facet_refresh_minutes)
        if not rows or min(parse_iso(r.last_computed_at) for r in rows) < stale_before:
            return self.refresh_facets(now)

        facets: dict[str, list[dict[str, Any]]] = {name: [] for name in FACET_COLUMNS}
        for r in rows:
            if r.facet_type in facets:
                facets[r.facet_type].append({"value": r.facet_value, "count": r.prompt_count})
        return facets

    def refresh_facets(self, now: datetime | None = None) -> dict[str, list[dict[str, Any]]]:
        """Recount facet values over non-archived prompts."""
        ts = to_iso(now or utcnow())
        facets: dict[str, list[dict[str, Any]]] = {}
        with get_db() as conn:
            conn.execute(text("DELETE FROM filter_facets"))
            for facet_type, column in FACET_COLUMNS.items():
                counts = conn.execute(
                    text(f"""
                    SELECT {column} AS value, COUNT(*) AS count FROM prompts
                    WHERE is_archived = 0 AND {column} IS NOT NULL AND {column} != ''
                    GROUP BY {column}
                    ORDER BY count DESC, value
                    """)
                ).fetchall()
                facets[facet_type] = [{"value": c.value, "count": c.count} for c in counts]
                for c in counts:
                    conn.execute(
                        text("""
                        INSERT INTO filter_facets (facet_type, facet_value, prompt_count, last_computed_at)
                        VALUES (:type, :value, :count, :ts)
                        """),
                        {"type": facet_type, "value": c.value, "count": c.count, "ts": ts},
                    )
            # Marker row so an empty library is not recomputed on every call
            if not any(facets.values()):
                conn.execute(
                    text("""
                    INSERT INTO filter_facets (facet_type, facet_value, prompt_count, last_computed_at)
                    VALUES ('_computed', '', 0, :ts)
                    """),
                    {"ts": ts},
                )
            conn.commit()
        return facets

    # =========================================================================
    # Search Analytics
    # =========================================================================

    def _log_search(self, actor_id: str | None, filters: dict[str, Any], results_count: int) -> None:
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO search_analytics (id, user_id, search_query, filters_applied, results_count, created_at)
                VALUES (:id, :user_id, :query, :filters, :count, :ts)
                """),
                {
                    "id": generate_uuid(),
                    "user_id": actor_id,
                    "query": filters.get("query"),
                    "filters": dumps({k: v for k, v in filters.items() if k != "query"}),
                    "count": results_count,
                    "ts": to_iso(utcnow()),
                },
            )
            conn.commit()

    def get_popular_searches(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most frequent queries among the latest searches."""
        key = QueryCache.generate_key("popular_searches", {"limit": limit})
        return self.query_cache.get_or_set(key, lambda: self._popular_searches(limit), ttl_seconds=60)

    def _popular_searches(self, limit: int) -> list[dict[str, Any]]:
        with get_db() as conn:
            rows = conn.execute(
                text("""
                SELECT search_query FROM search_analytics
                ORDER BY created_at DESC LIMIT :window
                """),
                {"window": POPULAR_WINDOW},
            ).fetchall()
        counts = Counter(r.search_query for r in rows if r.search_query)
        return [{"query": q, "count": c} for q, c in counts.most_common(limit)]


# Global service instance
_search_service: SearchService | None = None


def get_search_service() -> SearchService:
    """Get or create the global search service."""
    global _search_service
    if _search_service is None:
        from promptdesk.core.config import get_settings
        settings = get_settings()
        _search_service = SearchService(
            cache_ttl_seconds=settings.search_cache_ttl_seconds,
            facet_refresh_minutes=settings.facet_refresh_minutes,
        )
    return _search_service


def reset_search_service() -> None:
    global _search_service
    _search_service = None
