"""
Two-level query result cache.

An in-memory map sits in front of the ``query_cache`` table. Entries carry an
absolute expiry; memory entries are repopulated from the table on a miss.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable
import json
import threading

from sqlalchemy import text

from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db
from promptdesk.storage.models import generate_uuid, parse_iso, to_iso, utcnow

log = get_logger(__name__)


class QueryCache:
    """Thread-safe TTL cache backed by the query_cache table."""

    def __init__(
        self,
        default_ttl_seconds: int = 300,
        max_memory_entries: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the cache.

        Args:
            default_ttl_seconds: TTL used when set() is called without one
            max_memory_entries: Memory entries kept before FIFO eviction
            clock: Returns the current aware datetime (injectable for tests)
        """
        self._memory: dict[str, tuple[Any, datetime]] = {}
        self._lock = threading.RLock()
        self._default_ttl = default_ttl_seconds
        self._max_memory_entries = max_memory_entries
        self._clock = clock

    def get(self, key: str) -> Any | None:
        """Get a cached value.

        Args:
            key: Cache key

        Returns:
            The cached value, or None when missing or expired
        """
        now = self._clock()
        with self._lock:
            cached = self._memory.get(key)
            if cached is not None:
                value, expires_at = cached
                if now < expires_at:
                    return value
                del self._memory[key]

        with get_db() as conn:
            row = conn.execute(
                text("SELECT query_result, expires_at FROM query_cache WHERE cache_key = :key"),
                {"key": key},
            ).fetchone()
            if row is None:
                return None

            expires_at = parse_iso(row.expires_at)
            if expires_at <= now:
                conn.execute(text("DELETE FROM query_cache WHERE cache_key = :key"), {"key": key})
                conn.commit()
                return None

            conn.execute(
                text("""
                UPDATE query_cache
                SET hit_count = hit_count + 1, last_accessed_at = :now
                WHERE cache_key = :key
                """),
                {"key": key, "now": to_iso(now)},
            )
            conn.commit()

        value = json.loads(row.query_result)
        self._remember(key, value, expires_at)
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a JSON-serializable value.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Time to live (defaults to the cache default)
        """
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)

        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO query_cache
                (id, cache_key, query_result, hit_count, expires_at, last_accessed_at, created_at)
                VALUES (:id, :key, :value, 0, :expires_at, :now, :now)
                ON CONFLICT (cache_key) DO UPDATE SET
                    query_result = excluded.query_result,
                    expires_at = excluded.expires_at,
                    last_accessed_at = excluded.last_accessed_at
                """),
                {
                    "id": generate_uuid(),
                    "key": key,
                    "value": json.dumps(value, default=str),
                    "expires_at": to_iso(expires_at),
                    "now": to_iso(now),
                },
            )
            conn.commit()

        self._remember(key, value, expires_at)

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl_seconds: int | None = None) -> Any:
        """Get from cache or compute with loader and cache the result."""
        value = self.get(key)
        if value is not None:
            return value
        value = loader()
        if value is not None:
            self.set(key, value, ttl_seconds)
        return value

    def delete(self, key: str) -> None:
        """Remove a key from both levels."""
        with get_db() as conn:
            conn.execute(text("DELETE FROM query_cache WHERE cache_key = :key"), {"key": key})
            conn.commit()
        with self._lock:
            self._memory.pop(key, None)

    def clear(self, pattern: str | None = None) -> None:
        """Clear entries, optionally only keys matching a SQL LIKE pattern.

        Memory entries are matched by substring with ``%`` removed.
        """
        with get_db() as conn:
            if pattern:
                conn.execute(
                    text("DELETE FROM query_cache WHERE cache_key LIKE :pattern"),
                    {"pattern": pattern},
                )
            else:
                conn.execute(text("DELETE FROM query_cache"))
            conn.commit()

        with self._lock:
            if pattern:
                needle = pattern.replace("%", "")
                for key in [k for k in self._memory if needle in k]:
                    del self._memory[key]
            else:
                self._memory.clear()

    def cleanup_expired(self) -> int:
        """Purge expired entries from memory and the table.

        Returns:
            Number of table rows removed
        """
        now = self._clock()
        with self._lock:
            for key in [k for k, (_, exp) in self._memory.items() if exp <= now]:
                del self._memory[key]

        with get_db() as conn:
            result = conn.execute(
                text("DELETE FROM query_cache WHERE expires_at <= :now"),
                {"now": to_iso(now)},
            )
            conn.commit()
            removed = result.rowcount or 0

        if removed:
            log.debug("query_cache_cleanup", removed=removed)
        return removed

    @staticmethod
    def generate_key(query_name: str, params: Any) -> str:
        """Build a deterministic key from a query name and its parameters."""
        return f"{query_name}:{json.dumps(params, sort_keys=True, default=str)}"

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with get_db() as conn:
            row = conn.execute(
                text("SELECT COUNT(*) AS entries, COALESCE(SUM(hit_count), 0) AS hits FROM query_cache")
            ).fetchone()

        total_entries = row.entries or 0
        total_hits = row.hits or 0
        with self._lock:
            memory_entries = len(self._memory)

        return {
            "memory_entries": memory_entries,
            "db_entries": total_entries,
            "total_hits": total_hits,
            "avg_hits_per_entry": round(total_hits / total_entries, 2) if total_entries else 0.0,
        }

    def _remember(self, key: str, value: Any, expires_at: datetime) -> None:
        with self._lock:
            if key not in self._memory and len(self._memory) >= self._max_memory_entries:
                # FIFO: drop the oldest half
                for old_key in list(self._memory)[: len(self._memory) // 2 or 1]:
                    del self._memory[old_key]
            self._memory[key] = (value, expires_at)


# Global cache instance
_query_cache: QueryCache | None = None


def get_query_cache() -> QueryCache:
    """Get or create the global query cache."""
    global _query_cache
    if _query_cache is None:
        from promptdesk.core.config import get_settings
        _query_cache = QueryCache(default_ttl_seconds=get_settings().query_cache_ttl_seconds)
    return _query_cache


def reset_query_cache() -> None:
    """Reset the global query cache."""
    global _query_cache
    _query_cache = None
