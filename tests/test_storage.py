"""
Tests for the storage layer.

Tests schema creation, seeding, the two-level query cache and the
connection pool.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from promptdesk.core.errors import PromptDeskError
from promptdesk.storage.cache import QueryCache
from promptdesk.storage.database import get_engine, get_table_stats, init_db, reset_db, seed_defaults
from promptdesk.storage.models import dumps, loads, parse_iso, to_iso
from promptdesk.storage.pool import ConnectionPool, PoolTimeoutError


class GatedEngine:
    """Engine stand-in whose connect() can fail or block until released."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.gate.set()

    def connect(self):
        self.entered.set()
        self.gate.wait(5)
        if self.failures:
            self.failures -= 1
            raise ConnectionError("database unavailable")
        return get_engine().connect()


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


class TestDatabase:
    """Test database initialization and utilities."""

    def test_init_db_creates_tables(self):
        """Test that init_db creates the domain tables."""
        stats = get_table_stats()

        for table in ("prompts", "prompt_versions", "approval_queue", "audit_events",
                      "roles", "query_cache", "connection_pool_stats", "report_templates"):
            assert table in stats

    def test_init_db_is_idempotent(self):
        """Test that init_db can be called multiple times safely."""
        init_db()
        init_db()
        assert "prompts" in get_table_stats()

    def test_seed_defaults_is_idempotent(self):
        """Seeding twice does not duplicate roles or permissions."""
        before = get_table_stats()
        seed_defaults()
        after = get_table_stats()

        assert after["roles"] == before["roles"] == 5
        assert after["permissions"] == before["permissions"] == 18
        assert after["escalation_rules"] == before["escalation_rules"] == 1
        assert after["tag_registry"] == before["tag_registry"] == 6
        assert after["sla_configurations"] == 4

    def test_reset_db_empties_tables(self):
        """Test that reset_db drops data and recreates the schema."""
        reset_db()

        stats = get_table_stats()
        assert stats["roles"] == 0
        assert "prompts" in stats


class TestModels:
    """Test timestamp and JSON helpers."""

    def test_to_iso_sorts_lexically(self):
        """Fixed-width timestamps compare like the datetimes they encode."""
        early = datetime(2025, 1, 1, 9, 5, tzinfo=timezone.utc)
        late = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert to_iso(early) < to_iso(late)
        assert parse_iso(to_iso(late)) == late

    def test_loads_tolerates_empty_values(self):
        """Missing JSON columns fall back to the default."""
        assert loads(None, []) == []
        assert loads(dumps({"a": 1})) == {"a": 1}


class TestQueryCache:
    """Test the memory + table cache."""

    def test_set_and_get(self, clock):
        """Test values survive a round trip through the cache."""
        cache = QueryCache(clock=clock)
        cache.set("prompts:1", {"title": "Summarize"})

        assert cache.get("prompts:1") == {"title": "Summarize"}

    def test_missing_key_returns_none(self, clock):
        cache = QueryCache(clock=clock)
        assert cache.get("nope") is None

    def test_entries_expire(self, clock):
        """Test that expired entries are not returned."""
        cache = QueryCache(default_ttl_seconds=60, clock=clock)
        cache.set("k", [1, 2, 3])

        clock.advance(61)
        assert cache.get("k") is None

    def test_table_level_serves_other_instances(self, clock):
        """A fresh cache instance reads values from the table and counts hits."""
        QueryCache(clock=clock).set("shared", {"n": 1})
        other = QueryCache(clock=clock)

        assert other.get("shared") == {"n": 1}
        assert other.get_stats()["total_hits"] == 1

    def test_get_or_set_calls_loader_once(self, clock):
        """Test the loader only runs on a miss."""
        cache = QueryCache(clock=clock)
        calls = []

        def loader():
            calls.append(1)
            return {"value": 42}

        assert cache.get_or_set("computed", loader) == {"value": 42}
        assert cache.get_or_set("computed", loader) == {"value": 42}
        assert len(calls) == 1

    def test_clear_with_pattern(self, clock):
        """Only keys matching the LIKE pattern are removed."""
        cache = QueryCache(clock=clock)
        cache.set("search:a", 1)
        cache.set("search:b", 2)
        cache.set("facets:all", 3)

        cache.clear("search:%")

        assert cache.get("search:a") is None
        assert cache.get("search:b") is None
        assert cache.get("facets:all") == 3

    def test_cleanup_expired(self, clock):
        """Test that cleanup removes expired table rows."""
        cache = QueryCache(clock=clock)
        cache.set("short", 1, ttl_seconds=10)
        cache.set("long", 2, ttl_seconds=1000)

        clock.advance(20)
        assert cache.cleanup_expired() == 1
        assert cache.get_stats()["db_entries"] == 1

    def test_memory_eviction_keeps_table_copy(self, clock):
        """Evicted memory entries are still served from the table."""
        cache = QueryCache(max_memory_entries=2, clock=clock)
        for i in range(4):
            cache.set(f"k{i}", i)

        assert cache.get_stats()["memory_entries"] <= 2
        assert cache.get("k0") == 0

    def test_generate_key_is_order_independent(self):
        assert QueryCache.generate_key("q", {"a": 1, "b": 2}) == QueryCache.generate_key("q", {"b": 2, "a": 1})


class TestConnectionPool:
    """Test pool sizing, waiting and statistics."""

    def test_min_connections_opened_eagerly(self):
        """Test the pool opens min_connections up front."""
        pool = ConnectionPool(min_connections=2, max_connections=4)
        try:
            assert pool.get_stats() == {"total": 2, "active": 0, "idle": 2, "waiting": 0}
        finally:
            pool.close()

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            ConnectionPool(min_connections=5, max_connections=2)

    def test_acquire_grows_to_max_then_times_out(self):
        """Test that acquire creates up to max and then times out."""
        pool = ConnectionPool(min_connections=0, max_connections=2, connection_timeout=0.05)
        try:
            first = pool.acquire()
            second = pool.acquire()
            assert pool.get_stats()["active"] == 2

            with pytest.raises(PoolTimeoutError):
                pool.acquire()

            pool.release(first)
            pool.release(second)
            assert pool.get_stats()["idle"] == 2
        finally:
            pool.close()

    def test_waiter_is_woken_by_release(self):
        """A blocked acquire returns as soon as a connection is released."""
        pool = ConnectionPool(min_connections=1, max_connections=1, connection_timeout=5)
        held = pool.acquire()
        acquired = []

        def worker():
            conn = pool.acquire()
            acquired.append(conn)
            pool.release(conn)

        thread = threading.Thread(target=worker)
        thread.start()
        pool.release(held)
        thread.join(timeout=5)

        assert len(acquired) == 1
        pool.close()

    def test_release_unknown_connection(self):
        pool = ConnectionPool(min_connections=1, max_connections=1)
        conn = pool.acquire()
        pool.release(conn)
        with pytest.raises(ValueError):
            pool.release(conn)
        pool.close()

    def test_execute_runs_query(self):
        """Test execute hands the callback a working connection."""
        pool = ConnectionPool(min_connections=1, max_connections=2)
        try:
            count = pool.execute(lambda conn: conn.execute(text("SELECT COUNT(*) FROM roles")).scalar())
            assert count == 5
            assert pool.get_stats()["active"] == 0
        finally:
            pool.close()

    def test_record_stats_persists_snapshot(self):
        pool = ConnectionPool(min_connections=1, max_connections=2)
        try:
            pool.record_stats()
            assert get_table_stats()["connection_pool_stats"] == 1
        finally:
            pool.close()

    def test_acquire_after_close_fails(self):
        pool = ConnectionPool(min_connections=0, max_connections=1)
        pool.close()
        with pytest.raises(RuntimeError):
            pool.acquire()

    def test_timeout_is_service_unavailable(self):
        """A pool timeout renders as a 503 domain error."""
        pool = ConnectionPool(min_connections=0, max_connections=1, connection_timeout=0.01)
        held = pool.acquire()
        try:
            with pytest.raises(PoolTimeoutError) as exc_info:
                pool.acquire()
            assert isinstance(exc_info.value, PromptDeskError)
            assert exc_info.value.to_dict()["status_code"] == 503
            assert exc_info.value.to_dict()["error"] == "SERVICE_UNAVAILABLE"
        finally:
            pool.release(held)
            pool.close()

    def test_failed_connect_frees_reserved_slot(self):
        pool = ConnectionPool(engine=GatedEngine(failures=1), min_connections=0, max_connections=1,
                              connection_timeout=0.05)
        try:
            with pytest.raises(ConnectionError):
                pool.acquire()
            assert pool.get_stats()["total"] == 0

            conn = pool.acquire()
            assert pool.get_stats() == {"total": 1, "active": 1, "idle": 0, "waiting": 0}
            pool.release(conn)
        finally:
            pool.close()

    def test_slow_connect_does_not_block_the_pool(self):
        """Releases and stats proceed while another thread is still connecting."""
        engine = GatedEngine()
        pool = ConnectionPool(engine=engine, min_connections=1, max_connections=2)
        held = pool.acquire()
        engine.entered.clear()
        engine.gate.clear()
        opened = []
        opener = threading.Thread(target=lambda: opened.append(pool.acquire()))
        opener.start()
        assert engine.entered.wait(5)

        done = threading.Event()

        def release_held():
            pool.release(held)
            pool.get_stats()
            done.set()

        releaser = threading.Thread(target=release_held)
        releaser.start()
        try:
            assert done.wait(2)
        finally:
            engine.gate.set()
            opener.join(timeout=5)
            releaser.join(timeout=5)

        assert len(opened) == 1
        assert pool.get_stats() == {"total": 2, "active": 1, "idle": 1, "waiting": 0}
        pool.release(opened[0])
        pool.close()
