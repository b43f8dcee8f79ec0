"""
Bounded connection pool.

Hands out SQLAlchemy connections up to ``max_connections``. Callers beyond
the limit wait on a condition variable until a connection is released or
``connection_timeout`` elapses.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Generator, TypeVar
import threading
import time

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from promptdesk.core.errors import PromptDeskError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db, get_engine
from promptdesk.storage.models import generate_uuid, now_iso

log = get_logger(__name__)

T = TypeVar("T")


class PoolTimeoutError(PromptDeskError):
    """Raised when no connection becomes available within the timeout."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"


class ConnectionPool:
    """Thread-safe pool of database connections."""

    def __init__(
        self,
        engine: Engine | None = None,
        min_connections: int = 2,
        max_connections: int = 10,
        connection_timeout: float = 5.0,
    ):
        """Initialize the pool and open ``min_connections`` eagerly.

        Args:
            engine: Engine to open connections from (defaults to the app engine)
            min_connections: Connections created up front
            max_connections: Hard upper bound on open connections
            connection_timeout: Seconds acquire() waits before giving up
        """
        if min_connections < 0 or max_connections < 1 or min_connections > max_connections:
            raise ValueError("Invalid pool size configuration")

        self._engine = engine or get_engine()
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.connection_timeout = connection_timeout

        self._cond = threading.Condition()
        self._connections: list[Connection] = []
        self._idle: list[Connection] = []
        self._active: set[int] = set()
        self._waiting = 0
        self._opening = 0
        self._closed = False

        for _ in range(min_connections):
            conn = self._engine.connect()
            self._connections.append(conn)
            self._idle.append(conn)

    def acquire(self, timeout: float | None = None) -> Connection:
        """Take a connection, creating or waiting for one as needed.

        New connections are opened outside the lock against a reserved slot,
        so a slow connect never blocks releases or other acquires.

        Raises:
            PoolTimeoutError: If none is available before the timeout
        """
        wait_for = self.connection_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait_for

        with self._cond:
            while True:
                if self._closed:
                    raise RuntimeError("Connection pool is closed")

                if self._idle:
                    conn = self._idle.pop()
                    self._active.add(id(conn))
                    return conn

                if len(self._connections) + self._opening < self.max_connections:
                    self._opening += 1
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning("pool_acquire_timeout", timeout=wait_for, **self._stats_unlocked())
                    raise PoolTimeoutError("Connection timeout", {"timeout": wait_for})

                self._waiting += 1
                try:
                    self._cond.wait(remaining)
                finally:
                    self._waiting -= 1

        try:
            conn = self._engine.connect()
        except Exception:
            with self._cond:
                self._opening -= 1
                self._cond.notify_all()
            raise

        with self._cond:
            self._opening -= 1
            if self._closed:
                conn.close()
                self._cond.notify_all()
                raise RuntimeError("Connection pool is closed")
            self._connections.append(conn)
            self._active.add(id(conn))
            return conn

    def release(self, conn: Connection) -> None:
        """Return a connection to the pool and wake any waiters."""
        with self._cond:
            if id(conn) not in self._active:
                raise ValueError("Connection does not belong to this pool or is not active")
            self._active.discard(id(conn))
            if conn.in_transaction():
                conn.rollback()
            self._idle.append(conn)
            self._cond.notify_all()

    @contextmanager
    def connection(self, timeout: float | None = None) -> Generator[Connection, None, None]:
        """Context manager that acquires and always releases a connection."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def execute(self, fn: Callable[[Connection], T]) -> T:
        """Run fn with a pooled connection."""
        with self.connection() as conn:
            return fn(conn)

    def get_stats(self) -> dict[str, int]:
        """Get pool statistics."""
        with self._cond:
            return self._stats_unlocked()

    def _stats_unlocked(self) -> dict[str, int]:
        total = len(self._connections)
        active = len(self._active)
        return {
            "total": total,
            "active": active,
            "idle": total - active,
            "waiting": self._waiting,
        }

    def record_stats(self) -> dict[str, Any]:
        """Persist a snapshot of the pool statistics."""
        stats = self.get_stats()
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO connection_pool_stats
                (id, total_connections, active_connections, idle_connections,
                 waiting_connections, recorded_at)
                VALUES (:id, :total, :active, :idle, :waiting, :recorded_at)
                """),
                {"id": generate_uuid(), **stats, "recorded_at": now_iso()},
            )
            conn.commit()
        return stats

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until no connection is active.

        Returns:
            True if drained, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._active:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def close(self) -> None:
        """Close every connection and refuse further acquires."""
        with self._cond:
            self._closed = True
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._idle.clear()
            self._active.clear()
            self._cond.notify_all()


# Global pool instance
_pool: ConnectionPool | None = None


def get_connection_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        from promptdesk.core.config import get_settings
        settings = get_settings()
        _pool = ConnectionPool(
            min_connections=settings.pool_min_connections,
            max_connections=settings.pool_max_connections,
            connection_timeout=settings.pool_connection_timeout,
        )
    return _pool


def reset_connection_pool() -> None:
    """Close and discard the global connection pool."""
    global _pool
    if _pool is not None:
        _pool.close()
    _pool = None
