"""Storage domain - database, record types, query cache and connection pool."""

# Database
from promptdesk.storage.database import (
    get_db,
    get_db_path,
    set_db_path,
    get_engine,
    reset_engine,
    init_db,
    reset_db,
    get_table_stats,
    seed_defaults,
    init_db_with_seed,
)

# Caching and pooling
from promptdesk.storage.cache import QueryCache, get_query_cache, reset_query_cache
from promptdesk.storage.pool import (
    ConnectionPool,
    PoolTimeoutError,
    get_connection_pool,
    reset_connection_pool,
)

# Repositories
from promptdesk.storage.repositories import NotificationRepository

__all__ = [
    # Database
    "get_db",
    "get_db_path",
    "set_db_path",
    "get_engine",
    "reset_engine",
    "init_db",
    "reset_db",
    "get_table_stats",
    "seed_defaults",
    "init_db_with_seed",
    # Caching and pooling
    "QueryCache",
    "get_query_cache",
    "reset_query_cache",
    "ConnectionPool",
    "PoolTimeoutError",
    "get_connection_pool",
    "reset_connection_pool",
    # Repositories
    "NotificationRepository",
]
