"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API
    app_name: str = "PromptDesk"
    debug: bool = False
    cors_origins: str = "*"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # Search and query caching
    search_cache_ttl_seconds: int = 300
    facet_refresh_minutes: int = 30
    query_cache_ttl_seconds: int = 300

    # Connection pool
    pool_min_connections: int = 2
    pool_max_connections: int = 10
    pool_connection_timeout: float = 5.0

    # Workflow defaults
    default_required_approvals: int = 2
    privacy_request_deadline_days: int = 30

    # Startup
    seed_defaults: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
