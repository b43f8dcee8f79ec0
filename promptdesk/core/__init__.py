"""Core package - configuration, logging, errors."""

from .config import Settings, get_settings
from .errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PromptDeskError,
    ValidationError,
    register_exception_handlers,
)
from .logging import configure_logging, get_logger

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Logging
    "configure_logging",
    "get_logger",
    # Errors
    "PromptDeskError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "AuthenticationError",
    "ConflictError",
    "register_exception_handlers",
]
