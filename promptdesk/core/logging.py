"""
Structured logging configuration.

Configuration is read from Settings (LOG_LEVEL, LOG_FORMAT) unless passed
explicitly:

    from promptdesk.core.logging import configure_logging, get_logger
    configure_logging()
    log = get_logger(__name__)
    log.info("queue_status_changed", queue_id=queue_id, status="approved")
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides LOG_LEVEL)
        format: Output format (overrides LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    from promptdesk.core.config import get_settings

    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = (format or settings.log_format).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger("promptdesk").setLevel(getattr(logging, log_level))

    _configured = True


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, optionally bound to initial context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured
