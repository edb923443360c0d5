"""Structured logging configuration using structlog."""

import logging
from typing import Any, Dict

import structlog
from rich.logging import RichHandler

from skygig.config import settings


def configure_logging() -> None:
    """Configure structured logging with rich output."""

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level.upper()),
        handlers=[RichHandler(rich_tracebacks=True, markup=True)],
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper())
        ),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_transition(entity: str, entity_id: str, from_status: Any, to_status: Any) -> Dict[str, Any]:
    """Create a log context for a lifecycle transition."""
    return {
        "entity": entity,
        "entity_id": entity_id,
        "from_status": getattr(from_status, "value", from_status),
        "to_status": getattr(to_status, "value", to_status),
    }
