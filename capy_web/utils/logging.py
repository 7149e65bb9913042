"""Structured logging utilities using structlog for session context and tracing."""

import os
import sys
import uuid
from typing import Any, Optional
import structlog
from structlog.processors import JSONRenderer
from structlog.contextvars import merge_contextvars

# Console output only on an interactive terminal with LOG_FORMAT=console
IS_TTY = sys.stderr.isatty()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_structured_logging() -> None:
    """
    Configure structured logging with appropriate processors and renderers.

    Uses:
    - Console renderer for development (colorized, human-readable)
    - JSON renderer for production (structured, machine-readable)
    - Context binding for session_id and path_id
    """
    # Common processors for all environments
    processors = [
        merge_contextvars,  # session_id / path_id bound via contextvars
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),  # ISO timestamp
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,  # Exception formatting
    ]

    if IS_TTY and LOG_FORMAT == "console":
        # Development mode: colorized console output
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        # Production mode: JSON lines
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_structured_logger(
    name: str,
    session_id: Optional[str] = None,
    path_id: Optional[str] = None,
    **additional_context: Any,
) -> structlog.BoundLogger:
    """
    Get a structured logger with bound context.

    Args:
        name: Logger name (typically module name)
        session_id: Optional research session ID to bind
        path_id: Optional execution path ID to bind
        **additional_context: Additional context to bind

    Returns:
        Configured BoundLogger instance with context

    Example:
        >>> logger = get_structured_logger("fetchers", session_id="abc-123")
        >>> logger.info("page_fetched", url="https://example.com/", status=200)
    """
    logger = structlog.get_logger(name)

    # Bind research context if provided
    if session_id:
        logger = logger.bind(session_id=session_id)
    if path_id:
        logger = logger.bind(path_id=path_id)

    if additional_context:
        logger = logger.bind(**additional_context)

    return logger


def new_session_id() -> str:
    """
    Generate an identifier for a research session.

    Returns:
        UUID string used to correlate telemetry, logs and results
    """
    return str(uuid.uuid4())


# Configure on module import
configure_structured_logging()


__all__ = [
    "get_structured_logger",
    "new_session_id",
    "configure_structured_logging",
]
