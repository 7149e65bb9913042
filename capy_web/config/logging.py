"""Production-grade logging configuration using loguru with automatic dev/prod detection."""

import sys
from typing import Optional

from loguru import logger

from capy_web.config.settings import settings


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure loguru based on environment settings.

    Behavior:
    - Development (TTY + console format): Colorized, human-readable output
    - Production (non-TTY or json format): JSON-structured logs to stdout
    - Respects LOG_LEVEL from settings unless a level is passed explicitly

    Args:
        level: Optional level override (the CLI passes DEBUG for --verbose)
    """
    # Remove default handler
    logger.remove()
    # Records logged without get_logger() still render {extra[component]}
    logger.configure(extra={"component": "capy_web"})

    log_level = level or settings.log_level
    # Determine if we're in a TTY environment (interactive terminal)
    is_tty = sys.stderr.isatty()
    use_console_format = settings.log_format.lower() == "console"

    if is_tty and use_console_format:
        # Development mode: colorized, human-readable
        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[component]}</cyan> | <level>{message}</level>",
            level=log_level,
            colorize=True,
        )
    else:
        # Production mode: one JSON object per line on stdout
        logger.add(
            sys.stdout,
            format="{message}",
            level=log_level,
            serialize=True,  # Output as JSON
            diagnose=False,  # No variable values in tracebacks
        )


def get_logger(component: str):
    """
    Get a logger instance bound to a specific component name.

    Args:
        component: Component/module name for log context

    Returns:
        Logger instance with component context

    Example:
        >>> log = get_logger("navigation")
        >>> log.info("Visiting page", url="https://example.com/")
    """
    return logger.bind(component=component)


# Configure logging on module import
configure_logging()

__all__ = ["logger", "get_logger", "configure_logging"]
