"""Structured logging configuration for FeedLens."""

import logging
import sys
from typing import Optional

import structlog

# These log full request URLs, and NewsData takes its key as a query parameter.
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO", log_format: Optional[str] = None) -> None:
    """Route stdlib and structlog output through one renderer.

    ``log_format`` is ``"json"`` or ``"console"``; when unset, JSON is used
    unless stderr is a terminal.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if _use_json(log_format)
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _use_json(log_format: Optional[str]) -> bool:
    if log_format == "json":
        return True
    if log_format == "console":
        return False
    return not sys.stderr.isatty()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


logger = get_logger("feedlens")
