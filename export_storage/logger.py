"""
Structured logging setup.
"""
import logging
import sys

import structlog

from export_storage.config import settings


def setup_logging(level: str = None, json: bool = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Log level name, defaults to ``settings.LOG_LEVEL``
        json: Render JSON lines instead of console output, defaults to
            ``settings.LOG_JSON``
    """
    level = (level or settings.LOG_LEVEL).upper()
    json = settings.LOG_JSON if json is None else json

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
