"""Configures structured logging for the application using structlog."""

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Set up structlog over the standard logging library.

    Console output is colored by level; ``json_output`` switches to one JSON
    object per line for log collection.

    Args:
        log_level: The minimum log level to capture (e.g., "INFO", "DEBUG").
        json_output: Render JSON instead of colored console lines.
    """
    level = log_level.upper()
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
