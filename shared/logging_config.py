"""
Structured Logging Setup

Configures structlog for all modules according to the log_level/log_format settings.
"""

import logging
import sys

import structlog

from shared.config import Settings, settings


def configure_logging(config: Settings | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        config: Settings to read log level and format from (default: global settings)
    """
    config = config or settings
    level = getattr(logging, config.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer: structlog.types.Processor
    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
