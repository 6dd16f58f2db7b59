"""Structured logging configuration."""

import logging
from typing import TextIO

import structlog

from table_engine.config import settings


def setup_logging(
    debug: bool | None = None,
    level: int | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging.

    ``stream`` redirects log output (the CLI keeps stdout for results);
    loggers are then not cached so a later reconfiguration takes effect.
    """
    if debug is None:
        debug = settings.debug
    if level is None:
        level = logging.INFO if not debug else logging.DEBUG
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if not debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=stream is None,
    )
