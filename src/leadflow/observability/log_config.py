"""structlog configuration shared by the app and the operator scripts."""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "INFO", env: str = "development") -> None:
    """JSON lines in production, console rendering everywhere else."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info
            if env == "production"
            else structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer()
            if env == "production"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )
