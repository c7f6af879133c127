"""Structured logging setup.

Call ``configure_logging`` once at process start (the CLI does this), then
log through ``structlog.get_logger(__name__)`` with snake_case event names::

    log = structlog.get_logger(__name__)
    log.info("step_accepted", step_index=4, rounds=2)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Optional

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "STEPVOTE_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"


def _get_log_level(level: Optional[str] = None) -> int:
    level_name = (level or os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)).upper()
    return getattr(logging, level_name, logging.WARNING)


def _stderr_logger_factory(*args: Any) -> structlog.PrintLogger:
    # resolved per logger so redirected or captured stderr is honoured
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(environment: str = "development", level: Optional[str] = None) -> None:
    """Configure structlog processors for the given environment.

    ``production`` renders JSON lines; anything else uses the console
    renderer. The level defaults to ``STEPVOTE_LOG_LEVEL`` or WARNING so
    that million-step runs stay quiet unless asked.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level(level)),
        context_class=dict,
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )
