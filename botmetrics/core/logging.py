"""
Structured logging via structlog, routed through the stdlib ``botmetrics`` logger.

Every entry carries: timestamp, level, severity, event, logger name, and any
context bound through structlog's contextvars (request_id and tenant_id from
the access log middleware, job and tenant_id from the batch jobs).

Usage:
    logger = get_logger(__name__)
    logger.info("rollup.daily_completed", scope="acme||", day="2024-01-01")

    with job_context("daily", day="2024-01-01"):
        ...  # every log line inside carries job="daily" and day
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, WrappedLogger

from botmetrics.core.config import settings

ROOT_LOGGER = "botmetrics"

_SEVERITY = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARNING",
    "error": "ERROR",
    "exception": "ERROR",
    "critical": "CRITICAL",
}


def add_severity_field(
    logger: WrappedLogger, method: str, event_dict: EventDict
) -> EventDict:
    """Map structlog levels to GCP/Datadog severity strings."""
    event_dict["severity"] = _SEVERITY.get(method, "INFO")
    return event_dict


def setup_logging() -> None:
    """Configure structlog for JSON (production) or console (dev) output.

    Safe to call more than once; the API and the job runner both call it.
    """
    if settings.LOG_FORMAT == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_severity_field,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers = [handler]
    root.setLevel(settings.LOG_LEVEL.upper())
    root.propagate = False

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for a module."""
    return structlog.get_logger(name)


@contextmanager
def job_context(job: str, **values: Any) -> Iterator[None]:
    """Bind ``job`` (and any extra values) to every log line inside the block."""
    with structlog.contextvars.bound_contextvars(job=job, **values):
        yield
