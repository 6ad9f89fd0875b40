"""
Structured Logging

structlog on top of the stdlib logging tree, so uvicorn, SQLAlchemy and
Celery records come out in the same format as ours. Console rendering in
development, one JSON object per line everywhere else.

Context bound with ``bind_context``/``log_context`` (user id, lock key) is
attached to every record emitted while it is active.
"""
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.core.config import settings

QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery.app.trace": logging.INFO,
}


def _add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", "sparkbid-backend")
    event_dict.setdefault("env", settings.environment)
    return event_dict


def configure_logging(json_logs: bool | None = None) -> None:
    """Idempotent; the API process and the Celery worker both call it at import time."""
    if json_logs is None:
        json_logs = settings.environment != "development"

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        renderer: list[Processor] = [
            _add_service,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.db_echo else logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind values for the rest of the current request or task."""
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind values for the duration of a block, e.g. one job's critical section."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
