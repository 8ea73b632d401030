"""
jobspine logging - structured events for the scheduler and its tasks.

Manifesto:
    Every dispatch, skip, retry and failure is a structured event that
    carries the job name, execution id and attempt number, so one
    execution chain can be followed end to end in a log aggregator.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="jobspine")
              │
              ▼
        structlog processors (stdlib logger factory):
          TimeStamper(iso) → merge_contextvars → level / logger name
          → service.name → [ECS field names] → JSONRenderer | ConsoleRenderer
              │
              ▼
        logging.basicConfig(stream=stdout)   (shared with SQLAlchemy)

        logger = get_logger(__name__)
        logger.info("job_dispatched", job_name="nightly", retry_attempt=0)

Tags:
    logging, structlog, observability, jobspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "jobspine"

# structlog key → ECS field name
_ECS_FIELDS = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
}


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_rename(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename standard keys to their ECS equivalents for JSON output."""
    for key, ecs_key in _ECS_FIELDS.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "jobspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines if True, coloured console if False;
            None picks JSON whenever stdout is not a terminal
        service: Value of ``service.name`` on every event
        add_timestamp: Prefix events with an ISO timestamp
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service
    numeric_level = getattr(logging, level.upper())

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [_ecs_rename, structlog.processors.format_exc_info]
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Rendered events and SQLAlchemy's own records share one handler
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger; pass ``__name__``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind keys onto every later event of the current task or thread."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Contextvars are copied into each asyncio task, so binding inside an
    attempt never leaks into the scheduler loop or sibling attempts.

    Example:
        async with LogContext(job_name="nightly", execution_id=eid):
            logger.info("task_started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
