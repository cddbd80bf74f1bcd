"""
Structured logging configuration using structlog.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger


def expand_cache_errors(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Flatten a cache error passed as ``exc=`` into code/key/lease fields."""
    exc = event_dict.pop("exc", None)
    if exc is None:
        return event_dict
    event_dict.setdefault("error", str(exc))
    event_dict.setdefault("error_type", type(exc).__name__)
    for attr in ("code", "key", "lease_name"):
        value = getattr(exc, attr, None)
        if value is not None:
            event_dict.setdefault(attr, value)
    if exc.__cause__ is not None:
        event_dict.setdefault("cause", repr(exc.__cause__))
    return event_dict


def setup_logging(log_level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Configure structured logging for the cache layer.

    ``log_level`` defaults to ``settings.log_level``. Output is colored
    console lines on a TTY and one JSON object per line otherwise, unless
    ``json_output`` forces a choice.
    """
    if log_level is None:
        from leasecache.config import settings
        log_level = settings.log_level
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        expand_cache_errors,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output is None:
        json_output = not sys.stderr.isatty()
    if json_output:
        renderers: list[Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance with optional name binding."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(module=name)
    return logger


class LoggerMixin:
    """Mixin class to add logging to any class."""

    @property
    def log(self) -> structlog.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Bind ``kwargs`` to every log line emitted inside the block.

    Background repopulation runs under ``log_context(key=...)`` so lines
    from the store and lease layers carry the key being refreshed.
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
