"""Structured logging for the chat gateway services.

All log output goes through one stdlib handler rendered by structlog, so
events from our code and from third-party libraries share a format.
Events are dotted names (``context.message_added``) with keyword fields.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Generator, MutableMapping
from contextlib import contextmanager
from typing import IO, Any

import structlog


# Libraries that log every request at INFO
_QUIET_LIBRARIES = ("httpx", "httpcore", "multipart", "multipart.multipart")

# Field names whose values must never reach the log stream
_SECRET_FIELDS = frozenset({"api_key", "x-goog-api-key", "authorization", "token"})
_REDACTED = "***"

_TRUTHY = ("true", "1", "yes")
_FALSY = ("false", "0", "no")


def _level_number(level: str) -> int:
    value = logging.getLevelName((level or "").upper())
    return value if isinstance(value, int) else logging.INFO


def _service_tagger(service_name: str | None) -> structlog.types.Processor:
    def tag(
        _: Any, __: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if service_name:
            event_dict.setdefault("service", service_name)
        return event_dict

    return tag


def _redact_secrets(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in _SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def _wants_full_tracebacks(explicit: bool | None, level_number: int) -> bool:
    if explicit is not None:
        return explicit
    env_value = os.getenv("LOG_FULL_TRACEBACKS", "").lower()
    if env_value in _TRUTHY:
        return True
    if env_value in _FALSY:
        return False
    return level_number <= logging.DEBUG


def _pre_chain(
    service_name: str | None, full_tracebacks: bool
) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _service_tagger(service_name),
        _redact_secrets,
        structlog.processors.dict_tracebacks
        if full_tracebacks
        else structlog.processors.format_exc_info,
    ]


def _handler(
    stream: IO[str], json_logs: bool, pre_chain: list[structlog.types.Processor]
) -> logging.Handler:
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def configure_logging(
    level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str | None = None,
    stream: IO[str] | None = None,
    full_tracebacks: bool | None = None,
) -> None:
    """Route structlog and stdlib logging through a single handler.

    Args:
        level: Minimum level name; unknown names fall back to INFO
        json_logs: One JSON object per line when True, console format otherwise
        service_name: Added as ``service`` to events that do not set one
        stream: Destination (stdout by default); tests pass a StringIO
        full_tracebacks: Structured tracebacks instead of a formatted string.
            Defaults to LOG_FULL_TRACEBACKS, else on at DEBUG only.

    Values of fields named like credentials (``api_key``,
    ``authorization``) are masked.
    """
    level_number = _level_number(level)
    pre_chain = _pre_chain(
        service_name, _wants_full_tracebacks(full_tracebacks, level_number)
    )

    root = logging.getLogger()
    root.handlers = [_handler(stream or sys.stdout, json_logs, pre_chain)]
    root.setLevel(level_number)
    logging.captureWarnings(True)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level_number),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(
    name: str,
    *,
    correlation_id: str | None = None,
    service_name: str | None = None,
) -> structlog.stdlib.BoundLogger:
    """Return a named logger, bound to the current request when there is one."""
    logger = structlog.stdlib.get_logger(name)

    if correlation_id is None:
        # Imported here: middleware imports this module
        from services.common.middleware import get_correlation_id

        correlation_id = get_correlation_id()

    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)
    if service_name:
        logger = logger.bind(service=service_name)
    return logger


@contextmanager
def correlation_context(
    correlation_id: str | None,
) -> Generator[structlog.stdlib.BoundLogger, None, None]:
    """Tag every event emitted inside the block with ``correlation_id``.

    Blocks may nest; the enclosing id is restored on exit. ``None`` leaves
    the context untouched.
    """
    if not correlation_id:
        yield structlog.stdlib.get_logger()
        return

    outer = structlog.contextvars.get_contextvars().get("correlation_id")
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    try:
        yield structlog.stdlib.get_logger()
    finally:
        if outer is None:
            structlog.contextvars.unbind_contextvars("correlation_id")
        else:
            structlog.contextvars.bind_contextvars(correlation_id=outer)


__all__ = [
    "configure_logging",
    "correlation_context",
    "get_logger",
]
