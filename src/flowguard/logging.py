"""Structured logging for flowguard.

Library code logs ``snake_case`` event names with keyword fields through the
``log_*`` helpers. The helpers also accept plain stdlib loggers so a host
application can inject its own.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal, Protocol

import structlog

LogMethod = Literal["info", "warning", "error", "exception"]
StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]

_LEVEL_NAMES = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class StructuredLogger(Protocol):
    """Anything accepting ``logger.<method>(event, **fields)``."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


def get_log_level_value(level: str) -> int:
    """Map a level name such as ``" warning "`` to its stdlib constant.

    Raises:
        ValueError: For names outside DEBUG..CRITICAL.
    """
    normalized = level.strip().upper()
    if normalized not in _LEVEL_NAMES:
        raise ValueError(f"log_level must be one of: {', '.join(sorted(_LEVEL_NAMES))}")
    return logging.getLevelNamesMapping()[normalized]


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


@contextmanager
def bound_request_id(request_id: str) -> Iterator[None]:
    """Attach ``request_id`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(request_id=request_id):
        yield


def _emit(
    logger: StructuredLogger | StdlibLogger,
    method: LogMethod,
    event: str,
    fields: dict[str, object],
) -> None:
    log = getattr(logger, method)
    if isinstance(logger, logging.Logger | logging.LoggerAdapter):
        log(event, extra=fields)
    else:
        log(event, **fields)


def log_info(logger: StructuredLogger | StdlibLogger, event: str, **fields: object) -> None:
    _emit(logger, "info", event, fields)


def log_warning(
    logger: StructuredLogger | StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "warning", event, fields)


def log_error(logger: StructuredLogger | StdlibLogger, event: str, **fields: object) -> None:
    _emit(logger, "error", event, fields)


def log_exception(
    logger: StructuredLogger | StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "exception", event, fields)


def configure_structlog(
    *,
    log_level: str,
    json_logs: bool | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib records through one stderr handler.

    Safe to call repeatedly; the root handler is replaced each time.

    Args:
        log_level: Minimum level name for the root logger.
        json_logs: Render JSON lines instead of the console format. Defaults
            to JSON whenever stderr is not a terminal.
    """
    if json_logs is None:
        json_logs = not sys.stderr.isatty()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        handlers=[handler],
        level=get_log_level_value(log_level),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *pre_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return get_logger("flowguard")
