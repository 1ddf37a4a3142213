"""Structured logging with invocation correlation and an optional JSON log file.

Supports:
- Console suppression during Rich live displays (spinners)
- Console output on stderr, JSON lines in the optional log file
- Per-invocation correlation IDs
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from pgd.config.models import LoggingConfig

_invocation_id: ContextVar[str | None] = ContextVar("invocation_id", default=None)


def get_invocation_id() -> str | None:
    return _invocation_id.get()


def set_invocation_id(invocation_id: str | None = None) -> str:
    """Set or generate the correlation ID for this CLI invocation."""
    iid = invocation_id or uuid4().hex[:12]
    _invocation_id.set(iid)
    return iid


def clear_invocation_id() -> None:
    _invocation_id.set(None)


def _add_invocation_id(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if iid := get_invocation_id():
        event_dict["invocation_id"] = iid
    return event_dict


_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleSuppressingFilter(logging.Filter):
    """Blocks console log records while a Rich live display is active."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        from pgd.core.progress import is_console_suppressed

        return not is_console_suppressed()


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    level: str = "WARNING",
) -> None:
    """Configure structlog: console on stderr, plus a JSON file when configured.

    Args:
        config: Logging configuration
        level: Log level when no config is given
    """
    from pgd.config.models import LoggingConfig

    if config is None:
        config = LoggingConfig(level=level)

    log_level = _LEVEL_MAP.get(config.level.upper(), logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
        _add_invocation_id,  # type: ignore[list-item]
    ]

    _configure_stdlib_logging(config, shared_processors, log_level)


def _console_handler(shared_processors: list[structlog.types.Processor]) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ConsoleSuppressingFilter())
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                pad_event_to=0,
                pad_level=False,
            ),
            foreign_pre_chain=shared_processors,
        )
    )
    return handler


def _file_handler(destination: str, shared_processors: list[structlog.types.Processor]) -> logging.Handler:
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a")
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared_processors,
        )
    )
    return handler


def _configure_stdlib_logging(
    config: LoggingConfig,
    shared_processors: list[structlog.types.Processor],
    log_level: int,
) -> None:
    """Configure logging via stdlib (proper file handle management)."""
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    handlers = [_console_handler(shared_processors)]
    if config.file:
        handlers.append(_file_handler(config.file, shared_processors))
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
