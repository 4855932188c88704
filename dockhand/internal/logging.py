import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

from dockhand.internal import paths

_LOGGING_CONFIGURED = False

_MAX_LOG_BYTES = 5 * 1024 * 1024
_LOG_BACKUPS = 5


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    # Records from plain stdlib loggers (httpx, asyncio) get the same fields
    return structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )


def _file_handler(log_file_path: Path) -> logging.Handler:
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file_path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    if log_file_path.name.endswith(".json"):
        handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    else:
        handler.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=False)))
    return handler


def _console_handler() -> logging.Handler:
    # stderr, so command output on stdout stays machine-readable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(structlog.dev.ConsoleRenderer()))
    return handler


def setup_logging(
    log_level_name: str = "INFO",
    log_file_path: Optional[Path] = None,
    console_output: bool = False,
):
    """
    Configure logging for dockhand. Only the first call has an effect.

    - structlog events are routed through the stdlib root logger.
    - `log_file_path` gets a rotating file; a `.json` suffix selects JSON lines.
    - `console_output` adds a human-readable stderr handler.
    - DOCKHAND_LOG_LEVEL overrides `log_level_name`.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_level = _level(os.environ.get("DOCKHAND_LOG_LEVEL", log_level_name))

    handlers = []
    if log_file_path:
        handlers.append(_file_handler(log_file_path))
    if console_output:
        handlers.append(_console_handler())
    if not handlers:
        handlers.append(logging.NullHandler())

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)
    _LOGGING_CONFIGURED = True


def enable_console_logging(log_level_name: str = "DEBUG") -> logging.Handler:
    """
    Mirrors log output to stderr after setup_logging() has already run, as the
    CLI's --verbose flag does. Lowers the root level if needed.
    """
    level = _level(log_level_name)
    handler = _console_handler()
    handler.setLevel(level)
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > level:
        root.setLevel(level)
    return handler


def get_logger(name: str | None = None):
    return structlog.get_logger(name)


# Library use always has a log file; entry points may call setup_logging() first.
if not _LOGGING_CONFIGURED:
    setup_logging(log_file_path=paths.get_log_file(), console_output=False)
