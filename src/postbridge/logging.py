"""Structured logging for Postbridge.

Every event goes through structlog and the stdlib root logger. Delivery
attempts bind ``job_id``, ``content_item_id`` and ``destination_id`` with
:func:`job_context`, so publisher and store logs emitted during an attempt
carry the job they belong to without passing it around.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from postbridge.config import Settings, get_settings

# Loggers that are chatty at INFO: per-request lines from the HTTP client
# and the control API's access log.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ]
    )


def _console_formatter(settings: Settings) -> structlog.stdlib.ProcessorFormatter:
    if not settings.is_development:
        return _json_formatter()
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    )


def _file_handler(settings: Settings, level: int) -> RotatingFileHandler | None:
    """Open the rotating JSON log file, or return ``None`` if it can't be."""
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        print(f"Warning: file logging disabled: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(_json_formatter())
    return handler


def setup_logging() -> None:
    """Configure structlog with console output and an optional log file.

    The console renders colored key/value lines in development and JSON
    elsewhere; the file is always JSON.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_console_formatter(settings))
    handlers: list[logging.Handler] = [console]

    if settings.log_to_file:
        file_handler = _file_handler(settings, level)
        if file_handler is not None:
            handlers.append(file_handler)

    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_context(job_id: str, content_item_id: str, destination_id: str) -> Iterator[None]:
    """Bind a delivery job's identifiers to every log event in the block.

    Bindings live in context variables, so each asyncio task sees only its
    own job.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job_id,
        content_item_id=content_item_id,
        destination_id=destination_id,
    ):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
