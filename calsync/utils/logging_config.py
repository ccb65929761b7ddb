"""Centralized logging configuration for the sync worker."""

import logging
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Any, Iterator

import structlog

# Chatty HTTP client loggers are capped at WARNING
NOISY_LOGGERS = ("urllib3", "requests")


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure structured logging for the worker.

    Sets up structlog on top of the standard library with JSON output for
    cron runs (``json_logs=True``) or a colored console renderer for local
    use. Context bound with :func:`sync_log_context` is merged into every
    event emitted during a reconciliation pass.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines (cron runs) instead of colored console output
        log_file: Also write to this rotating file; stdout only when None

    Example:
        >>> configure_logging(log_level="WARNING", log_file="/var/log/calsync/worker.log")
        >>> structlog.stdlib.get_logger().warning("due_configs_deferred", deferred_count=4)
    """
    level = logging.getLevelName(log_level.upper())
    numeric_level = level if isinstance(level, int) else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stdout,
    )

    if log_file:
        # 10MB per file, 5 backups
        rotating = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        rotating.setLevel(numeric_level)
        logging.root.addHandler(rotating)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ],
        ),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def sync_log_context(**context: Any) -> Iterator[None]:
    """
    Bind key/value pairs to every log event emitted inside the block.

    Args:
        **context: Values to bind, e.g. ``sync_config_id``

    Example:
        >>> with sync_log_context(sync_config_id="cfg_1"):
        ...     log.info("pull_started")
    """
    tokens = structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for scripts that want an explicit name (``calsync.scripts.sync``)."""
    return structlog.stdlib.get_logger(name)
