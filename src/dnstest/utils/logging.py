"""Structured logging infrastructure with run ID tracking.

This module provides the logging setup for the dnstest application: a
console handler on stderr (stdout is reserved for reports), a filter that
tags every record with the current scheduler run ID, and helpers for
structured logging with extra context fields.

The run ID lives in a ContextVar. Tasks created by the scheduler inherit
it, so every log line emitted while probing carries the ID of the run
that spawned it, even when several runs overlap.
"""

import contextvars
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Final, TextIO, override

# Run ID context variable, inherited by asyncio tasks created in the same context
run_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] - %(message)s"

VALID_LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class RunIDFilter(logging.Filter):
    """Logging filter that adds the current run ID to log records.

    Records logged outside of a scheduler run get "N/A".
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        """Add run ID to log record from ContextVar.

        Args:
            record: Log record to enhance with run ID

        Returns:
            True to allow the record to be logged
        """
        run_id = run_id_var.get()
        record.run_id = run_id if run_id is not None else "N/A"
        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure application logging.

    Replaces any handlers on the root logger with a single console handler
    that writes to stderr by default.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream for log records (default: sys.stderr)

    Example:
        >>> configure_logging(log_level="DEBUG")  # doctest: +SKIP
        >>> logger = logging.getLogger(__name__)  # doctest: +SKIP
        >>> logger.info("Probing started", extra={"endpoints": 42})  # doctest: +SKIP
    """
    root_logger = logging.getLogger()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    console_handler.addFilter(RunIDFilter())
    root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified module.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def set_run_id(run_id: str) -> None:
    """Set the run ID for the current context.

    Args:
        run_id: Identifier of the scheduler run
    """
    _ = run_id_var.set(run_id)


def get_run_id() -> str | None:
    """Get the current run ID, or None outside of a run."""
    return run_id_var.get()


def clear_run_id() -> None:
    """Clear the run ID from the current context."""
    _ = run_id_var.set(None)


@contextmanager
def run_context(run_id: str) -> Iterator[str]:
    """Bind a run ID for the duration of a block and restore the previous one.

    Args:
        run_id: Identifier of the scheduler run

    Yields:
        The bound run ID

    Example:
        >>> with run_context("a1b2c3d4"):  # doctest: +SKIP
        ...     logger.info("Run started")
    """
    token = run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        run_id_var.reset(token)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    extra: Mapping[str, object] | None = None,
) -> None:
    """Log a message with additional context fields.

    Args:
        logger: Logger instance to use
        level: Logging level (e.g., logging.INFO)
        message: Log message
        extra: Additional context fields to include in log

    Example:
        >>> log_with_context(  # doctest: +SKIP
        ...     logger,
        ...     logging.INFO,
        ...     "Endpoint probed",
        ...     extra={"endpoint": "8.8.8.8", "latency_ms": 12.4},
        ... )
    """
    context = dict(extra) if extra else {}
    logger.log(level, message, extra=context)
