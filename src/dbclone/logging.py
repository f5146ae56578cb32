"""
Structured logging for dbclone.

Logs go to stderr (stdout carries plans and summaries) either as
human-readable lines or as one JSON object per record. Every logger accepts
keyword context that is rendered alongside the message:

    logger = get_logger(__name__)
    logger.info("Limit applied", table="logs", rows_removed=120)
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from typing import Any

_loggers: dict[str, logging.Logger] = {}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as JSON with consistent fields:
    - timestamp: ISO 8601 timestamp
    - level: Log level name
    - logger: Logger name (module path)
    - message: Human-readable message
    - context: Additional structured data
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "context") and record.context:
            log_data["context"] = record.context

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formats records as ``[TIMESTAMP] LEVEL: message (key=value, ...)``."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        message = record.getMessage()

        context_str = ""
        if hasattr(record, "context") and record.context:
            context_parts = [f"{k}={v}" for k, v in record.context.items()]
            context_str = f" ({', '.join(context_parts)})"

        exc_str = ""
        if record.exc_info:
            exc_str = "\n" + self.formatException(record.exc_info)

        return f"[{timestamp}] {record.levelname}: {message}{context_str}{exc_str}"


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    structured: bool = False,
) -> None:
    """
    Configure logging for dbclone.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show warnings and errors
        structured: Use JSON structured format (default: human-readable)
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    formatter: logging.Formatter
    if structured:
        formatter = StructuredFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    else:
        formatter = HumanReadableFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler.setFormatter(formatter)

    root_logger = logging.getLogger("dbclone")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handler filters
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


def get_logger(name: str) -> "ContextLogger":
    """
    Get or create a logger for a module.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        ContextLogger instance for the module
    """
    if name not in _loggers:
        if name == "dbclone" or name.startswith("dbclone."):
            logger = logging.getLogger(name)
        else:
            logger = logging.getLogger(f"dbclone.{name}")
        _loggers[name] = logger

    return ContextLogger(_loggers[name])


class ContextLogger:
    """
    Logger wrapper that supports structured context.

    Keyword arguments passed to the log methods end up in the record's
    ``context`` attribute, which both formatters render.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger
        self._context: dict[str, Any] = {}

    def _log(
        self, level: int, msg: str, context: dict[str, Any] | None = None, exc_info: Any = None
    ):
        merged_context = {**self._context}
        if context:
            merged_context.update(context)

        extra = {"context": merged_context} if merged_context else {}
        self._logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **context):
        self._log(logging.DEBUG, msg, context)

    def info(self, msg: str, **context):
        self._log(logging.INFO, msg, context)

    def warning(self, msg: str, **context):
        self._log(logging.WARNING, msg, context)

    def error(self, msg: str, exc_info: Any = None, **context):
        self._log(logging.ERROR, msg, context, exc_info=exc_info)

    def critical(self, msg: str, exc_info: Any = None, **context):
        self._log(logging.CRITICAL, msg, context, exc_info=exc_info)

    def with_context(self, **context) -> "ContextLogger":
        """
        Create a new logger with additional persistent context.

        Example:
            table_logger = logger.with_context(table="users")
            table_logger.info("Staging table")  # Includes table="users"
        """
        new_logger = ContextLogger(self._logger)
        new_logger._context = {**self._context, **context}
        return new_logger

    @contextmanager
    def timed_operation(self, operation: str, **context):
        """
        Context manager that logs an operation's duration.

        Example:
            with logger.timed_operation("schema_introspection"):
                graph = load_schema_graph(adapter)
        """
        start_time = time.time()
        self.debug(f"Starting {operation}", **context)

        try:
            yield
            elapsed = time.time() - start_time
            self.info(f"Completed {operation}", duration_ms=int(elapsed * 1000), **context)
        except Exception as e:
            elapsed = time.time() - start_time
            self.error(
                f"Failed {operation}",
                exc_info=True,
                duration_ms=int(elapsed * 1000),
                error=str(e),
                **context,
            )
            raise


def log_query_execution(
    logger: ContextLogger, query: str, params: tuple | list, row_count: int | None = None
):
    """Log SQL statement execution for debugging."""
    query_preview = query[:200] + "..." if len(query) > 200 else query

    context: dict[str, Any] = {
        "query_preview": query_preview,
        "param_count": len(params) if params else 0,
    }

    if row_count is not None:
        context["row_count"] = row_count

    logger.debug("Executing query", **context)


def log_table_processing(
    logger: ContextLogger,
    table: str,
    operation: str,
    row_count: int,
    current: int | None = None,
    total: int | None = None,
):
    """Log per-table pipeline steps."""
    context: dict[str, Any] = {
        "table": table,
        "operation": operation,
        "row_count": row_count,
    }

    if current is not None and total is not None:
        context["progress"] = f"{current}/{total}"

    logger.info(f"Processing {table}", **context)
