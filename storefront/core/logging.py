"""Structured JSON logging with correlation IDs.

Each checkout, webhook or poll request gets a correlation ID that is attached
to every log line it produces, alongside the active trace and span IDs.
Payment code should log through log_info / log_warning / log_error so order
codes and gateway names land in the ``extra`` object rather than the message.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from storefront.core.tracing import current_trace_ids

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Present on every LogRecord; anything else arrived through ``extra``.
_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
# Already emitted at the top level of the JSON line.
_PROMOTED_FIELDS = frozenset({"correlation_id"})

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx")


def get_correlation_id() -> str:
    """Return the request's correlation ID.

    Outside a request the active trace ID stands in. Failing that, a fresh
    UUID is minted and kept for the rest of the context.
    """
    cid = correlation_id_var.get()
    if cid is not None:
        return cid
    trace_id, _ = current_trace_ids()
    if trace_id:
        return trace_id
    cid = str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def __init__(self, include_stack_trace: bool = True, include_extra_fields: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        trace_id, span_id = current_trace_ids()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }
        if trace_id:
            entry["trace_id"] = trace_id
            entry["span_id"] = span_id

        if record.exc_info and self.include_stack_trace:
            entry["exception"] = self._exception_block(record.exc_info)

        if self.include_extra_fields:
            extra = {
                key: _jsonable(value)
                for key, value in record.__dict__.items()
                if key not in _RECORD_FIELDS and key not in _PROMOTED_FIELDS
            }
            if extra:
                entry["extra"] = extra

        return json.dumps(entry, default=str)

    @staticmethod
    def _exception_block(exc_info) -> dict[str, Any]:
        exc_type, exc_value, exc_tb = exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value is not None else None,
            "stack_trace": traceback.format_exception(exc_type, exc_value, exc_tb) if exc_tb else None,
        }


class CorrelationIdFilter(logging.Filter):
    """Stamp the current correlation ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name
        json_format: Emit StructuredFormatter JSON lines instead of plain text
        include_stack_trace: Attach formatted tracebacks to error lines
    """
    numeric_level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    # httpx logs every gateway request URL at INFO
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(logger: logging.Logger, level: int, message: str, exc_info: Any, extra: dict[str, Any]) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exc_info, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[Exception] = None,
    **extra: Any,
) -> None:
    """Log an error, with the exception's traceback when one is given."""
    _log(logger, logging.ERROR, message, exception, extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, None, extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, None, extra)
