"""
JSON-lines logging for the stock kernel.

Every record carries the tenancy fields of the unit of work that emitted it
(tenant, organisation, branch, actor, invoice number, correlation id) so a
single sale can be traced across ledger, sequence and orchestrator logs.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, TextIO
from uuid import UUID

ROOT_LOGGER = "stock_kernel"

_TRACE_FIELDS = (
    "correlation_id",
    "tenant_id",
    "organisation_id",
    "branch_id",
    "actor_id",
    "invoice_no",
)

_trace: ContextVar[dict[str, str]] = ContextVar("stock_kernel_trace", default={})


class LogContext:
    """Request-scoped trace fields, safe across threads and tasks."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Overwrite the given trace fields; ``None`` values are skipped."""
        _trace.set({**_trace.get(), **_known(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_trace.get())

    @staticmethod
    def clear() -> None:
        _trace.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Layer trace fields for the duration of a ``with`` block."""
        token = _trace.set({**_trace.get(), **_known(fields)})
        try:
            yield
        finally:
            _trace.reset(token)


def _known(fields: dict[str, str | None]) -> dict[str, str]:
    unknown = set(fields) - set(_TRACE_FIELDS)
    if unknown:
        raise TypeError(f"unknown log context fields: {sorted(unknown)}")
    return {name: value for name, value in fields.items() if value is not None}


_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: header, trace fields, extras, then any error."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in entry
        )

        error = record.exc_info[1] if record.exc_info else None
        if error is not None:
            entry["exc_type"] = type(error).__name__
            entry["exc_message"] = str(error)
            code = getattr(error, "code", None)
            if code is not None:
                entry["exc_code"] = code
            # Kernel errors keep their context (batch id, unit counts) as attributes
            entry.update(
                (f"exc_{key}", value)
                for key, value in vars(error).items()
                if not key.startswith("_") and key != "code"
            )
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_install_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``stock_kernel`` logger.

    Later calls are no-ops until :func:`reset_logging` runs, so engine
    start-up and config bridges can both call this safely.
    """
    global _installed
    with _install_lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(ROOT_LOGGER)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(_installed)


def reset_logging() -> None:
    """Detach every handler so tests can install their own."""
    global _installed
    with _install_lock:
        _installed = None
        kernel_logger = logging.getLogger(ROOT_LOGGER)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
