"""
Response envelope -- the wire shape returned to API callers.

Every response, success or failure, has the same keys::

    {result, exception, pagination, statusCode, message, errors, warnings}

Kernel exceptions are mapped to a status by their ``code``:

    200  success
    409  DUPLICATE_INVOICE, STOCK_CONCURRENT_MODIFICATION, LOCK_TIMEOUT
         (conflicts; the concurrency ones are retryable)
    422  every other domain or validation error
    500  INTERNAL_ERROR and anything that is not a StockKernelError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.exceptions import InternalError, StockKernelError

SUCCESS = 200
CONFLICT = 409
INVALID_DATA = 422
SERVER_ERROR = 500

_STATUS_BY_CODE: dict[str, int] = {
    "DUPLICATE_INVOICE": CONFLICT,
    "STOCK_CONCURRENT_MODIFICATION": CONFLICT,
    "LOCK_TIMEOUT": CONFLICT,
    "INTERNAL_ERROR": SERVER_ERROR,
}


def status_for(exc: BaseException) -> int:
    """HTTP-style status for an exception."""
    if not isinstance(exc, StockKernelError):
        return SERVER_ERROR
    return _STATUS_BY_CODE.get(exc.code, INVALID_DATA)


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


@dataclass(frozen=True)
class ResponseEnvelope:
    result: Any = None
    exception: str | None = None
    pagination: dict[str, Any] | None = None
    status_code: int = SUCCESS
    message: str | None = None
    errors: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    warnings: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @property
    def is_success(self) -> bool:
        return self.status_code == SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": _jsonable(self.result),
            "exception": self.exception,
            "pagination": self.pagination,
            "statusCode": self.status_code,
            "message": self.message,
            "errors": [_jsonable(e) for e in self.errors],
            "warnings": [_jsonable(w) for w in self.warnings],
        }


def envelope_from_result(
    result: Any,
    message: str | None = None,
    pagination: dict[str, Any] | None = None,
) -> ResponseEnvelope:
    if hasattr(result, "to_dict"):
        result = result.to_dict()
    return ResponseEnvelope(
        result=result,
        pagination=pagination,
        status_code=SUCCESS,
        message=message,
    )


def envelope_from_error(exc: BaseException) -> ResponseEnvelope:
    """
    Build the failure envelope for ``exc``.

    Non-kernel exceptions are reported as INTERNAL_ERROR without their
    message, so driver or stack details never reach the caller.
    """
    if not isinstance(exc, StockKernelError):
        exc = InternalError(type(exc).__name__)

    detail = {
        key: value
        for key, value in vars(exc).items()
        if not key.startswith("_")
    }
    error = {
        "code": exc.code,
        "message": str(exc),
        "retryable": exc.retryable,
        **detail,
    }
    return ResponseEnvelope(
        result=None,
        exception=exc.code,
        status_code=status_for(exc),
        message=str(exc),
        errors=(error,),
    )
