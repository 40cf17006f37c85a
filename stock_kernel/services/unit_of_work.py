"""
Transactional unit of work shared by the kernel's orchestrating services.

Binds the caller's tenancy to the log context, applies the optional lock
timeout, runs the work, and commits on success or rolls back on failure.
Driver errors leave as kernel exceptions (see ``db_errors``).
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from stock_kernel.db.engine import is_postgres
from stock_kernel.domain.dtos import SaleStatus, TenancyScope
from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.db_errors import translate_db_error

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


def apply_lock_timeout(session: Session, timeout_ms: int | None) -> None:
    """``SET LOCAL lock_timeout`` for the current transaction (PostgreSQL only)."""
    if timeout_ms is not None and is_postgres(session):
        session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))


def run_unit_of_work(
    session: Session,
    operation: str,
    scope: TenancyScope,
    work: Callable[[], T],
    *,
    auto_commit: bool = True,
    lock_timeout_ms: int | None = None,
    **log_extra,
) -> T:
    """
    Run ``work`` as one transaction.

    Emits ``<operation>_started``, then ``<operation>_committed`` or
    ``<operation>_aborted``.  With ``auto_commit=False`` the caller owns
    commit and rollback.

    Raises:
        StockKernelError: re-raised as is, or translated from DBAPIError.
    """
    with LogContext.bind(
        correlation_id=str(uuid4()),
        tenant_id=str(scope.tenant_id),
        organisation_id=str(scope.organisation_id),
        branch_id=str(scope.branch_id) if scope.branch_id else None,
        actor_id=str(scope.actor_id),
    ):
        logger.info(
            f"{operation}_started",
            extra={"ledger": scope.role.value, **log_extra},
        )
        t0 = time.monotonic()
        try:
            apply_lock_timeout(session, lock_timeout_ms)
            result = work()
            if auto_commit:
                session.commit()
        except StockKernelError as exc:
            if auto_commit:
                session.rollback()
            logger.warning(
                f"{operation}_aborted",
                extra={
                    "status": SaleStatus.ABORTED.value,
                    "error_code": exc.code,
                    "error": str(exc),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            raise
        except DBAPIError as exc:
            if auto_commit:
                session.rollback()
            translated = translate_db_error(exc)
            logger.error(
                f"{operation}_aborted",
                extra={
                    "status": SaleStatus.ABORTED.value,
                    "error_code": translated.code,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
                exc_info=True,
            )
            raise translated from exc
        except Exception:
            if auto_commit:
                session.rollback()
            logger.error(
                f"{operation}_failed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                exc_info=True,
            )
            raise

        to_dict = getattr(result, "to_dict", None)
        logger.info(
            f"{operation}_committed",
            extra={
                "status": SaleStatus.COMMITTED.value,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                **(to_dict() if callable(to_dict) else {}),
            },
        )
        return result
