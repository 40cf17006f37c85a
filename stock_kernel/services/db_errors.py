"""
Translation of driver-level database errors into kernel exceptions.

Lock waits that time out (PostgreSQL ``55P03 lock_not_available``) and
deadlock victims (``40P01``) become :class:`LockTimeoutError` so callers can
retry the whole unit of work.  SQLite reports contention as "database is
locked".  Anything else becomes :class:`InternalError`.
"""

from sqlalchemy.exc import DBAPIError, OperationalError

from stock_kernel.exceptions import InternalError, LockTimeoutError, StockKernelError

LOCK_NOT_AVAILABLE = "55P03"
DEADLOCK_DETECTED = "40P01"
QUERY_CANCELED = "57014"  # statement_timeout while waiting on a lock

_LOCK_PGCODES = frozenset({LOCK_NOT_AVAILABLE, DEADLOCK_DETECTED, QUERY_CANCELED})


def pgcode_of(exc: DBAPIError) -> str | None:
    return getattr(exc.orig, "pgcode", None)


def is_lock_failure(exc: DBAPIError) -> bool:
    if pgcode_of(exc) in _LOCK_PGCODES:
        return True
    if isinstance(exc, OperationalError):
        return "database is locked" in str(exc.orig).lower()
    return False


def translate_db_error(exc: DBAPIError) -> StockKernelError:
    """Map a DBAPIError to the kernel exception the caller should see."""
    if is_lock_failure(exc):
        lines = str(exc.orig or exc).strip().splitlines()
        return LockTimeoutError(lines[0] if lines else type(exc).__name__)
    return InternalError(type(exc.orig or exc).__name__)
