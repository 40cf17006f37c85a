"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A rejected sale must tell the caller exactly which rule it broke so the
response can carry a stable, machine-readable code.  Every error therefore:
  1. Has its own exception class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores structured DATA as attributes (batch id, unit counts, ...)

Example:
    try:
        orchestrator.create_sale(draft, scope)
    except InsufficientStockError as e:
        api_response(code=e.code, requested=e.requested_units)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- SaleError
    |   +-- DuplicateInvoiceError
    |   +-- SaleNotFoundError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InsufficientPacksError
    |   +-- CannotBreakPackError
    |   +-- BatchNotFoundError
    |
    +-- StockValidationError
    |   +-- InvalidPackSizeError
    |
    +-- ConcurrencyError
    |   +-- StockConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- InternalError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|------------------------------------
Sale         | DUPLICATE_INVOICE             | invoice_no already used in scope
             | SALE_NOT_FOUND                | Sale id missing / out of scope
-------------|-------------------------------|------------------------------------
Stock        | INSUFFICIENT_STOCK            | Requested units > available units
             | INSUFFICIENT_PACKS            | Not enough sealed packs left
             | CANNOT_BREAK_PACK             | Too few packs to open for loose
             | BATCH_NOT_FOUND               | Batch missing / deleted / out of scope
-------------|-------------------------------|------------------------------------
Validation   | VALIDATION_ERROR              | Malformed sale or movement request
             | INVALID_PACK_SIZE             | Variant pack_size not a positive int
-------------|-------------------------------|------------------------------------
Concurrency  | STOCK_CONCURRENT_MODIFICATION | Guarded UPDATE matched no row
             | LOCK_TIMEOUT                  | Lock wait timeout / deadlock
-------------|-------------------------------|------------------------------------
Internal     | INTERNAL_ERROR                | Anything unexpected

ConcurrencyError subclasses are retryable: the caller re-runs the whole
sale transaction.  The engine itself never retries.
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"
    retryable: bool = False


# Sale-related exceptions


class SaleError(StockKernelError):
    """Base exception for sale header errors."""

    code: str = "SALE_ERROR"


class DuplicateInvoiceError(SaleError):
    """Invoice number already exists for the scope."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, invoice_no: str, scope_key: str):
        self.invoice_no = invoice_no
        self.scope_key = scope_key
        super().__init__(f"Invoice {invoice_no} already exists in scope {scope_key}")


class SaleNotFoundError(SaleError):
    """Sale record with given id was not found in the caller's scope."""

    code: str = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")


# Stock-related exceptions


class StockError(StockKernelError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested units exceed the batch's total available units."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, batch_id: str, requested_units: int, available_units: int):
        self.batch_id = batch_id
        self.requested_units = requested_units
        self.available_units = available_units
        super().__init__(
            f"Insufficient stock in batch {batch_id}: "
            f"requested {requested_units} units, available {available_units}"
        )


class InsufficientPacksError(StockError):
    """Not enough sealed packs remain after loose handling."""

    code: str = "INSUFFICIENT_PACKS"

    def __init__(self, batch_id: str, requested_packs: int, available_packs: int):
        self.batch_id = batch_id
        self.requested_packs = requested_packs
        self.available_packs = available_packs
        super().__init__(
            f"Not enough full packs in batch {batch_id}: "
            f"requested {requested_packs}, available {available_packs}"
        )


class CannotBreakPackError(StockError):
    """Loose request needs more packs opened than the batch holds."""

    code: str = "CANNOT_BREAK_PACK"

    def __init__(self, batch_id: str, packs_to_open: int, available_packs: int):
        self.batch_id = batch_id
        self.packs_to_open = packs_to_open
        self.available_packs = available_packs
        super().__init__(
            f"Cannot break {packs_to_open} pack(s) in batch {batch_id}: "
            f"only {available_packs} available"
        )


class BatchNotFoundError(StockError):
    """Stock batch missing, soft-deleted, out of scope, or lacking a variant."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str, reason: str = "not found"):
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(f"Stock batch {batch_id}: {reason}")


# Validation exceptions


class StockValidationError(StockKernelError):
    """Request failed structural validation before touching the database."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidPackSizeError(StockValidationError):
    """Variant pack_size is present but not a positive integer."""

    code: str = "INVALID_PACK_SIZE"

    def __init__(self, pack_size: object):
        self.pack_size = pack_size
        super().__init__(
            f"pack_size must be a positive integer, got {pack_size!r}",
            field="pack_size",
        )


# Concurrency exceptions


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency conflicts. Callers may retry."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class StockConcurrencyError(ConcurrencyError):
    """Guarded stock UPDATE affected no row: the batch changed underneath us."""

    code: str = "STOCK_CONCURRENT_MODIFICATION"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Stock batch {batch_id} was modified concurrently")


class LockTimeoutError(ConcurrencyError):
    """Row lock could not be acquired (lock wait timeout or deadlock)."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Lock wait failed: {detail}")


class InternalError(StockKernelError):
    """Unexpected failure; the transaction was rolled back."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Internal error: {detail}")
