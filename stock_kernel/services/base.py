"""
BaseService -- common constructor and flush-only contract for services.

Responsibility:
    Every write-side component that runs inside someone else's transaction
    (stock ledgers, the invoice sequence allocator) extends this class.  It
    receives the caller's ``Session`` and persists with ``session.flush()``
    only.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: a BaseService never commits or rolls back.
      The orchestrators (SaleTransactionOrchestrator, StockMovementService)
      own commit/rollback, so a failing line k of n undoes lines 1..k-1.

Failure modes:
    - A subclass calling ``session.commit()`` would publish a partial sale.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for flush-only kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-model queries -- those belong in
          ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
