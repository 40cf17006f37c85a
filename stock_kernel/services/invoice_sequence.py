"""
InvoiceSequenceAllocator -- gapless per-scope invoice numbers.

Responsibility:
    Issues ``INV-YYYYMMDD-NNNNN`` invoice numbers.  One counter row per
    (prefix, scope_key) in ``invoice_numbers``; the date in the prefix
    restarts numbering every business day, and the scope key keeps
    branches (or organisations, or tenants) on separate sequences.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by SaleTransactionOrchestrator inside the sale transaction, and
    by ``preallocate_invoice_number`` in a transaction of its own.

Invariants enforced:
    - Monotonic: the locked counter row is the sole source of truth.  The
      MAX(invoice_no) + 1 pattern is never used.
    - Transactional: the increment is visible only when the caller's
      transaction commits; a rolled-back sale returns its number.
    - First-use race: two transactions creating the same counter collide
      on UNIQUE(prefix, scope_key).  The loser rolls back its savepoint and
      re-reads the winner's row under lock.

Failure modes:
    - LockTimeoutError (raised by the orchestrator) if the counter row
      lock cannot be acquired within the configured lock timeout.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import InvoiceNumber, TenancyScope
from stock_kernel.domain.policy import InvoiceScopePartition, SalePolicy
from stock_kernel.logging_config import get_logger
from stock_kernel.models.invoice_counter import InvoiceCounter
from stock_kernel.services.base import BaseService

logger = get_logger("services.invoice_sequence")


def scope_key(
    scope: TenancyScope,
    partition: InvoiceScopePartition = InvoiceScopePartition.BRANCH,
) -> str:
    """
    Key identifying which invoice sequence a scope draws from.

    ``BRANCH`` falls back to the organisation key when the caller has no
    branch (organisation-level sales).
    """
    tenant_key = f"tenant:{scope.tenant_id}"
    if partition == InvoiceScopePartition.TENANT:
        return tenant_key
    org_key = f"{tenant_key}/org:{scope.organisation_id}"
    if partition == InvoiceScopePartition.ORGANISATION or scope.branch_id is None:
        return org_key
    return f"{org_key}/branch:{scope.branch_id}"


class InvoiceSequenceAllocator(BaseService):
    """
    Allocates invoice numbers from locked counter rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT check that the number is unused in ``sales_records``;
          the orchestrator's duplicate check and unique constraint do.

    Usage:
        allocator = InvoiceSequenceAllocator(session, clock, policy)
        number = allocator.next_invoice_number(scope)
        str(number)  # "INV-20250115-00001"
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SalePolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or SalePolicy()

    def scope_key(self, scope: TenancyScope) -> str:
        return scope_key(scope, self._policy.invoice_scope)

    def prefix_for(self, business_date: date) -> str:
        return f"{self._policy.invoice_prefix}-{business_date:%Y%m%d}"

    def business_date(self) -> date:
        return self._clock.business_date(self._policy.business_utc_offset_minutes)

    def _lock_counter(self, prefix: str, key: str) -> InvoiceCounter | None:
        return self.session.execute(
            select(InvoiceCounter)
            .where(InvoiceCounter.prefix == prefix, InvoiceCounter.scope_key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _number(self, prefix: str, value: int, key: str) -> InvoiceNumber:
        return InvoiceNumber(
            prefix=prefix,
            number=value,
            scope_key=key,
            width=self._policy.invoice_number_width,
        )

    def next_invoice_number(
        self, scope: TenancyScope, business_date: date | None = None
    ) -> InvoiceNumber:
        """
        Lock (or create) the counter for today's prefix and increment it.

        Postconditions:
            - Returns a number strictly greater than any previously issued
              for the same (prefix, scope_key).
            - The counter row stays locked until the caller's transaction
              ends.
        """
        prefix = self.prefix_for(business_date or self.business_date())
        key = self.scope_key(scope)

        counter = self._lock_counter(prefix, key)
        if counter is None:
            savepoint = self.session.begin_nested()
            try:
                counter = InvoiceCounter(
                    prefix=prefix,
                    scope_key=key,
                    last_number=1,
                    tenant_id=scope.tenant_id,
                    organisation_id=scope.organisation_id,
                    branch_id=scope.branch_id,
                    created_by_id=scope.actor_id,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                number = self._number(prefix, 1, key)
                logger.info(
                    "invoice_number_allocated",
                    extra={"invoice_no": number.value, "scope_key": key, "counter_created": True},
                )
                return number
            except IntegrityError:
                # Another transaction created the counter first
                logger.debug(
                    "invoice_counter_race_retry",
                    extra={"prefix": prefix, "scope_key": key},
                )
                savepoint.rollback()
                counter = self._lock_counter(prefix, key)
                if counter is None:
                    raise

        counter.last_number += 1
        counter.updated_by_id = scope.actor_id
        self.session.flush()

        number = self._number(prefix, counter.last_number, key)
        logger.info(
            "invoice_number_allocated",
            extra={"invoice_no": number.value, "scope_key": key, "counter_created": False},
        )
        return number

    def last_invoice_number(self, scope: TenancyScope) -> InvoiceNumber | None:
        """
        The most recently issued number for the scope, without incrementing.

        Prefixes embed the business date, so the greatest prefix is the
        latest day.  Returns None when the scope has never issued a number.
        """
        key = self.scope_key(scope)
        counter = self.session.execute(
            select(InvoiceCounter)
            .where(InvoiceCounter.scope_key == key)
            .order_by(InvoiceCounter.prefix.desc(), InvoiceCounter.updated_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if counter is None:
            return None
        return self._number(counter.prefix, counter.last_number, key)
