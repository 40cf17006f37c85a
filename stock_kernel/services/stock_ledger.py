"""
StockLedger -- locked validate-and-deduct on stock batch rows.

Responsibility:
    Owns every change to a batch's ``available_quantity`` (sealed packs) and
    ``available_loose_quantity`` (loose units).  Two ledgers share one
    implementation: ``OrganisationStockLedger`` over ``stock_audits`` and
    ``BranchStockLedger`` over ``branch_stock``.  Callers pick one with
    :func:`ledger_for` and the caller's :class:`LedgerRole`.

Architecture position:
    Kernel > Services -- imperative shell.  The arithmetic lives in
    ``stock_kernel.domain.pack_math.plan_deduction``; this module only loads,
    locks and writes.

Invariants enforced:
    - Row lock first: the batch is read with ``SELECT ... FOR UPDATE``
      (joined to its product and variant for ``pack_size``) before any
      validation.
    - Compare-and-set write: the UPDATE repeats the quantities that were
      read under lock in its WHERE clause.  An affected-row count other
      than 1 raises StockConcurrencyError; the in-memory read is never
      trusted on its own.
    - Rejections leave the row untouched (no plan, no write).
    - Flush-only: runs inside the caller's transaction and never commits.

Failure modes:
    - BatchNotFoundError: row missing, soft-deleted, outside the caller's
      tenancy scope, or its product/variant missing.
    - InvalidPackSizeError: variant pack_size present but not a positive int.
    - InsufficientStockError / CannotBreakPackError / InsufficientPacksError
      from the planner.
    - StockConcurrencyError: guarded UPDATE matched no row.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_kernel.domain.dtos import LedgerRole, TenancyScope
from stock_kernel.domain.pack_math import (
    DeductionPlan,
    PackQuantity,
    plan_deduction,
    require_non_negative_int,
    resolve_pack_size,
)
from stock_kernel.exceptions import BatchNotFoundError, StockConcurrencyError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.catalog import Product, Variant
from stock_kernel.models.stock import BranchStock, StockAudit
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")


@dataclass(frozen=True)
class LockedBatch:
    """A batch row read under lock, with its resolved pack size."""

    batch_id: UUID
    role: LedgerRole
    product_id: UUID
    pack_size: int
    available: PackQuantity
    row: StockAudit | BranchStock = field(compare=False, repr=False)

    @property
    def total_units(self) -> int:
        return self.available.units(self.pack_size)


class StockLedger(BaseService):
    """
    Validate-and-deduct over one batch table.

    Contract:
        ``validate`` and ``deduct`` take a pack count and a loose-unit count
        for one batch.  ``deduct`` returns the applied DeductionPlan;
        ``revert`` adds units back with an atomic increment.
    """

    model: type[StockAudit] | type[BranchStock]
    role: LedgerRole

    def __init__(self, session: Session, default_pack_size: int = 1):
        super().__init__(session)
        self._default_pack_size = default_pack_size

    @abstractmethod
    def _scope_criteria(self, scope: TenancyScope) -> list:
        """WHERE clauses restricting the batch table to the caller's scope."""

    def get_locked(self, batch_id: UUID, scope: TenancyScope) -> LockedBatch:
        """
        Lock the batch row and resolve its pack size.

        Raises:
            BatchNotFoundError, InvalidPackSizeError.
        """
        model = self.model
        row = self.session.execute(
            select(model, Product.deleted_at, Variant.id, Variant.pack_size)
            .join(Product, Product.id == model.product_id)
            .outerjoin(Variant, Variant.id == Product.variant_id)
            .where(
                model.id == batch_id,
                model.deleted_at.is_(None),
                *self._scope_criteria(scope),
            )
            .with_for_update(of=model)
            .execution_options(populate_existing=True)
        ).one_or_none()

        if row is None:
            raise BatchNotFoundError(str(batch_id))
        batch, product_deleted_at, variant_id, raw_pack_size = row
        if product_deleted_at is not None:
            raise BatchNotFoundError(str(batch_id), reason="product deleted")
        if variant_id is None:
            raise BatchNotFoundError(str(batch_id), reason="product has no variant")

        return LockedBatch(
            batch_id=batch.id,
            role=self.role,
            product_id=batch.product_id,
            pack_size=resolve_pack_size(raw_pack_size, self._default_pack_size),
            available=PackQuantity(
                packs=batch.available_quantity,
                loose=batch.available_loose_quantity,
            ),
            row=batch,
        )

    def lock_all(
        self, batch_ids: Iterable[UUID], scope: TenancyScope
    ) -> dict[UUID, LockedBatch]:
        """Lock distinct batches in ascending id order (deadlock avoidance)."""
        locked: dict[UUID, LockedBatch] = {}
        for batch_id in sorted(set(batch_ids), key=str):
            locked[batch_id] = self.get_locked(batch_id, scope)
        return locked

    def _plan(
        self, batch_id: UUID, qty: int, loose_qty: int, scope: TenancyScope
    ) -> tuple[LockedBatch, DeductionPlan]:
        requested = PackQuantity(
            packs=require_non_negative_int(qty, "qty"),
            loose=require_non_negative_int(loose_qty, "loose_qty"),
        )
        locked = self.get_locked(batch_id, scope)
        plan = plan_deduction(
            locked.pack_size, locked.available, requested, str(batch_id)
        )
        return locked, plan

    def validate(
        self, batch_id: UUID, qty: int, loose_qty: int, scope: TenancyScope
    ) -> DeductionPlan:
        """Check a deduction against the locked row without writing."""
        return self._plan(batch_id, qty, loose_qty, scope)[1]

    def deduct(
        self, batch_id: UUID, qty: int, loose_qty: int, scope: TenancyScope
    ) -> DeductionPlan:
        """
        Validate and apply a deduction.

        Not idempotent: each call removes stock again.
        """
        locked, plan = self._plan(batch_id, qty, loose_qty, scope)
        result = self.session.execute(
            update(self.model)
            .where(
                self.model.id == batch_id,
                self.model.available_quantity == plan.before.packs,
                self.model.available_loose_quantity == plan.before.loose,
                self.model.deleted_at.is_(None),
            )
            .values(
                available_quantity=plan.after.packs,
                available_loose_quantity=plan.after.loose,
                updated_by_id=scope.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "stock_guarded_update_missed",
                extra={
                    "batch_id": str(batch_id),
                    "ledger": self.role.value,
                    "rowcount": result.rowcount,
                },
            )
            raise StockConcurrencyError(str(batch_id))
        self._expire(locked)

        logger.info(
            "stock_deducted",
            extra={
                "batch_id": str(batch_id),
                "ledger": self.role.value,
                "pack_size": plan.pack_size,
                "packs_before": plan.before.packs,
                "loose_before": plan.before.loose,
                "packs_after": plan.after.packs,
                "loose_after": plan.after.loose,
                "packs_opened": plan.packs_opened,
                "units_deducted": plan.units_deducted,
            },
        )
        return plan

    def revert(
        self, batch_id: UUID, qty: int, loose_qty: int, scope: TenancyScope
    ) -> PackQuantity:
        """
        Add packs and loose units back to a batch.

        Uses an atomic increment so concurrent reverts compose.  Loose units
        are not folded back into packs.

        Returns:
            The batch quantities after the revert.
        """
        packs = require_non_negative_int(qty, "qty")
        loose = require_non_negative_int(loose_qty, "loose_qty")
        locked = self.get_locked(batch_id, scope)

        result = self.session.execute(
            update(self.model)
            .where(self.model.id == batch_id, self.model.deleted_at.is_(None))
            .values(
                available_quantity=self.model.available_quantity + packs,
                available_loose_quantity=self.model.available_loose_quantity + loose,
                updated_by_id=scope.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StockConcurrencyError(str(batch_id))
        self._expire(locked)

        after = PackQuantity(
            packs=locked.available.packs + packs,
            loose=locked.available.loose + loose,
        )
        logger.info(
            "stock_reverted",
            extra={
                "batch_id": str(batch_id),
                "ledger": self.role.value,
                "packs_added": packs,
                "loose_added": loose,
                "packs_after": after.packs,
                "loose_after": after.loose,
            },
        )
        return after

    def _expire(self, locked: LockedBatch) -> None:
        if locked.row in self.session:
            self.session.expire(locked.row)


class OrganisationStockLedger(StockLedger):
    """Organisation-level batches (``stock_audits``)."""

    model = StockAudit
    role = LedgerRole.ORGANISATION

    def _scope_criteria(self, scope: TenancyScope) -> list:
        return [
            StockAudit.tenant_id == scope.tenant_id,
            StockAudit.organisation_id == scope.organisation_id,
        ]


class BranchStockLedger(StockLedger):
    """Branch-level batches (``branch_stock``); scoped to the caller's branch."""

    model = BranchStock
    role = LedgerRole.BRANCH

    def _scope_criteria(self, scope: TenancyScope) -> list:
        return [
            BranchStock.tenant_id == scope.tenant_id,
            BranchStock.organisation_id == scope.organisation_id,
            BranchStock.branch_id == scope.branch_id,
        ]


_LEDGERS: dict[LedgerRole, type[StockLedger]] = {
    LedgerRole.ORGANISATION: OrganisationStockLedger,
    LedgerRole.BRANCH: BranchStockLedger,
}


def ledger_for(
    role: LedgerRole, session: Session, default_pack_size: int = 1
) -> StockLedger:
    """Return the stock ledger that serves ``role``."""
    return _LEDGERS[LedgerRole(role)](session, default_pack_size=default_pack_size)
