"""
StockMovementService -- stock changes that are not sales.

Responsibility:
    Stock-outs (damaged, expired or returned goods), allocation of whole
    packs from an organisation batch to a branch, and reverting such an
    allocation.  Every change goes through the StockLedger, so the same
    row-lock and guarded-update discipline applies as for sales.

Architecture position:
    Kernel > Services.  Owns its transactions like the sale orchestrator
    (``auto_commit=True`` commits on success, rolls back on failure).

Invariants enforced:
    - Allocation conserves packs: the organisation batch loses exactly the
      packs the new branch batch starts with.
    - Revert conserves packs: the branch batch loses exactly the packs its
      source organisation batch regains.
    - When two batches are touched they are locked in ascending id order.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    BranchAllocationRequest,
    LedgerRole,
    StockMovementResult,
    StockOutRequest,
    TenancyScope,
)
from stock_kernel.domain.pack_math import require_non_negative_int
from stock_kernel.domain.policy import SalePolicy
from stock_kernel.exceptions import BatchNotFoundError, StockValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock import BranchStock, StockAudit
from stock_kernel.models.stock_out import StockOut
from stock_kernel.services.stock_ledger import (
    BranchStockLedger,
    OrganisationStockLedger,
    ledger_for,
)
from stock_kernel.services.unit_of_work import run_unit_of_work

logger = get_logger("services.stock_movement")

T = TypeVar("T")


class StockMovementService:
    """
    Non-sale stock movements.

    Usage:
        service = StockMovementService(session, clock, policy)
        service.record_stock_out(
            StockOutRequest(batch_id, out_reason="expired", out_date=today, qty=2),
            scope,
        )
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: SalePolicy | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or SalePolicy()
        self._auto_commit = auto_commit

    def _run(self, operation: str, scope: TenancyScope, work: Callable[[], T], **extra) -> T:
        return run_unit_of_work(
            self._session,
            operation,
            scope,
            work,
            auto_commit=self._auto_commit,
            lock_timeout_ms=self._policy.lock_timeout_ms,
            **extra,
        )

    # ------------------------------------------------------------------
    # Stock-out
    # ------------------------------------------------------------------

    def record_stock_out(
        self, request: StockOutRequest, scope: TenancyScope
    ) -> StockMovementResult:
        """Deduct from a batch of the caller's ledger and record why."""
        return self._run(
            "stock_out",
            scope,
            lambda: self._do_stock_out(request, scope),
            batch_id=str(request.batch_id),
        )

    def _do_stock_out(
        self, request: StockOutRequest, scope: TenancyScope
    ) -> StockMovementResult:
        qty = require_non_negative_int(request.qty, "qty")
        loose = require_non_negative_int(request.loose_qty, "loose_qty")
        if qty == 0 and loose == 0:
            raise StockValidationError("stock-out must remove at least one unit", field="qty")
        if not request.out_reason or not request.out_reason.strip():
            raise StockValidationError("out_reason is required", field="out_reason")

        ledger = ledger_for(scope.role, self._session, self._policy.default_pack_size)
        plan = ledger.deduct(request.batch_id, qty, loose, scope)

        record = StockOut(
            id=uuid4(),
            stock_audit_id=request.batch_id if scope.role == LedgerRole.ORGANISATION else None,
            branch_stock_id=request.batch_id if scope.role == LedgerRole.BRANCH else None,
            quantity=qty,
            loose_quantity=loose,
            out_reason=request.out_reason.strip(),
            out_date=request.out_date,
            note=request.note,
            tenant_id=scope.tenant_id,
            organisation_id=scope.organisation_id,
            branch_id=scope.branch_id,
            created_by_id=scope.actor_id,
        )
        self._session.add(record)
        self._session.flush()

        return StockMovementResult(
            operation="stock_out",
            batch_id=request.batch_id,
            packs=qty,
            loose=loose,
            units=plan.units_deducted,
            record_id=record.id,
        )

    # ------------------------------------------------------------------
    # Branch allocation
    # ------------------------------------------------------------------

    def allocate_to_branch(
        self, request: BranchAllocationRequest, scope: TenancyScope
    ) -> StockMovementResult:
        """Move whole packs from an organisation batch into a new branch batch."""
        return self._run(
            "branch_allocation",
            scope,
            lambda: self._do_allocate(request, scope),
            batch_id=str(request.stock_audit_id),
            target_branch_id=str(request.branch_id),
        )

    def _do_allocate(
        self, request: BranchAllocationRequest, scope: TenancyScope
    ) -> StockMovementResult:
        packs = require_non_negative_int(request.quantity, "quantity")
        if packs == 0:
            raise StockValidationError("quantity must be at least one pack", field="quantity")
        if request.sell_price is not None and request.sell_price < 0:
            raise StockValidationError("sell_price must not be negative", field="sell_price")

        org_ledger = OrganisationStockLedger(self._session, self._policy.default_pack_size)
        plan = org_ledger.deduct(request.stock_audit_id, packs, 0, scope)

        source = self._session.get(StockAudit, request.stock_audit_id)
        branch_batch = BranchStock(
            id=uuid4(),
            stock_audit_id=source.id,
            invoice_id=source.invoice_id,
            product_id=source.product_id,
            batch_no=source.batch_no,
            mfg_date=source.mfg_date,
            expiry_date=source.expiry_date,
            available_quantity=packs,
            available_loose_quantity=0,
            sell_price=request.sell_price if request.sell_price is not None else source.sell_price,
            buy_price=source.buy_price,
            mrp=source.mrp,
            tenant_id=scope.tenant_id,
            organisation_id=scope.organisation_id,
            branch_id=request.branch_id,
            created_by_id=scope.actor_id,
        )
        self._session.add(branch_batch)
        self._session.flush()

        logger.info(
            "branch_stock_allocated",
            extra={
                "stock_audit_id": str(source.id),
                "branch_stock_id": str(branch_batch.id),
                "packs": packs,
            },
        )
        return StockMovementResult(
            operation="branch_allocation",
            batch_id=source.id,
            packs=packs,
            loose=0,
            units=plan.units_deducted,
            record_id=branch_batch.id,
            target_batch_id=branch_batch.id,
        )

    def revert_branch_allocation(
        self, branch_stock_id: UUID, packs: int, scope: TenancyScope
    ) -> StockMovementResult:
        """Return ``packs`` sealed packs from a branch batch to its source batch."""
        return self._run(
            "branch_allocation_revert",
            scope,
            lambda: self._do_revert_allocation(branch_stock_id, packs, scope),
            batch_id=str(branch_stock_id),
        )

    def _do_revert_allocation(
        self, branch_stock_id: UUID, packs: int, scope: TenancyScope
    ) -> StockMovementResult:
        packs = require_non_negative_int(packs, "quantity")
        if packs == 0:
            raise StockValidationError("quantity must be at least one pack", field="quantity")

        branch_batch = self._session.get(BranchStock, branch_stock_id)
        if (
            branch_batch is None
            or branch_batch.is_deleted
            or branch_batch.tenant_id != scope.tenant_id
            or branch_batch.organisation_id != scope.organisation_id
            or (scope.branch_id is not None and branch_batch.branch_id != scope.branch_id)
        ):
            raise BatchNotFoundError(str(branch_stock_id))
        source_id = branch_batch.stock_audit_id

        branch_scope = replace(
            scope, role=LedgerRole.BRANCH, branch_id=branch_batch.branch_id
        )
        org_scope = replace(scope, role=LedgerRole.ORGANISATION)
        branch_ledger = BranchStockLedger(self._session, self._policy.default_pack_size)
        org_ledger = OrganisationStockLedger(self._session, self._policy.default_pack_size)

        # Lock both rows in ascending id order before writing either
        for batch_id in sorted((branch_stock_id, source_id), key=str):
            if batch_id == branch_stock_id:
                branch_ledger.get_locked(batch_id, branch_scope)
            else:
                org_ledger.get_locked(batch_id, org_scope)

        plan = branch_ledger.deduct(branch_stock_id, packs, 0, branch_scope)
        org_ledger.revert(source_id, packs, 0, org_scope)

        logger.info(
            "branch_stock_reverted",
            extra={
                "stock_audit_id": str(source_id),
                "branch_stock_id": str(branch_stock_id),
                "packs": packs,
            },
        )
        return StockMovementResult(
            operation="branch_allocation_revert",
            batch_id=branch_stock_id,
            packs=packs,
            loose=0,
            units=plan.units_deducted,
            target_batch_id=source_id,
        )
