"""
Tests for StockMovementService: stock-outs and branch allocation.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.dtos import BranchAllocationRequest, StockOutRequest
from stock_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientStockError,
    StockValidationError,
)
from stock_kernel.models.stock import BranchStock
from stock_kernel.models.stock_out import StockOut


def levels(session, batch):
    session.expire(batch)
    return batch.available_quantity, batch.available_loose_quantity


def stock_out_count(session):
    return session.execute(select(func.count()).select_from(StockOut)).scalar_one()


class TestStockOut:

    def test_organisation_stock_out(self, session, movement_service, org_scope, create_stock_audit):
        batch = create_stock_audit(packs=5, loose=3, pack_size=10)

        result = movement_service.record_stock_out(
            StockOutRequest(
                batch_id=batch.id,
                out_reason=" expired ",
                out_date=date(2025, 1, 15),
                qty=1,
                loose_qty=5,
                note="shelf 4",
            ),
            org_scope,
        )

        assert result.operation == "stock_out"
        assert result.units == 15
        assert levels(session, batch) == (3, 8)
        record = session.get(StockOut, result.record_id)
        assert record.stock_audit_id == batch.id
        assert record.branch_stock_id is None
        assert (record.quantity, record.loose_quantity) == (1, 5)
        assert record.out_reason == "expired"
        assert record.note == "shelf 4"
        assert record.created_by_id == org_scope.actor_id

    def test_branch_stock_out(self, session, movement_service, branch_scope, create_branch_stock):
        batch = create_branch_stock(packs=2, loose=0)

        result = movement_service.record_stock_out(
            StockOutRequest(batch_id=batch.id, out_reason="damaged", out_date=date(2025, 1, 15), qty=1),
            branch_scope,
        )

        record = session.get(StockOut, result.record_id)
        assert record.branch_stock_id == batch.id
        assert record.stock_audit_id is None
        assert record.branch_id == branch_scope.branch_id
        assert levels(session, batch) == (1, 0)

    def test_zero_units_rejected(self, movement_service, org_scope, create_stock_audit):
        batch = create_stock_audit()
        with pytest.raises(StockValidationError) as exc_info:
            movement_service.record_stock_out(
                StockOutRequest(batch_id=batch.id, out_reason="expired", out_date=date(2025, 1, 15)),
                org_scope,
            )
        assert exc_info.value.field == "qty"

    def test_blank_reason_rejected(self, movement_service, org_scope, create_stock_audit):
        batch = create_stock_audit()
        with pytest.raises(StockValidationError) as exc_info:
            movement_service.record_stock_out(
                StockOutRequest(batch_id=batch.id, out_reason="   ", out_date=date(2025, 1, 15), qty=1),
                org_scope,
            )
        assert exc_info.value.field == "out_reason"

    def test_insufficient_stock_writes_nothing(
        self, session, movement_service, org_scope, create_stock_audit
    ):
        batch = create_stock_audit(packs=1, loose=0)

        with pytest.raises(InsufficientStockError):
            movement_service.record_stock_out(
                StockOutRequest(batch_id=batch.id, out_reason="expired", out_date=date(2025, 1, 15), qty=2),
                org_scope,
            )

        assert levels(session, batch) == (1, 0)
        assert stock_out_count(session) == 0


class TestAllocateToBranch:

    def test_packs_move_into_new_branch_batch(
        self, session, movement_service, org_scope, branch_id, create_stock_audit
    ):
        source = create_stock_audit(packs=5, loose=3, pack_size=10)

        result = movement_service.allocate_to_branch(
            BranchAllocationRequest(stock_audit_id=source.id, branch_id=branch_id, quantity=2),
            org_scope,
        )

        assert levels(session, source) == (3, 3)
        assert result.units == 20
        branch_batch = session.get(BranchStock, result.target_batch_id)
        assert branch_batch.stock_audit_id == source.id
        assert branch_batch.branch_id == branch_id
        assert (branch_batch.available_quantity, branch_batch.available_loose_quantity) == (2, 0)
        assert branch_batch.batch_no == source.batch_no
        assert branch_batch.expiry_date == source.expiry_date
        assert branch_batch.sell_price == source.sell_price
        assert branch_batch.mrp == source.mrp

    def test_every_allocation_creates_a_new_row(
        self, session, movement_service, org_scope, branch_id, create_stock_audit
    ):
        source = create_stock_audit(packs=5, loose=0)
        request = BranchAllocationRequest(stock_audit_id=source.id, branch_id=branch_id, quantity=1)

        first = movement_service.allocate_to_branch(request, org_scope)
        second = movement_service.allocate_to_branch(request, org_scope)

        assert first.target_batch_id != second.target_batch_id
        assert levels(session, source) == (3, 0)

    def test_sell_price_override(
        self, session, movement_service, org_scope, branch_id, create_stock_audit
    ):
        source = create_stock_audit(packs=5, loose=0)

        result = movement_service.allocate_to_branch(
            BranchAllocationRequest(
                stock_audit_id=source.id,
                branch_id=branch_id,
                quantity=1,
                sell_price=Decimal("27.50"),
            ),
            org_scope,
        )

        assert session.get(BranchStock, result.target_batch_id).sell_price == Decimal("27.50")

    def test_zero_quantity_rejected(self, movement_service, org_scope, branch_id, create_stock_audit):
        source = create_stock_audit()
        with pytest.raises(StockValidationError) as exc_info:
            movement_service.allocate_to_branch(
                BranchAllocationRequest(stock_audit_id=source.id, branch_id=branch_id, quantity=0),
                org_scope,
            )
        assert exc_info.value.field == "quantity"

    def test_cannot_allocate_more_than_available(
        self, session, movement_service, org_scope, branch_id, create_stock_audit
    ):
        source = create_stock_audit(packs=2, loose=0)

        with pytest.raises(InsufficientStockError):
            movement_service.allocate_to_branch(
                BranchAllocationRequest(stock_audit_id=source.id, branch_id=branch_id, quantity=3),
                org_scope,
            )

        assert levels(session, source) == (2, 0)
        count = session.execute(select(func.count()).select_from(BranchStock)).scalar_one()
        assert count == 0

    def test_allocation_logged(
        self, movement_service, org_scope, branch_id, create_stock_audit, captured_logs
    ):
        source = create_stock_audit(packs=5, loose=0)

        result = movement_service.allocate_to_branch(
            BranchAllocationRequest(stock_audit_id=source.id, branch_id=branch_id, quantity=2),
            org_scope,
        )

        record = next(r for r in captured_logs() if r["message"] == "branch_stock_allocated")
        assert record["packs"] == 2
        assert record["branch_stock_id"] == str(result.target_batch_id)


class TestRevertBranchAllocation:

    def test_packs_return_to_source(
        self, session, movement_service, org_scope, create_stock_audit, create_branch_stock
    ):
        source = create_stock_audit(packs=10, loose=0)
        branch_batch = create_branch_stock(packs=4, loose=2, source=source)

        result = movement_service.revert_branch_allocation(branch_batch.id, 3, org_scope)

        assert result.target_batch_id == source.id
        assert levels(session, branch_batch) == (1, 2)
        assert levels(session, source) == (13, 0)

    def test_branch_can_revert_its_own_batch(
        self, session, movement_service, branch_scope, create_stock_audit, create_branch_stock
    ):
        source = create_stock_audit(packs=10, loose=0)
        branch_batch = create_branch_stock(packs=4, loose=0, source=source)

        movement_service.revert_branch_allocation(branch_batch.id, 4, branch_scope)

        assert levels(session, branch_batch) == (0, 0)
        assert levels(session, source) == (14, 0)

    def test_other_branch_batch_not_found(
        self, movement_service, branch_scope, create_branch_stock
    ):
        foreign = create_branch_stock(for_branch=uuid4())
        with pytest.raises(BatchNotFoundError):
            movement_service.revert_branch_allocation(foreign.id, 1, branch_scope)

    def test_unknown_batch_not_found(self, movement_service, org_scope):
        with pytest.raises(BatchNotFoundError):
            movement_service.revert_branch_allocation(uuid4(), 1, org_scope)

    def test_insufficient_branch_packs_rolls_back(
        self, session, movement_service, org_scope, create_stock_audit, create_branch_stock
    ):
        source = create_stock_audit(packs=10, loose=0)
        branch_batch = create_branch_stock(packs=1, loose=0, source=source)

        with pytest.raises(InsufficientStockError):
            movement_service.revert_branch_allocation(branch_batch.id, 2, org_scope)

        assert levels(session, branch_batch) == (1, 0)
        assert levels(session, source) == (10, 0)
