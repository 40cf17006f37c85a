"""
Tests for SaleTransactionOrchestrator.update_sale.

Pins both edit stock policies:
- METADATA_ONLY rewrites header and lines, stock untouched.
- RECONCILE reverts the old lines and deducts the new ones atomically.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from stock_kernel.domain.dtos import (
    PaymentMode,
    SaleDraft,
    SaleLineDraft,
    SaleUpdate,
)
from stock_kernel.domain.policy import SaleEditStockPolicy, SalePolicy
from stock_kernel.exceptions import (
    DuplicateInvoiceError,
    InsufficientStockError,
    SaleNotFoundError,
    StockValidationError,
)
from stock_kernel.models.sales import SalesRecord, SalesRecordItem
from stock_kernel.selectors.sales_selector import SaleSelector
from stock_kernel.services.sale_orchestrator import SaleTransactionOrchestrator


def line(batch, qty=0, loose_qty=0, price="25.00", line_id=None):
    return SaleLineDraft(
        id=line_id,
        product_id=batch.product_id,
        stock_id=batch.id,
        qty=qty,
        loose_qty=loose_qty,
        price=Decimal(price),
    )


def sell(orchestrator, scope, *lines, **kwargs):
    draft = SaleDraft(
        date=date(2025, 1, 15), customer_id=uuid4(), items=tuple(lines), **kwargs
    )
    return orchestrator.create_sale(draft, scope)


def live_items(session, sale_id):
    return list(
        session.execute(
            select(SalesRecordItem)
            .where(
                SalesRecordItem.sales_record_id == sale_id,
                SalesRecordItem.deleted_at.is_(None),
            )
            .order_by(SalesRecordItem.line_no)
        ).scalars()
    )


def levels(session, batch):
    session.expire(batch)
    return batch.available_quantity, batch.available_loose_quantity


@pytest.fixture
def reconciling(session, deterministic_clock):
    return SaleTransactionOrchestrator(
        session,
        deterministic_clock,
        SalePolicy(edit_stock_policy=SaleEditStockPolicy.RECONCILE),
    )


class TestHeaderUpdate:

    def test_payment_fields_rederive_flags(self, session, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=2))

        orchestrator.update_sale(
            sale.sale_id,
            SaleUpdate(paid_amount=Decimal("20.00"), payment_mode=PaymentMode.CARD),
            org_scope,
        )

        record = session.get(SalesRecord, sale.sale_id)
        assert record.payment_mode == "card"
        assert record.paid_amount == Decimal("20.00")
        assert record.is_paid is False
        assert record.is_partially_paid is True
        assert record.updated_by_id == org_scope.actor_id

    def test_rename_invoice(self, session, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=1))

        result = orchestrator.update_sale(sale.sale_id, SaleUpdate(invoice_no="MANUAL-1"), org_scope)

        assert result.invoice_no == "MANUAL-1"

    def test_rename_to_taken_invoice_rejected(self, session, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        first = sell(orchestrator, org_scope, line(batch, qty=1))
        second = sell(orchestrator, org_scope, line(batch, qty=1))

        with pytest.raises(DuplicateInvoiceError):
            orchestrator.update_sale(
                second.sale_id, SaleUpdate(invoice_no=first.invoice_no), org_scope
            )
        assert session.get(SalesRecord, second.sale_id).invoice_no == second.invoice_no

    def test_keeping_own_invoice_no_is_fine(self, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=1))

        result = orchestrator.update_sale(sale.sale_id, SaleUpdate(invoice_no=sale.invoice_no), org_scope)

        assert result.invoice_no == sale.invoice_no

    def test_unknown_sale(self, orchestrator, org_scope):
        with pytest.raises(SaleNotFoundError):
            orchestrator.update_sale(uuid4(), SaleUpdate(discount=Decimal("1")), org_scope)

    def test_negative_money_rejected(self, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=1))
        with pytest.raises(StockValidationError):
            orchestrator.update_sale(sale.sale_id, SaleUpdate(total_amount=Decimal("-1")), org_scope)


class TestMetadataOnlyPolicy:

    def test_line_diff_without_stock_movement(
        self, session, orchestrator, org_scope, create_stock_audit
    ):
        a = create_stock_audit(packs=5, loose=0, batch_no="A")
        b = create_stock_audit(packs=5, loose=0, batch_no="B")
        sale = sell(orchestrator, org_scope, line(a, qty=1), line(b, qty=1))
        kept, dropped = live_items(session, sale.sale_id)

        result = orchestrator.update_sale(
            sale.sale_id,
            SaleUpdate(items=(line(a, qty=3, line_id=kept.id), line(b, loose_qty=4))),
            org_scope,
        )

        items = live_items(session, sale.sale_id)
        assert result.line_count == 2
        assert result.units_deducted == 0
        assert result.units_reverted == 0
        assert items[0].id == kept.id
        assert items[0].qty == 3
        assert items[1].id not in (kept.id, dropped.id)
        assert items[1].loose_qty == 4
        assert session.get(SalesRecordItem, dropped.id).deleted_at is not None
        # Stock reflects the original sale only
        assert levels(session, a) == (4, 0)
        assert levels(session, b) == (4, 0)

    def test_unknown_line_id_rejected(self, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=1))

        with pytest.raises(StockValidationError) as exc_info:
            orchestrator.update_sale(
                sale.sale_id, SaleUpdate(items=(line(batch, qty=1, line_id=uuid4()),)), org_scope
            )
        assert exc_info.value.field == "items[0].id"

    def test_selector_sees_edited_lines(self, session, orchestrator, org_scope, create_stock_audit):
        batch = create_stock_audit()
        sale = sell(orchestrator, org_scope, line(batch, qty=1))
        (item,) = live_items(session, sale.sale_id)

        orchestrator.update_sale(
            sale.sale_id, SaleUpdate(items=(line(batch, qty=2, line_id=item.id),)), org_scope
        )

        view = SaleSelector(session).get_sale(sale.sale_id, org_scope)
        assert [i.qty for i in view.items] == [2]


class TestReconcilePolicy:

    def test_revert_then_deduct(self, session, reconciling, org_scope, create_stock_audit):
        batch = create_stock_audit(packs=5, loose=0, pack_size=10)
        sale = sell(reconciling, org_scope, line(batch, qty=2))
        (item,) = live_items(session, sale.sale_id)
        assert levels(session, batch) == (3, 0)

        result = reconciling.update_sale(
            sale.sale_id, SaleUpdate(items=(line(batch, qty=1, line_id=item.id),)), org_scope
        )

        assert result.units_reverted == 20
        assert result.units_deducted == 10
        assert levels(session, batch) == (4, 0)

    def test_move_line_to_another_batch(self, session, reconciling, org_scope, create_stock_audit):
        a = create_stock_audit(packs=5, loose=0, batch_no="A")
        b = create_stock_audit(packs=5, loose=0, batch_no="B")
        sale = sell(reconciling, org_scope, line(a, qty=2))

        reconciling.update_sale(sale.sale_id, SaleUpdate(items=(line(b, qty=2),)), org_scope)

        assert levels(session, a) == (5, 0)
        assert levels(session, b) == (3, 0)

    def test_failed_reconcile_rolls_back(self, session, reconciling, org_scope, create_stock_audit):
        batch = create_stock_audit(packs=5, loose=0, pack_size=10)
        sale = sell(reconciling, org_scope, line(batch, qty=2))
        (item,) = live_items(session, sale.sale_id)

        with pytest.raises(InsufficientStockError):
            reconciling.update_sale(
                sale.sale_id,
                SaleUpdate(
                    items=(line(batch, qty=9, line_id=item.id),),
                    paid_amount=Decimal("5"),
                ),
                org_scope,
            )

        assert levels(session, batch) == (3, 0)
        session.expire_all()
        (unchanged,) = live_items(session, sale.sale_id)
        assert unchanged.qty == 2
        assert session.get(SalesRecord, sale.sale_id).paid_amount == Decimal("0")

    def test_header_only_edit_moves_no_stock(self, session, reconciling, org_scope, create_stock_audit):
        batch = create_stock_audit(packs=5, loose=0)
        sale = sell(reconciling, org_scope, line(batch, qty=2))

        result = reconciling.update_sale(
            sale.sale_id, SaleUpdate(discount=Decimal("2.50")), org_scope
        )

        assert result.units_reverted == 0
        assert levels(session, batch) == (3, 0)

    def test_update_logged_with_policy(self, reconciling, org_scope, create_stock_audit, captured_logs):
        batch = create_stock_audit(packs=5, loose=0)
        sale = sell(reconciling, org_scope, line(batch, qty=1))

        reconciling.update_sale(sale.sale_id, SaleUpdate(items=(line(batch, qty=2),)), org_scope)

        started = next(r for r in captured_logs() if r["message"] == "sale_update_started")
        assert started["edit_stock_policy"] == "reconcile"
        diffed = next(r for r in captured_logs() if r["message"] == "sale_items_diffed")
        assert (diffed["updated"], diffed["inserted"], diffed["deleted"]) == (0, 1, 1)
