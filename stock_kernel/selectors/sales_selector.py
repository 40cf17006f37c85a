"""
SaleSelector -- read model for recorded sales.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import PaymentView, SaleItemView, SaleView, TenancyScope
from stock_kernel.models.sales import PaymentHistory, SalesRecord, SalesRecordItem
from stock_kernel.selectors.base import BaseSelector


class SaleSelector(BaseSelector):
    """Loads a sale with its live items and payments."""

    def get_sale(self, sale_id: UUID, scope: TenancyScope) -> SaleView | None:
        """
        Return the sale if it is live and inside the caller's scope.

        Soft-deleted items and payments are omitted; a voided sale returns
        None.
        """
        branch_clause = (
            SalesRecord.branch_id.is_(None)
            if scope.branch_id is None
            else SalesRecord.branch_id == scope.branch_id
        )
        sale = self.session.execute(
            select(SalesRecord).where(
                SalesRecord.id == sale_id,
                SalesRecord.deleted_at.is_(None),
                SalesRecord.tenant_id == scope.tenant_id,
                SalesRecord.organisation_id == scope.organisation_id,
                branch_clause,
            )
        ).scalar_one_or_none()
        if sale is None:
            return None

        items = self.session.execute(
            select(SalesRecordItem)
            .where(
                SalesRecordItem.sales_record_id == sale.id,
                SalesRecordItem.deleted_at.is_(None),
            )
            .order_by(SalesRecordItem.line_no)
        ).scalars()
        payments = self.session.execute(
            select(PaymentHistory)
            .where(
                PaymentHistory.sales_record_id == sale.id,
                PaymentHistory.deleted_at.is_(None),
            )
            .order_by(PaymentHistory.payment_date)
        ).scalars()

        return SaleView(
            id=sale.id,
            invoice_no=sale.invoice_no,
            date=sale.date,
            customer_id=sale.customer_id,
            total_amount=sale.total_amount,
            paid_amount=sale.paid_amount,
            is_paid=sale.is_paid,
            is_partially_paid=sale.is_partially_paid,
            items=tuple(
                SaleItemView(
                    id=item.id,
                    product_id=item.product_id,
                    stock_id=item.stock_id,
                    branch_stock_id=item.branch_stock_id,
                    qty=item.qty,
                    loose_qty=item.loose_qty,
                    price=item.price,
                    mrp=item.mrp,
                    amount=item.amount,
                    tax_percentage=item.tax_percentage,
                )
                for item in items
            ),
            payments=tuple(
                PaymentView(
                    id=payment.id,
                    amount_paid=payment.amount_paid,
                    payment_mode=payment.payment_mode,
                    note=payment.note,
                )
                for payment in payments
            ),
        )
