"""
Module: stock_kernel.models.sales
Responsibility: ORM persistence for a sale: the SalesRecord header, its
    SalesRecordItem lines and the PaymentHistory rows recorded against it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(invoice_scope_key, invoice_no): an invoice number is issued at
      most once per invoice scope.  The orchestrator checks first; this
      constraint is the backstop under concurrency.
    - Each item references exactly the batch of the ledger that sold it:
      ``stock_id`` for organisation sales, ``branch_stock_id`` for branch
      sales.
    - Items and payments carry the tenancy scope of their sale.

Failure modes:
    - IntegrityError on duplicate (invoice_scope_key, invoice_no), mapped to
      DuplicateInvoiceError by the orchestrator.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class ScopedColumns:
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class SalesRecord(ScopedColumns, TrackedBase):
    """Sale header."""

    __tablename__ = "sales_records"

    __table_args__ = (
        UniqueConstraint(
            "invoice_scope_key", "invoice_no", name="uq_sales_record_invoice"
        ),
        Index("idx_sales_record_scope", "tenant_id", "organisation_id", "branch_id"),
        Index("idx_sales_record_customer", "customer_id"),
    )

    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_scope_key: Mapped[str] = mapped_column(String(200), nullable=False)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    sale_type: Mapped[str] = mapped_column(String(20), nullable=False, default="retail")
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="cash")

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sub_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    value_of_goods: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_gst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    discount_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="percentage"
    )
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_gst_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_partially_paid: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    items: Mapped[list[SalesRecordItem]] = relationship(
        "SalesRecordItem",
        back_populates="sales_record",
        order_by="SalesRecordItem.line_no",
    )
    payments: Mapped[list[PaymentHistory]] = relationship(
        "PaymentHistory",
        back_populates="sales_record",
        order_by="PaymentHistory.created_at",
    )

    def __repr__(self) -> str:
        return f"<SalesRecord {self.invoice_no}>"


class SalesRecordItem(ScopedColumns, TrackedBase):
    """One sold line: ``qty`` packs plus ``loose_qty`` loose units."""

    __tablename__ = "sales_records_items"

    __table_args__ = (
        Index("idx_sales_item_record", "sales_record_id"),
        Index("idx_sales_item_stock", "stock_id"),
        Index("idx_sales_item_branch_stock", "branch_stock_id"),
    )

    sales_record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_records.id"),
        nullable=False,
    )

    # Request order, so edits and reverts replay lines deterministically
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    stock_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("stock_audits.id"),
        nullable=True,
    )
    branch_stock_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("branch_stock.id"),
        nullable=True,
    )

    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loose_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    price: Mapped[Decimal] = mapped_column(nullable=False)
    mrp: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )

    sales_record: Mapped[SalesRecord] = relationship(
        SalesRecord, back_populates="items"
    )

    def __repr__(self) -> str:
        return f"<SalesRecordItem qty={self.qty} loose={self.loose_qty}>"


class PaymentHistory(ScopedColumns, TrackedBase):
    """A payment recorded against a sale."""

    __tablename__ = "payment_histories"

    __table_args__ = (Index("idx_payment_history_record", "sales_record_id"),)

    sales_record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales_records.id"),
        nullable=False,
    )

    payment_date: Mapped[dt.datetime] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    sales_record: Mapped[SalesRecord] = relationship(
        SalesRecord, back_populates="payments"
    )

    def __repr__(self) -> str:
        return f"<PaymentHistory {self.amount_paid} {self.payment_mode}>"
