"""
Module: stock_kernel.models.stock
Responsibility: ORM persistence for stock batches.  An organisation keeps
    its batches in ``stock_audits``; each branch keeps the packs allocated
    to it in ``branch_stock``.  Both tables share one column set.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - available_quantity >= 0 and available_loose_quantity >= 0 (database
      CHECK constraints; the ledger's planner rejects first).
    - Rows are mutated only through ``stock_kernel.services.stock_ledger``
      with a guarded UPDATE; they are soft-deleted, never hard-deleted.

Failure modes:
    - IntegrityError if a write would drive a quantity negative (CHECK).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.models.catalog import Product


class StockBatchColumns:
    """Columns shared by organisation and branch batches."""

    # Purchase invoice the batch arrived on
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    batch_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    mfg_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Sealed packs
    available_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # Loose units from opened packs
    available_loose_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    sell_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    buy_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    mrp: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class StockAudit(StockBatchColumns, TrackedBase):
    """Organisation-level stock batch."""

    __tablename__ = "stock_audits"

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_stock_audit_qty"),
        CheckConstraint(
            "available_loose_quantity >= 0", name="ck_stock_audit_loose_qty"
        ),
        Index("idx_stock_audit_scope", "tenant_id", "organisation_id"),
        Index("idx_stock_audit_product", "product_id"),
    )

    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    product: Mapped[Product] = relationship(Product)

    def __repr__(self) -> str:
        return (
            f"<StockAudit {self.batch_no} packs={self.available_quantity} "
            f"loose={self.available_loose_quantity}>"
        )


class BranchStock(StockBatchColumns, TrackedBase):
    """Branch-level batch allocated from a ``stock_audits`` row."""

    __tablename__ = "branch_stock"

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_branch_stock_qty"),
        CheckConstraint(
            "available_loose_quantity >= 0", name="ck_branch_stock_loose_qty"
        ),
        Index("idx_branch_stock_scope", "tenant_id", "organisation_id", "branch_id"),
        Index("idx_branch_stock_source", "stock_audit_id"),
    )

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    stock_audit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_audits.id"),
        nullable=False,
    )

    product: Mapped[Product] = relationship(Product)

    def __repr__(self) -> str:
        return (
            f"<BranchStock {self.batch_no} packs={self.available_quantity} "
            f"loose={self.available_loose_quantity}>"
        )
