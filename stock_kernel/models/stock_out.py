"""
Module: stock_kernel.models.stock_out
Responsibility: Record of stock removed from a batch outside a sale
    (damage, expiry, return to supplier).  Written in the same transaction
    as the ledger deduction it documents.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class StockOut(TrackedBase):
    __tablename__ = "stock_outs"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_out_qty"),
        CheckConstraint("loose_quantity >= 0", name="ck_stock_out_loose_qty"),
        Index("idx_stock_out_scope", "tenant_id", "organisation_id", "branch_id"),
    )

    # Exactly one of these is set, matching the ledger the stock left
    stock_audit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("stock_audits.id"),
        nullable=True,
    )
    branch_stock_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("branch_stock.id"),
        nullable=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loose_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    out_reason: Mapped[str] = mapped_column(String(100), nullable=False)
    out_date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<StockOut {self.out_reason} qty={self.quantity} loose={self.loose_quantity}>"
