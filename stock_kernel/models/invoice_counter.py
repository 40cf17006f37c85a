"""
Module: stock_kernel.models.invoice_counter
Responsibility: One counter row per (prefix, scope_key).  The prefix carries
    the business date (``INV-20250115``), so counters restart every day and
    per invoice scope.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(prefix, scope_key): concurrent first-use inserts collide here
      and the loser re-reads the winner's row under lock.
    - last_number only ever increases, and only through a row locked with
      SELECT ... FOR UPDATE (never MAX(invoice_no) + 1).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class InvoiceCounter(TrackedBase):
    __tablename__ = "invoice_numbers"

    __table_args__ = (
        UniqueConstraint("prefix", "scope_key", name="uq_invoice_counter_prefix_scope"),
    )

    prefix: Mapped[str] = mapped_column(String(50), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(200), nullable=False)

    last_number: Mapped[int] = mapped_column(nullable=False, default=0)

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<InvoiceCounter {self.prefix}@{self.scope_key}={self.last_number}>"
