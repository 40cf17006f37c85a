"""
Module: stock_kernel.models.catalog
Responsibility: Product catalogue rows the stock ledger needs for pack
    arithmetic: a Product points at its Variant, and the Variant carries the
    ``pack_size`` (units per sealed pack).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - pack_size is nullable.  NULL means "sold in single units" and the
      kernel treats it as the configured default (1).  Non-null values are
      validated by ``pack_math.resolve_pack_size`` when a batch is locked,
      not here, so legacy rows can still be read.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class Variant(TrackedBase):
    """Packaging variant (e.g. "strip of 10")."""

    __tablename__ = "variants"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    pack_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Variant {self.name} pack_size={self.pack_size}>"


class Product(TrackedBase):
    """Sellable product scoped to a tenant/organisation."""

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_scope", "tenant_id", "organisation_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    variant_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("variants.id"),
        nullable=True,
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    variant: Mapped[Variant | None] = relationship(Variant, lazy="joined")

    def __repr__(self) -> str:
        return f"<Product {self.name}>"
