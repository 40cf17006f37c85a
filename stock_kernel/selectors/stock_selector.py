"""
StockSelector -- unlocked read of a batch's current level.

Advisory only: a sale re-reads the batch under lock before deducting.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import LedgerRole, StockLevel, TenancyScope
from stock_kernel.domain.pack_math import resolve_pack_size
from stock_kernel.models.catalog import Product, Variant
from stock_kernel.models.stock import BranchStock, StockAudit
from stock_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector):
    def __init__(self, session, default_pack_size: int = 1):
        super().__init__(session)
        self._default_pack_size = default_pack_size

    def get_level(
        self, batch_id: UUID, role: LedgerRole, scope: TenancyScope
    ) -> StockLevel | None:
        """Current packs and loose units of a live batch, or None."""
        model = StockAudit if role == LedgerRole.ORGANISATION else BranchStock
        criteria = [
            model.id == batch_id,
            model.deleted_at.is_(None),
            model.tenant_id == scope.tenant_id,
            model.organisation_id == scope.organisation_id,
        ]
        if role == LedgerRole.BRANCH:
            criteria.append(BranchStock.branch_id == scope.branch_id)

        row = self.session.execute(
            select(model, Variant.pack_size)
            .join(Product, Product.id == model.product_id)
            .outerjoin(Variant, Variant.id == Product.variant_id)
            .where(*criteria)
        ).one_or_none()
        if row is None:
            return None
        batch, raw_pack_size = row

        return StockLevel(
            batch_id=batch.id,
            role=role,
            product_id=batch.product_id,
            batch_no=batch.batch_no,
            expiry_date=batch.expiry_date,
            pack_size=resolve_pack_size(raw_pack_size, self._default_pack_size),
            available_quantity=batch.available_quantity,
            available_loose_quantity=batch.available_loose_quantity,
        )
