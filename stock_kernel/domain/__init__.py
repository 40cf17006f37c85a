"""
Pure domain layer.

This module contains pack/loose arithmetic, DTOs and the sale policy with
NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (apart from SystemClock)

All domain objects are immutable and deterministic.
"""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    BranchAllocationRequest,
    DiscountType,
    InvoiceNumber,
    LedgerRole,
    PaymentMode,
    PaymentView,
    SaleDraft,
    SaleItemView,
    SaleLineDraft,
    SaleResult,
    SaleStatus,
    SaleType,
    SaleUpdate,
    SaleView,
    StockLevel,
    StockMovementResult,
    StockOutRequest,
    TenancyScope,
)
from stock_kernel.domain.pack_math import (
    DeductionPlan,
    PackQuantity,
    plan_deduction,
    resolve_pack_size,
    total_available,
    total_requested,
    total_units,
)
from stock_kernel.domain.policy import (
    InvoiceScopePartition,
    SaleEditStockPolicy,
    SalePolicy,
)

__all__ = [
    "BranchAllocationRequest",
    "Clock",
    "DeductionPlan",
    "DeterministicClock",
    "DiscountType",
    "InvoiceNumber",
    "InvoiceScopePartition",
    "LedgerRole",
    "PackQuantity",
    "PaymentMode",
    "PaymentView",
    "SaleDraft",
    "SaleEditStockPolicy",
    "SaleItemView",
    "SaleLineDraft",
    "SalePolicy",
    "SaleResult",
    "SaleStatus",
    "SaleType",
    "SaleUpdate",
    "SaleView",
    "StockLevel",
    "StockMovementResult",
    "StockOutRequest",
    "SystemClock",
    "TenancyScope",
    "plan_deduction",
    "resolve_pack_size",
    "total_available",
    "total_requested",
    "total_units",
]
