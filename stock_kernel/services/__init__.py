"""Services for the stock kernel (write side)."""

from stock_kernel.services.invoice_sequence import InvoiceSequenceAllocator, scope_key
from stock_kernel.services.sale_orchestrator import SaleTransactionOrchestrator
from stock_kernel.services.stock_ledger import (
    BranchStockLedger,
    LockedBatch,
    OrganisationStockLedger,
    StockLedger,
    ledger_for,
)
from stock_kernel.services.stock_movement import StockMovementService

__all__ = [
    "BranchStockLedger",
    "InvoiceSequenceAllocator",
    "LockedBatch",
    "OrganisationStockLedger",
    "SaleTransactionOrchestrator",
    "StockLedger",
    "StockMovementService",
    "ledger_for",
    "scope_key",
]
