"""ORM models for the stock kernel."""

from stock_kernel.models.catalog import Product, Variant
from stock_kernel.models.invoice_counter import InvoiceCounter
from stock_kernel.models.sales import PaymentHistory, SalesRecord, SalesRecordItem
from stock_kernel.models.stock import BranchStock, StockAudit
from stock_kernel.models.stock_out import StockOut

__all__ = [
    "BranchStock",
    "InvoiceCounter",
    "PaymentHistory",
    "Product",
    "SalesRecord",
    "SalesRecordItem",
    "StockAudit",
    "StockOut",
    "Variant",
]
