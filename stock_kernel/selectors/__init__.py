"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.sales_selector import SaleSelector
from stock_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "SaleSelector",
    "StockSelector",
]
