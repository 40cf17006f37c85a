"""
SalePolicy -- kernel-side knobs for the sale pipeline.

The kernel never reads configuration files.  ``stock_config.bridges``
translates the loaded YAML into this frozen value object, which services
receive through their constructors.
"""

from dataclasses import dataclass
from enum import Enum


class InvoiceScopePartition(str, Enum):
    """Which part of the tenancy scope an invoice counter is keyed by."""

    BRANCH = "branch"  # falls back to organisation when no branch
    ORGANISATION = "organisation"
    TENANT = "tenant"


class SaleEditStockPolicy(str, Enum):
    """Whether editing a sale's lines moves stock."""

    METADATA_ONLY = "metadata_only"
    RECONCILE = "reconcile"  # revert old quantities, then re-deduct new ones


@dataclass(frozen=True)
class SalePolicy:
    invoice_prefix: str = "INV"
    invoice_number_width: int = 5
    invoice_scope: InvoiceScopePartition = InvoiceScopePartition.BRANCH
    business_utc_offset_minutes: int = 0
    default_pack_size: int = 1
    edit_stock_policy: SaleEditStockPolicy = SaleEditStockPolicy.METADATA_ONLY
    lock_timeout_ms: int | None = None
    allow_empty_sales: bool = False

    def __post_init__(self):
        if not self.invoice_prefix:
            raise ValueError("invoice_prefix must not be empty")
        if self.invoice_number_width <= 0:
            raise ValueError("invoice_number_width must be positive")
        if self.default_pack_size <= 0:
            raise ValueError("default_pack_size must be positive")
        if self.lock_timeout_ms is not None and self.lock_timeout_ms <= 0:
            raise ValueError("lock_timeout_ms must be positive when set")
