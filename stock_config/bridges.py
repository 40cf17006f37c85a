"""
Config -> Kernel Bridges.

Functions that convert a StockLedgerConfig into kernel inputs.  They live in
stock_config (the producer) because the kernel must NEVER import
stock_config.

Usage:
    from stock_config import get_active_config
    from stock_config.bridges import build_sale_policy, init_engine_from_config

    config = get_active_config()
    init_engine_from_config(config)
    policy = build_sale_policy(config)
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from stock_config.schema import StockLedgerConfig
from stock_kernel.db.engine import init_engine_from_url
from stock_kernel.domain.policy import (
    InvoiceScopePartition,
    SaleEditStockPolicy,
    SalePolicy,
)
from stock_kernel.logging_config import configure_logging


def build_sale_policy(config: StockLedgerConfig) -> SalePolicy:
    """Translate the invoice and sales sections into the kernel SalePolicy."""
    return SalePolicy(
        invoice_prefix=config.invoice.prefix,
        invoice_number_width=config.invoice.number_width,
        invoice_scope=InvoiceScopePartition(config.invoice.scope_partition),
        business_utc_offset_minutes=config.invoice.business_utc_offset_minutes,
        default_pack_size=config.sales.default_pack_size,
        edit_stock_policy=SaleEditStockPolicy(config.sales.edit_stock_policy),
        lock_timeout_ms=config.sales.lock_timeout_ms,
        allow_empty_sales=config.sales.allow_empty_sales,
    )


def configure_logging_from_config(config: StockLedgerConfig) -> None:
    configure_logging(level=config.logging.level)


def init_engine_from_config(config: StockLedgerConfig) -> Engine:
    """Configure logging, then initialize the kernel engine from ``database``."""
    configure_logging_from_config(config)
    db = config.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=db.pool_pre_ping,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
