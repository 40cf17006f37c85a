"""
Configuration schema (``stock_config.schema``).

Frozen dataclasses mirroring the YAML sections.  Produced by
``stock_config.loader.parse_config``; consumed by ``stock_config.bridges``.

    config_id / version
    database:  url, echo, pool sizing
    logging:   level
    invoice:   prefix, number_width, scope_partition, business_utc_offset_minutes
    sales:     edit_stock_policy, default_pack_size, lock_timeout_ms,
               allow_empty_sales
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class InvoiceConfig:
    prefix: str = "INV"
    number_width: int = 5
    scope_partition: str = "branch"
    business_utc_offset_minutes: int = 0


@dataclass(frozen=True)
class SalesConfig:
    edit_stock_policy: str = "metadata_only"
    default_pack_size: int = 1
    lock_timeout_ms: int | None = None
    allow_empty_sales: bool = False


@dataclass(frozen=True)
class StockLedgerConfig:
    """The loaded, validated configuration.  ``checksum`` identifies it."""

    config_id: str
    version: int
    database: DatabaseConfig
    logging: LoggingConfig
    invoice: InvoiceConfig
    sales: SalesConfig
    checksum: str = ""
