"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Reads a YAML configuration file, applies environment overrides and parses
the result into the frozen dataclasses of ``stock_config.schema``.  Callers
use ``stock_config.get_active_config()``; this module is its machinery.

Invariants enforced
-------------------
* Unknown enum values and out-of-range numbers raise ``ValueError`` naming
  the offending key; nothing is silently clamped.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON of
  the effective (post-override) configuration.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from stock_config.schema import (
    DatabaseConfig,
    InvoiceConfig,
    LoggingConfig,
    SalesConfig,
    StockLedgerConfig,
)

ENV_DATABASE_URL = "STOCK_LEDGER_DATABASE_URL"
ENV_LOG_LEVEL = "STOCK_LEDGER_LOG_LEVEL"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_SCOPE_PARTITIONS = frozenset({"branch", "organisation", "tenant"})
_EDIT_POLICIES = frozenset({"metadata_only", "reconcile"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    result = copy.deepcopy(data)
    if environ.get(ENV_DATABASE_URL):
        result.setdefault("database", {})["url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        result.setdefault("logging", {})["level"] = environ[ENV_LOG_LEVEL]
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name}: must be a mapping")
    return section


def _positive_int(section: dict[str, Any], key: str, default: int, where: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{where}.{key}: must be a positive integer, got {value!r}")
    return value


def _choice(section: dict[str, Any], key: str, default: str, allowed, where: str) -> str:
    value = str(section.get(key, default)).lower()
    if value not in allowed:
        raise ValueError(
            f"{where}.{key}: must be one of {sorted(allowed)}, got {value!r}"
        )
    return value


def parse_config(data: dict[str, Any], checksum: str = "") -> StockLedgerConfig:
    """Parse and validate an effective configuration dict."""
    database = _section(data, "database")
    if not database.get("url"):
        raise ValueError(
            f"database.url: required (set it in YAML or {ENV_DATABASE_URL})"
        )

    logging_section = _section(data, "logging")
    level = str(logging_section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level: unknown level {level!r}")

    invoice = _section(data, "invoice")
    prefix = str(invoice.get("prefix", "INV")).strip()
    if not prefix:
        raise ValueError("invoice.prefix: must not be empty")
    offset = invoice.get("business_utc_offset_minutes", 0)
    if isinstance(offset, bool) or not isinstance(offset, int) or not -720 <= offset <= 840:
        raise ValueError(
            f"invoice.business_utc_offset_minutes: must be an integer in "
            f"[-720, 840], got {offset!r}"
        )

    sales = _section(data, "sales")
    lock_timeout = sales.get("lock_timeout_ms")
    if lock_timeout is not None:
        lock_timeout = _positive_int(sales, "lock_timeout_ms", 0, "sales")

    return StockLedgerConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        database=DatabaseConfig(
            url=str(database["url"]),
            echo=bool(database.get("echo", False)),
            pool_size=_positive_int(database, "pool_size", 20, "database"),
            max_overflow=int(database.get("max_overflow", 10)),
            pool_timeout=_positive_int(database, "pool_timeout", 30, "database"),
            pool_recycle=int(database.get("pool_recycle", 1800)),
            pool_pre_ping=bool(database.get("pool_pre_ping", True)),
        ),
        logging=LoggingConfig(level=level),
        invoice=InvoiceConfig(
            prefix=prefix,
            number_width=_positive_int(invoice, "number_width", 5, "invoice"),
            scope_partition=_choice(
                invoice, "scope_partition", "branch", _SCOPE_PARTITIONS, "invoice"
            ),
            business_utc_offset_minutes=offset,
        ),
        sales=SalesConfig(
            edit_stock_policy=_choice(
                sales, "edit_stock_policy", "metadata_only", _EDIT_POLICIES, "sales"
            ),
            default_pack_size=_positive_int(sales, "default_pack_size", 1, "sales"),
            lock_timeout_ms=lock_timeout,
            allow_empty_sales=bool(sales.get("allow_empty_sales", False)),
        ),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
