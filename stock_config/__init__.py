"""
stock_config -- single public entrypoint for stock ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It loads the YAML set, applies environment overrides,
    validates, fingerprints and traces the result.

Architecture position:
    Configuration -- sits above ``stock_kernel``.  The kernel MUST NEVER
    import from ``stock_config``; ``stock_config.bridges`` translates the
    loaded configuration into kernel inputs (SalePolicy, engine).

Invariants enforced:
    - Single entrypoint: services receive a SalePolicy, never a YAML path.
    - Deterministic checksum: the same effective configuration always has
      the same SHA-256 checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` -- validation failures, each naming its key.

Audit relevance:
    Every successful call emits a ``STOCK_CONFIG_TRACE`` log entry with the
    config id, version, checksum and the settings that shape sales.  The
    database URL is never logged.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from stock_config.loader import (
    apply_env_overrides,
    compute_checksum,
    load_yaml_file,
    parse_config,
)
from stock_config.schema import StockLedgerConfig

_logger = logging.getLogger("stock_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> StockLedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to ``stock_config/sets/default.yaml``.
        environ: Environment mapping for overrides.  Defaults to ``os.environ``.

    Returns:
        A frozen, validated StockLedgerConfig with its checksum set.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    raw = load_yaml_file(config_path)
    effective = apply_env_overrides(raw, env)
    config = parse_config(effective, checksum=compute_checksum(effective))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
            "invoice_prefix": config.invoice.prefix,
            "invoice_scope_partition": config.invoice.scope_partition,
            "edit_stock_policy": config.sales.edit_stock_policy,
            "lock_timeout_ms": config.sales.lock_timeout_ms,
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "StockLedgerConfig",
    "get_active_config",
]
