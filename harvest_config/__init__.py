"""
harvest_config -- single public entrypoint for operational configuration.

Responsibility:
    ``get_active_config()`` is the one way to obtain configuration at
    runtime.  It loads a YAML configuration set, applies the DATABASE_URL
    environment override, and returns a frozen ``HarvestConfiguration``.

Architecture position:
    Configuration sits above ``harvest_kernel`` and below
    ``harvest_modules``.  Kernel ledgers never import from here; module
    services pass the relevant settings (precision, allowed statuses) down.

Failure modes:
    - ``ConfigurationError`` for a missing file, malformed YAML, unknown
      keys, or invalid values.

Audit relevance:
    Every successful call emits a ``HARVEST_CONFIG_TRACE`` log entry with
    the config id, version and checksum.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from harvest_config.loader import load_configuration
from harvest_config.schema import (
    ActivityConfig,
    DatabaseConfig,
    HarvestConfiguration,
    LoggingConfig,
    ProcurementConfig,
    QuantityConfig,
    ShippingConfig,
)
from harvest_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "DATABASE_URL"
CONFIG_PATH_ENV = "HARVEST_CONFIG"


def get_active_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> HarvestConfiguration:
    """
    The public configuration entrypoint.

    Args:
        path: Configuration set to load.  Defaults to $HARVEST_CONFIG, then
            harvest_config/sets/default.yaml.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        A frozen HarvestConfiguration.
    """
    env = os.environ if environ is None else environ
    config_path = path or Path(env.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)

    config = load_configuration(config_path)

    database_url = env.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "HARVEST_CONFIG_TRACE",
        extra={
            "trace_type": "HARVEST_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "ActivityConfig",
    "DatabaseConfig",
    "HarvestConfiguration",
    "LoggingConfig",
    "ProcurementConfig",
    "QuantityConfig",
    "ShippingConfig",
    "get_active_config",
]
