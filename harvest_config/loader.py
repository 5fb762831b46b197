"""
Configuration Loader (``harvest_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``harvest_config.schema`` dataclasses.  Runtime callers use
``harvest_config.get_active_config()`` rather than calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown sections and unknown keys are rejected, so a typo never turns
  into a silent default.
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing file, malformed YAML, unknown keys or invalid values  ->
  ``ConfigurationError`` naming the file and the offending entry.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from harvest_config.schema import (
    ActivityConfig,
    DatabaseConfig,
    HarvestConfiguration,
    LoggingConfig,
    ProcurementConfig,
    QuantityConfig,
    ShippingConfig,
)
from harvest_kernel.domain.status import (
    ActivityStatus,
    PurchaseOrderStatus,
    SalesOrderStatus,
)
from harvest_kernel.exceptions import ConfigurationError

_SECTIONS = {
    "database": DatabaseConfig,
    "quantities": QuantityConfig,
    "shipping": ShippingConfig,
    "activity": ActivityConfig,
    "procurement": ProcurementConfig,
    "logging": LoggingConfig,
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: if the file is missing, unreadable YAML, or
            not a mapping at the top level.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _check_keys(source: str, section: str, data: dict[str, Any], schema) -> None:
    allowed = {f.name for f in fields(schema)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(source, f"unknown key(s) in '{section}': {', '.join(unknown)}")


def _enum_tuple(source: str, key: str, values: Any, enum_type) -> tuple:
    if not isinstance(values, list) or not values:
        raise ConfigurationError(source, f"'{key}' must be a non-empty list")
    try:
        return tuple(enum_type(v) for v in values)
    except ValueError as exc:
        raise ConfigurationError(source, f"'{key}': {exc}") from exc


def parse_database(source: str, data: dict[str, Any]) -> DatabaseConfig:
    _check_keys(source, "database", data, DatabaseConfig)
    return DatabaseConfig(**data)


def parse_quantities(source: str, data: dict[str, Any]) -> QuantityConfig:
    _check_keys(source, "quantities", data, QuantityConfig)
    places = data.get("weight_places", QuantityConfig.weight_places)
    if not isinstance(places, int) or isinstance(places, bool) or not 0 <= places <= 9:
        raise ConfigurationError(source, "'weight_places' must be an integer between 0 and 9")
    return QuantityConfig(weight_places=places)


def parse_shipping(source: str, data: dict[str, Any]) -> ShippingConfig:
    _check_keys(source, "shipping", data, ShippingConfig)
    if "shippable_order_statuses" not in data:
        return ShippingConfig()
    return ShippingConfig(
        shippable_order_statuses=_enum_tuple(
            source, "shippable_order_statuses", data["shippable_order_statuses"], SalesOrderStatus
        )
    )


def parse_activity(source: str, data: dict[str, Any]) -> ActivityConfig:
    _check_keys(source, "activity", data, ActivityConfig)
    default = ActivityConfig()
    try:
        status = ActivityStatus(data.get("supervisor_default_status", default.supervisor_default_status))
    except ValueError as exc:
        raise ConfigurationError(source, f"'supervisor_default_status': {exc}") from exc
    if status == ActivityStatus.REJECTED:
        raise ConfigurationError(source, "'supervisor_default_status' cannot be rejected")
    return ActivityConfig(
        supervisor_default_status=status,
        require_work_order_in_progress=bool(
            data.get("require_work_order_in_progress", default.require_work_order_in_progress)
        ),
    )


def parse_procurement(source: str, data: dict[str, Any]) -> ProcurementConfig:
    _check_keys(source, "procurement", data, ProcurementConfig)
    if "receivable_order_statuses" not in data:
        return ProcurementConfig()
    return ProcurementConfig(
        receivable_order_statuses=_enum_tuple(
            source, "receivable_order_statuses", data["receivable_order_statuses"], PurchaseOrderStatus
        )
    )


def parse_logging(source: str, data: dict[str, Any]) -> LoggingConfig:
    _check_keys(source, "logging", data, LoggingConfig)
    level = str(data.get("level", LoggingConfig.level)).upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError(source, f"unknown log level '{level}'")
    return LoggingConfig(level=level)


_PARSERS = {
    "database": parse_database,
    "quantities": parse_quantities,
    "shipping": parse_shipping,
    "activity": parse_activity,
    "procurement": parse_procurement,
    "logging": parse_logging,
}


def parse_configuration(source: str, data: dict[str, Any]) -> HarvestConfiguration:
    """
    Parse a whole configuration document.

    Missing sections take their defaults; unknown sections are rejected.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"config_id", "version"})
    if unknown:
        raise ConfigurationError(source, f"unknown section(s): {', '.join(unknown)}")

    parsed: dict[str, Any] = {}
    for section, parser in _PARSERS.items():
        section_data = data.get(section) or {}
        if not isinstance(section_data, dict):
            raise ConfigurationError(source, f"section '{section}' must be a mapping")
        parsed[section] = parser(source, section_data)

    return HarvestConfiguration(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        **parsed,
    )


def load_configuration(path: Path) -> HarvestConfiguration:
    """Load and parse a configuration set from a YAML file."""
    return parse_configuration(str(path), load_yaml_file(path))
