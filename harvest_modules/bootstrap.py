"""
Process bootstrap.

Wires configuration, logging, the database engine and the persistence
guards together.  Call ``bootstrap()`` once at process start before
constructing any module service.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import Engine

from harvest_config import HarvestConfiguration, get_active_config
from harvest_kernel.db.engine import init_engine_from_url
from harvest_kernel.db.immutability import register_immutability_listeners
from harvest_kernel.logging_config import configure_logging, get_logger

logger = get_logger("modules.bootstrap")


def bootstrap(
    config: HarvestConfiguration | None = None,
    config_path: Path | None = None,
) -> tuple[HarvestConfiguration, Engine]:
    """
    Load configuration, configure logging, initialize the engine and
    register the persistence guards.

    Returns:
        The active configuration and the initialized engine.
    """
    if config is None:
        config = get_active_config(config_path)

    configure_logging(level=config.logging.level)
    engine = init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )
    register_immutability_listeners()

    logger.info(
        "harvest_bootstrapped",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "dialect": engine.dialect.name,
        },
    )
    return config, engine
