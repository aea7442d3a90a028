"""
billing_config -- single entrypoint for runtime configuration.

Responsibility:
    ``load_config()`` is the only way services, the orchestrator and the
    CLI obtain settings.  The YAML path comes from the argument, else from
    the ``BILLING_CONFIG`` environment variable, else built-in defaults
    apply.  ``BILLING_DATABASE_URL`` overrides ``database.url`` so that
    credentials need not live in the file.

Failure modes:
    - ``FileNotFoundError`` -- explicit path (or BILLING_CONFIG) missing.
    - ``ValueError`` -- unknown key, wrong type, out-of-range value.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from billing_config.loader import compute_checksum, load_yaml_file, parse_config
from billing_config.schema import (
    BillingConfig,
    DatabaseConfig,
    ExecutorConfig,
    LoggingConfig,
    ProfileDefaultsConfig,
    SchedulerConfig,
)

_logger = logging.getLogger("billing_kernel.config")

CONFIG_PATH_ENV = "BILLING_CONFIG"
DATABASE_URL_ENV = "BILLING_DATABASE_URL"


def load_config(path: str | Path | None = None) -> BillingConfig:
    """Load, validate and return the runtime configuration."""
    source = path or os.environ.get(CONFIG_PATH_ENV)
    data = load_yaml_file(Path(source)) if source else {}
    config = parse_config(data)

    url_override = os.environ.get(DATABASE_URL_ENV)
    if url_override:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=url_override),
        )

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "config_source": str(source) if source else "defaults",
            "checksum": compute_checksum(config),
            "database_url_overridden": bool(url_override),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "DatabaseConfig",
    "ExecutorConfig",
    "LoggingConfig",
    "ProfileDefaultsConfig",
    "SchedulerConfig",
    "compute_checksum",
    "load_config",
    "parse_config",
]
