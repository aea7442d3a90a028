"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into the frozen dataclasses of
``billing_config.schema``.  Environment overrides are applied by
``billing_config.load_config``, not here.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``: a misspelt setting must
  not silently fall back to its default.
* Values are type-checked and range-checked at load time.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type, out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    BillingConfig,
    DatabaseConfig,
    ExecutorConfig,
    LoggingConfig,
    ProfileDefaultsConfig,
    SchedulerConfig,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "scheduler": SchedulerConfig,
    "executor": ExecutorConfig,
    "profiles": ProfileDefaultsConfig,
    "logging": LoggingConfig,
}

_VARIANTS = ("ua", "international")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _coerce(section: str, key: str, expected: type, value: Any) -> Any:
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if expected is int and isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    if not isinstance(value, expected):
        raise ValueError(
            f"{section}.{key} must be {expected.__name__}, got {type(value).__name__}"
        )
    return value


def parse_section(name: str, data: dict[str, Any] | None) -> Any:
    """Parse one top-level section into its dataclass."""
    cls = _SECTIONS[name]
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section '{name}' must be a mapping")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")

    kwargs = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        kwargs[key] = _coerce(name, key, type(default), value)
    return cls(**kwargs)


def _validate(config: BillingConfig) -> None:
    if not 1 <= config.scheduler.batch_size <= 100:
        raise ValueError(
            f"scheduler.batch_size must be in [1, 100], got {config.scheduler.batch_size}"
        )
    if config.scheduler.tick_interval_seconds <= 0:
        raise ValueError("scheduler.tick_interval_seconds must be positive")
    if config.executor.error_message_max_length < 1:
        raise ValueError("executor.error_message_max_length must be positive")
    if config.profiles.default_due_days < 0:
        raise ValueError("profiles.default_due_days must be >= 0")
    if config.profiles.default_variant not in _VARIANTS:
        raise ValueError(
            f"profiles.default_variant must be one of {_VARIANTS}, "
            f"got {config.profiles.default_variant!r}"
        )
    if config.logging.level.upper() not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {_LOG_LEVELS}")


def parse_config(data: dict[str, Any]) -> BillingConfig:
    """Parse a whole configuration document.

    Raises:
        ValueError: unknown section or key, wrong type, out-of-range value.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")

    config = BillingConfig(
        **{name: parse_section(name, data.get(name)) for name in _SECTIONS}
    )
    _validate(config)
    return config


def compute_checksum(config: BillingConfig) -> str:
    """SHA-256 of the canonical JSON form of ``config``."""
    canonical = json.dumps(asdict(config), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
