"""
Runtime configuration schema for the billing services.

Every section is a frozen dataclass with production defaults, so an empty
YAML file (or no file at all) yields a working configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///billing.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class SchedulerConfig:
    """Driver loop settings."""

    tick_interval_seconds: float = 60.0
    batch_size: int = 25  # Clamped to [1, 100] by the driver


@dataclass(frozen=True)
class ExecutorConfig:
    error_message_max_length: int = 1000
    isolate_delivery_failures: bool = True


@dataclass(frozen=True)
class ProfileDefaultsConfig:
    """Defaults applied when a create request omits a field."""

    default_due_days: int = 7
    default_variant: str = "ua"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    profiles: ProfileDefaultsConfig = field(default_factory=ProfileDefaultsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
