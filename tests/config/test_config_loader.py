"""
Tests for billing_config -- YAML loading, validation and environment overrides.
"""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
import yaml

from billing_config import (
    BillingConfig,
    compute_checksum,
    load_config,
    parse_config,
)
from billing_config.loader import load_yaml_file

EXAMPLE = Path(__file__).resolve().parents[2] / "billing_config" / "example.yaml"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("BILLING_CONFIG", raising=False)
    monkeypatch.delenv("BILLING_DATABASE_URL", raising=False)


def _write(tmp_path, text: str) -> Path:
    path = tmp_path / "billing.yaml"
    path.write_text(text)
    return path


# =============================================================================
# Defaults
# =============================================================================


class TestDefaults:
    def test_no_file_gives_defaults(self):
        config = load_config()
        assert config == BillingConfig()
        assert config.scheduler.batch_size == 25
        assert config.scheduler.tick_interval_seconds == 60.0
        assert config.executor.error_message_max_length == 1000
        assert config.executor.isolate_delivery_failures is True
        assert config.profiles.default_due_days == 7
        assert config.profiles.default_variant == "ua"

    def test_frozen(self):
        config = BillingConfig()
        with pytest.raises(FrozenInstanceError):
            config.scheduler.batch_size = 10  # type: ignore[misc]

    def test_example_file_parses(self):
        config = load_config(EXAMPLE)
        assert config.database.url.startswith("postgresql://")
        assert config.scheduler.tick_interval_seconds == 60.0


# =============================================================================
# Loading
# =============================================================================


class TestLoad:
    def test_partial_file(self, tmp_path):
        path = _write(tmp_path, "scheduler:\n  batch_size: 10\n")

        config = load_config(path)

        assert config.scheduler.batch_size == 10
        assert config.scheduler.tick_interval_seconds == 60.0
        assert config.database == BillingConfig().database

    def test_env_path(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "executor:\n  isolate_delivery_failures: false\n")
        monkeypatch.setenv("BILLING_CONFIG", str(path))

        assert load_config().executor.isolate_delivery_failures is False

    def test_database_url_override(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "database:\n  url: sqlite:///file.db\n  echo: true\n")
        monkeypatch.setenv("BILLING_DATABASE_URL", "postgresql://u@db/billing")

        config = load_config(path)

        assert config.database.url == "postgresql://u@db/billing"
        assert config.database.echo is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_empty_file(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == BillingConfig()

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(_write(tmp_path, "- a\n- b\n"))

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(yaml.YAMLError):
            load_config(_write(tmp_path, "scheduler: [unclosed\n"))

    def test_trace_logged(self, tmp_path, captured_logs):
        config = load_config(_write(tmp_path, "logging:\n  level: DEBUG\n"))

        [record] = [r for r in captured_logs() if r["message"] == "BILLING_CONFIG_TRACE"]
        assert record["checksum"] == compute_checksum(config)
        assert record["database_url_overridden"] is False


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_int_accepted_for_float(self):
        config = parse_config({"scheduler": {"tick_interval_seconds": 5}})
        assert config.scheduler.tick_interval_seconds == 5.0
        assert isinstance(config.scheduler.tick_interval_seconds, float)

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"schedulr": {}}, "Unknown configuration section"),
            ({"scheduler": {"batch": 5}}, "Unknown key"),
            ({"scheduler": {"batch_size": "ten"}}, "must be int"),
            ({"scheduler": {"batch_size": True}}, "must be an integer"),
            ({"scheduler": {"batch_size": 0}}, "batch_size"),
            ({"scheduler": {"batch_size": 101}}, "batch_size"),
            ({"scheduler": {"tick_interval_seconds": 0}}, "tick_interval_seconds"),
            ({"executor": {"error_message_max_length": 0}}, "error_message_max_length"),
            ({"profiles": {"default_due_days": -1}}, "default_due_days"),
            ({"profiles": {"default_variant": "fr"}}, "default_variant"),
            ({"logging": {"level": "LOUD"}}, "logging.level"),
            ({"database": "sqlite://"}, "must be a mapping"),
        ],
    )
    def test_rejected(self, data, message):
        with pytest.raises(ValueError, match=message):
            parse_config(data)


class TestChecksum:
    def test_stable(self):
        assert compute_checksum(BillingConfig()) == compute_checksum(BillingConfig())

    def test_changes_with_content(self):
        changed = parse_config({"scheduler": {"batch_size": 50}})
        assert compute_checksum(changed) != compute_checksum(BillingConfig())
