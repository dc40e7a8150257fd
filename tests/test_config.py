"""Tests for budget_tracker.config -- loading, writing and initializing config.toml."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from budget_tracker.config import (
    CONFIG_FILENAME,
    initialize,
    load_config,
    resolve_database_url,
    save_config,
)
from budget_tracker.errors import ConfigError
from budget_tracker.models import AppConfig


def _write(root: Path, text: str) -> Path:
    path = root / CONFIG_FILENAME
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_empty_file_uses_defaults(self, tmp_path: Path):
        _write(tmp_path, "")
        assert load_config(tmp_path) == AppConfig()

    def test_values_read_from_sections(self, tmp_path: Path):
        _write(
            tmp_path,
            """
[general]
default_user = "alice"

[storage]
database_url = "sqlite:///data/money.db"
timeout = 2.5

[llm]
provider = "openai"
model = "gpt-4o-mini"
api_key_env = "OPENAI_API_KEY"

[categorization]
rule_threshold = 0.75

[insights]
monthly_baseline_cents = 300000
baseline_months = 6
""",
        )

        config = load_config(tmp_path)

        assert config.default_user == "alice"
        assert config.database_url == "sqlite:///data/money.db"
        assert config.storage_timeout == 2.5
        assert config.llm_provider == "openai"
        assert config.llm_model == "gpt-4o-mini"
        assert config.llm_api_key_env == "OPENAI_API_KEY"
        assert config.rule_threshold == 0.75
        assert config.monthly_baseline_cents == 300000
        assert config.baseline_months == 6
        # Untouched keys keep their defaults.
        assert config.budget_alert_ratio == 1.5
        assert config.new_merchant_threshold_cents == 5000

    @pytest.mark.parametrize(
        "text, message",
        [
            ('[llm]\nprovider = "gemini"\n', "llm.provider"),
            ("[categorization]\nrule_threshold = 1.5\n", "rule_threshold"),
            ("[llm]\ntimeout = 0\n", "llm_timeout"),
            ("[insights]\nbaseline_months = 0\n", "baseline_months"),
            ('[insights]\nmonthly_baseline_cents = "lots"\n', "monthly_baseline_cents"),
            ('[storage]\ndatabase_url = ""\n', "database_url"),
            ('llm = "anthropic"\n', "must be a table"),
        ],
    )
    def test_invalid_values(self, tmp_path: Path, text: str, message: str):
        _write(tmp_path, text)
        with pytest.raises(ConfigError, match=message):
            load_config(tmp_path)


class TestInitialize:
    def test_writes_default_file(self, tmp_path: Path):
        target = tmp_path / "project"

        path = initialize(target)

        assert path == target / CONFIG_FILENAME
        assert "[insights]" in path.read_text(encoding="utf-8")
        assert load_config(target) == AppConfig()

    def test_idempotent(self, tmp_path: Path):
        path = _write(tmp_path, '[general]\ndefault_user = "keep-me"\n')

        initialize(tmp_path)

        assert load_config(tmp_path).default_user == "keep-me"
        assert path.read_text(encoding="utf-8").startswith("[general]")

    def test_custom_config(self, tmp_path: Path):
        config = AppConfig(llm_provider="none", database_url="sqlite:///other.db")

        initialize(tmp_path, config)

        assert load_config(tmp_path) == config


class TestSaveConfig:
    def test_round_trip(self, tmp_path: Path):
        config = AppConfig(default_user="bob", rule_threshold=0.9, baseline_months=2)

        path = save_config(tmp_path, config)

        data = tomllib.loads(path.read_text(encoding="utf-8"))
        assert data["general"]["default_user"] == "bob"
        assert data["categorization"]["rule_threshold"] == 0.9
        assert load_config(tmp_path) == config

    def test_rejects_invalid(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            save_config(tmp_path, AppConfig(llm_provider="bogus"))
        assert not (tmp_path / CONFIG_FILENAME).exists()


class TestResolveDatabaseUrl:
    def test_relative_sqlite_anchored(self, tmp_path: Path):
        url = resolve_database_url(AppConfig(database_url="sqlite:///budget.db"), tmp_path)
        assert url == "sqlite:///" + str((tmp_path / "budget.db").resolve())

    @pytest.mark.parametrize(
        "url",
        [
            "sqlite:///:memory:",
            "sqlite://",
            "postgresql+psycopg://u:p@localhost/budget",
        ],
    )
    def test_left_alone(self, tmp_path: Path, url: str):
        assert resolve_database_url(AppConfig(database_url=url), tmp_path) == url

    def test_absolute_sqlite_unchanged(self, tmp_path: Path):
        url = f"sqlite:///{tmp_path / 'abs.db'}"
        assert resolve_database_url(AppConfig(database_url=url), tmp_path) == url
