"""Configuration loading, writing, and project initialization.

Reads ``config.toml`` using stdlib ``tomllib`` and writes it using
``tomli_w``.  Depends only on ``models.py`` and ``errors.py``.
"""

from __future__ import annotations

import tomllib
from dataclasses import fields
from pathlib import Path

import tomli_w

from budget_tracker.errors import ConfigError
from budget_tracker.models import AppConfig

CONFIG_FILENAME = "config.toml"

LLM_PROVIDERS = ("anthropic", "openai", "none")

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# Budget Tracker configuration

[general]
default_user = "local"

[storage]
database_url = "sqlite:///budget.db"   # relative SQLite paths resolve against this directory
timeout = 5.0

[llm]
provider = "anthropic"                 # "anthropic", "openai" or "none"
model = "claude-sonnet-4-20250514"
api_key_env = "ANTHROPIC_API_KEY"      # Name of env var containing the API key
base_url = ""                          # Leave empty for the provider default
timeout = 10.0

[categorization]
rule_threshold = 0.8

[insights]
monthly_baseline_cents = 250000        # $2,500.00
budget_alert_ratio = 1.5
baseline_months = 3
new_merchant_threshold_cents = 5000    # $50.00
"""

# (section, key) for every AppConfig field, in file order.
_LAYOUT: dict[str, tuple[str, str]] = {
    "default_user": ("general", "default_user"),
    "database_url": ("storage", "database_url"),
    "storage_timeout": ("storage", "timeout"),
    "llm_provider": ("llm", "provider"),
    "llm_model": ("llm", "model"),
    "llm_api_key_env": ("llm", "api_key_env"),
    "llm_base_url": ("llm", "base_url"),
    "llm_timeout": ("llm", "timeout"),
    "rule_threshold": ("categorization", "rule_threshold"),
    "monthly_baseline_cents": ("insights", "monthly_baseline_cents"),
    "budget_alert_ratio": ("insights", "budget_alert_ratio"),
    "baseline_months": ("insights", "baseline_months"),
    "new_merchant_threshold_cents": ("insights", "new_merchant_threshold_cents"),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``config.toml`` from *root* and return an :class:`AppConfig`.

    Missing sections and keys fall back to the :class:`AppConfig` defaults.

    Args:
        root: Project root directory containing ``config.toml``.

    Returns:
        A validated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
        ConfigError: If a value is out of range or of the wrong type.
    """
    data = _read_toml(root / CONFIG_FILENAME)
    defaults = AppConfig()

    values: dict[str, object] = {}
    for f in fields(AppConfig):
        section, key = _LAYOUT[f.name]
        table = data.get(section, {})
        if not isinstance(table, dict):
            raise ConfigError(f"[{section}] must be a table")
        values[f.name] = table.get(key, getattr(defaults, f.name))

    config = AppConfig(**values)  # type: ignore[arg-type]
    _validate(config)
    return config


def save_config(root: Path, config: AppConfig) -> Path:
    """Write *config* to ``root/config.toml``, replacing any existing file.

    Returns:
        The path written.
    """
    _validate(config)
    data: dict[str, dict[str, object]] = {}
    for f in fields(AppConfig):
        section, key = _LAYOUT[f.name]
        data.setdefault(section, {})[key] = getattr(config, f.name)

    path = root / CONFIG_FILENAME
    path.write_text(tomli_w.dumps(data), encoding="utf-8")
    return path


def initialize(target_dir: Path, config: AppConfig | None = None) -> Path:
    """Create *target_dir* and a ``config.toml`` inside it.

    Idempotent: an existing ``config.toml`` is **not** overwritten.  When
    *config* is None the commented default file is written; otherwise
    *config* is serialized.

    Returns:
        Path to the ``config.toml`` in *target_dir*.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / CONFIG_FILENAME
    if path.exists():
        return path
    if config is None:
        path.write_text(_DEFAULT_CONFIG_TOML, encoding="utf-8")
        return path
    return save_config(target_dir, config)


def resolve_database_url(config: AppConfig, root: Path) -> str:
    """Return ``config.database_url`` with a relative SQLite path anchored at *root*.

    ``sqlite:///budget.db`` becomes ``sqlite:////abs/root/budget.db``.
    In-memory SQLite URLs and other databases are returned unchanged.
    """
    url = config.database_url
    prefix = "sqlite:///"
    if not url.startswith(prefix):
        return url
    db_path = url[len(prefix):]
    if not db_path or db_path == ":memory:" or Path(db_path).is_absolute():
        return url
    return prefix + str((Path(root) / db_path).resolve())


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _validate(config: AppConfig) -> None:
    if config.llm_provider not in LLM_PROVIDERS:
        raise ConfigError(
            f"Unknown llm.provider {config.llm_provider!r}. "
            f"Expected one of: {', '.join(LLM_PROVIDERS)}"
        )
    if not isinstance(config.database_url, str) or not config.database_url:
        raise ConfigError("storage.database_url must be a non-empty string")
    if not 0.0 <= float(config.rule_threshold) <= 1.0:
        raise ConfigError("categorization.rule_threshold must be between 0 and 1")
    for name in ("storage_timeout", "llm_timeout"):
        if float(getattr(config, name)) <= 0:
            raise ConfigError(f"{name} must be positive")
    for name in ("monthly_baseline_cents", "baseline_months", "new_merchant_threshold_cents"):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"{name} must be a non-negative integer")
    if config.baseline_months < 1:
        raise ConfigError("insights.baseline_months must be at least 1")
