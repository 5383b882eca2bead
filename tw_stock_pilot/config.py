"""
Pydantic-based configuration system for tw-stock-pilot.

Loads configuration from YAML files with a shared default file merged underneath.
Usage:
    from tw_stock_pilot.config import load_config
    config = load_config("config/my_account.yaml")
"""

from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field

# ── Sub-configs ─────────────────────────────────────────────────────────────


class StrategyConfig(BaseModel):
    """Default moving-average pair for the two-day rule."""

    ma_short_period: int = Field(default=18, gt=0, description="Short-term MA period")
    ma_long_period: int = Field(default=52, gt=0, description="Long-term MA period")
    analysis_mode: Literal["short", "long"] = "short"


class RiskConfig(BaseModel):
    """Fractional-risk position sizing."""

    risk_fraction: float = Field(
        default=0.01, gt=0, le=1, description="Max share of total assets lost if the stop is hit"
    )
    default_stop_loss_pct: float = Field(
        default=7.0, gt=0, lt=100, description="Stop distance below entry, in percent"
    )
    total_assets: float = Field(default=1_000_000, ge=0, description="Account equity in TWD")


class DataConfig(BaseModel):
    """Price-history acquisition settings."""

    range: str = "2y"
    interval: str = "1d"
    suffixes: List[str] = [".TW", ".TWO"]
    max_retries: int = 3
    timeout: float = 30.0


class AdvisorConfig(BaseModel):
    """LLM portfolio advisor."""

    model: str = "gemini-2.0-flash"
    output_language: str = "繁體中文"
    timeout: float = 30.0


class StorageConfig(BaseModel):
    """Local persistence paths."""

    db_path: str = "data/tw_stock_pilot.db"
    signal_journal_path: str = "data/signal_journal.jsonl"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "logs/tw_stock_pilot.log"
    rotation: str = "10 MB"
    retention: str = "30 days"


# ── Root Config ─────────────────────────────────────────────────────────────


class AppConfig(BaseModel):
    """Root configuration for tw-stock-pilot."""

    watchlist: List[str] = ["2330", "2317", "2454"]
    sectors: Dict[str, str] = Field(
        default_factory=lambda: {"2330": "半導體", "2317": "電子製造", "2454": "半導體"},
        description="Symbol → sector for exposure reports",
    )
    strategy: StrategyConfig = StrategyConfig()
    risk: RiskConfig = RiskConfig()
    data: DataConfig = DataConfig()
    advisor: AdvisorConfig = AdvisorConfig()
    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()


# ── Config Loading ──────────────────────────────────────────────────────────


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: str | Path,
    default_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML, merging with defaults.

    Args:
        config_path: Path to the user config (may not exist yet).
        default_path: Path to default config. Auto-detected if None.

    Returns:
        Fully resolved AppConfig instance.
    """
    config_path = Path(config_path)

    if default_path is None:
        default_path = config_path.parent / "default.yaml"

    base_data: Dict[str, Any] = {}
    if Path(default_path).exists():
        with open(default_path, "r", encoding="utf-8") as f:
            base_data = yaml.safe_load(f) or {}

    override_data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            override_data = yaml.safe_load(f) or {}

    merged = _deep_merge(base_data, override_data)

    return AppConfig(**merged)
