"""Trading configuration loaded from trading.yaml.

Supports:
- Initial stake settings (persisted settings take precedence once saved)
- Auto-trader settings (disabled unless switched on here or via the API)
- Per-analyzer enable flags and tuning overrides
- No YAML file = all analyzers with defaults, auto-trading off
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, model_validator

from tickcore.analyzers import list_analyzers
from tickcore.models import AutoTraderSettings, StakeSettings

logger = logging.getLogger(__name__)

_DEFAULT_ANALYZERS = ("heuristic", "frequency", "pattern", "hot_cold", "trend")


class AnalyzerEntry(BaseModel):
    """One analyzer in the YAML config."""

    name: str
    enabled: bool = True
    markets: list[str] | None = None
    history_size: int | None = None
    emit_interval: float | None = None
    refresh_interval: float | None = None
    validity: float | None = None
    confidence_floor: float | None = None
    min_ticks: int | None = None
    seed: int = 0
    jitter: bool = False

    def to_kwargs(self) -> dict[str, Any]:
        """Constructor overrides for create_analyzer()."""
        return self.model_dump(exclude={"name", "enabled"}, exclude_none=True)


class TradingConfig(BaseModel):
    """Top-level trading.yaml configuration."""

    stake: StakeSettings = StakeSettings()
    auto_trader: AutoTraderSettings = AutoTraderSettings()
    analyzers: list[AnalyzerEntry] = [AnalyzerEntry(name=n) for n in _DEFAULT_ANALYZERS]

    @model_validator(mode="after")
    def _validate(self):
        known = set(list_analyzers())
        seen = set()
        for entry in self.analyzers:
            if entry.name not in known:
                raise ValueError(
                    f"unknown analyzer '{entry.name}', expected one of {sorted(known)}"
                )
            if entry.name in seen:
                raise ValueError(f"analyzer '{entry.name}' is configured twice")
            seen.add(entry.name)
        return self

    def get_enabled_analyzers(self) -> list[AnalyzerEntry]:
        return [a for a in self.analyzers if a.enabled]


_DEFAULT_PATH = Path(__file__).parent.parent / "trading.yaml"


def load_trading_config(path: Path | None = None) -> TradingConfig:
    """Load trading config from YAML file.

    Falls back to defaults (all analyzers, auto-trading off) if the file
    doesn't exist.
    """
    config_path = path or _DEFAULT_PATH

    if not config_path.exists():
        logger.info("No trading.yaml found at %s, using defaults", config_path)
        return TradingConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = TradingConfig(**raw)
    logger.info(
        "Loaded trading config: %d analyzers (%d enabled), auto-trader %s, risk mode %s",
        len(config.analyzers),
        len(config.get_enabled_analyzers()),
        "on" if config.auto_trader.enabled else "off",
        config.auto_trader.risk_mode.value,
    )
    return config
