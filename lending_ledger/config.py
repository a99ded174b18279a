"""Protocol configuration: frozen defaults plus a YAML loader."""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Union

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Risk parameters shared by every operation. Ratios are basis points,
    max_price_age is seconds.
    """
    close_factor: int = 5000
    min_health_factor: int = 10000
    min_leverage_health_factor: int = 12000
    trading_collateral_haircut: int = 8000
    max_collaterals: int = 10
    max_debts: int = 10
    max_leveraged_positions: int = 10
    max_price_age: int = 60


DEFAULT_CONFIG = ProtocolConfig()


def _validate(cfg: ProtocolConfig) -> None:
    """Raise on invalid configuration."""
    for f in fields(cfg):
        value = getattr(cfg, f.name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{f.name} must be an int, got {value!r}")
        if value < 0:
            raise ValueError(f"{f.name} cannot be negative, got {value}")
    if not 0 < cfg.close_factor <= 10000:
        raise ValueError(f"close_factor must be in (0, 10000], got {cfg.close_factor}")
    if cfg.trading_collateral_haircut > 10000:
        raise ValueError(
            f"trading_collateral_haircut cannot exceed 10000, got {cfg.trading_collateral_haircut}"
        )
    if cfg.min_health_factor == 0 or cfg.min_leverage_health_factor == 0:
        raise ValueError("health factor minimums must be positive")
    for name in ("max_collaterals", "max_debts", "max_leveraged_positions"):
        if getattr(cfg, name) == 0:
            raise ValueError(f"{name} must be at least 1")


def config_from_dict(raw: Dict[str, Any]) -> ProtocolConfig:
    """Overlay raw values on the defaults; unknown keys are rejected."""
    known = {f.name for f in fields(ProtocolConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config keys: {sorted(unknown)}")
    cfg = replace(DEFAULT_CONFIG, **raw)
    _validate(cfg)
    return cfg


def load_config(config_path: Union[str, Path]) -> ProtocolConfig:
    """Load and validate protocol configuration from a YAML file.

    The file may hold the keys at top level or under a ``protocol:`` section.
    Missing keys keep their defaults.

    Raises:
        FileNotFoundError: If config_path does not exist
        ValueError: On unknown keys or out-of-range values
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")
    if "protocol" in raw:
        raw = raw["protocol"] or {}

    cfg = config_from_dict(raw)
    logger.info("Configuration loaded from %s", config_path)
    return cfg
