"""Configuration loading.

Tunables live in config/evtracker.yaml; secrets and per-machine settings
come from environment variables (a .env file is honoured).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .analysis.sessions import (
    CHARGING_KWH_THRESHOLD,
    CONSUMPTION_GAP_MINUTES,
    DISPATCH_GAP_MINUTES,
    SegmentationRule,
    consumption_rule,
    dispatch_rule,
)
from .tariffs import DEFAULT_RATE_PENCE, SMART_CHARGING_RATE_PENCE

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "evtracker.yaml"


@dataclass
class ConsumptionSettings:
    threshold_kwh: float = CHARGING_KWH_THRESHOLD
    gap_minutes: float = CONSUMPTION_GAP_MINUTES
    same_location: bool = False

    @property
    def rule(self) -> SegmentationRule:
        return consumption_rule(self.threshold_kwh, self.gap_minutes, self.same_location)


@dataclass
class DispatchSettings:
    gap_minutes: float = DISPATCH_GAP_MINUTES
    same_location: bool = False
    preview_same_location: bool = True
    lookback_days: int = 3

    @property
    def rule(self) -> SegmentationRule:
        return dispatch_rule(self.gap_minutes, self.same_location)


@dataclass
class Config:
    default_rate_pence: float = DEFAULT_RATE_PENCE
    smart_charging_rate_pence: float = SMART_CHARGING_RATE_PENCE
    vehicle: str | None = None
    consumption: ConsumptionSettings = field(default_factory=ConsumptionSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)


def load_config(config_path: Path | None = None) -> Config:
    """Load settings from YAML, falling back to defaults for anything missing."""
    path = config_path or DEFAULT_CONFIG_PATH
    data = {}
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    tariff = data.get("tariff", {})
    consumption = data.get("consumption", {})
    dispatch = data.get("dispatch", {})

    return Config(
        default_rate_pence=float(tariff.get("default_rate_pence", DEFAULT_RATE_PENCE)),
        smart_charging_rate_pence=float(
            tariff.get("smart_charging_rate_pence", SMART_CHARGING_RATE_PENCE)
        ),
        vehicle=os.environ.get("DEFAULT_VEHICLE") or data.get("vehicle"),
        consumption=ConsumptionSettings(
            threshold_kwh=float(consumption.get("threshold_kwh", CHARGING_KWH_THRESHOLD)),
            gap_minutes=float(consumption.get("gap_minutes", CONSUMPTION_GAP_MINUTES)),
            same_location=bool(consumption.get("same_location", False)),
        ),
        dispatch=DispatchSettings(
            gap_minutes=float(dispatch.get("gap_minutes", DISPATCH_GAP_MINUTES)),
            same_location=bool(dispatch.get("same_location", False)),
            preview_same_location=bool(dispatch.get("preview_same_location", True)),
            lookback_days=int(dispatch.get("lookback_days", 3)),
        ),
    )
