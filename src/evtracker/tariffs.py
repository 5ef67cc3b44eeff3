"""Tariff rate resolution and cost calculation."""

from .models import Interval, Session

# Intelligent Octopus Go off-peak rate (pence per kWh) applied to smart
# charging. This is a fixed placeholder, not read from the account's actual
# tariff schedule.
SMART_CHARGING_RATE_PENCE = 7.0

# Rate used when neither an override nor auto-detection is requested
DEFAULT_RATE_PENCE = 7.5


def resolve_rate(
    override: float | None = None,
    auto_detect: bool = False,
    default_rate: float = DEFAULT_RATE_PENCE,
    smart_charging_rate: float = SMART_CHARGING_RATE_PENCE,
) -> float:
    """Get the rate in pence/kWh to apply to a session.

    An explicit override wins, then auto-detection (the smart-charging
    constant), then the configured default.
    """
    if override is not None:
        rate = override
    elif auto_detect:
        rate = smart_charging_rate
    else:
        rate = default_rate

    if rate < 0:
        raise ValueError(f"Tariff rate must be 0 or greater, got {rate}")
    return float(rate)


def calculate_cost(energy_kwh: float, rate_pence: float) -> float:
    """Calculate cost in GBP, rounded to the penny."""
    return round(energy_kwh * rate_pence / 100, 2)


def session_cost(session: Session, rate_pence: float) -> float:
    return calculate_cost(session.total_energy_kwh, rate_pence)


def block_cost(block: Interval, rate_pence: float) -> float:
    """Blocks carry no rate of their own; the session rate applies."""
    return calculate_cost(block.energy_kwh, rate_pence)
