import pytest

from conftest import block, utc
from evtracker.analysis.sessions import build_session
from evtracker.tariffs import (
    DEFAULT_RATE_PENCE,
    SMART_CHARGING_RATE_PENCE,
    block_cost,
    calculate_cost,
    resolve_rate,
    session_cost,
)


def test_calculate_cost_rounds_to_penny():
    assert calculate_cost(7.0, 7.0) == 0.49
    assert calculate_cost(10.0, 7.5) == 0.75
    assert calculate_cost(0.0, 7.0) == 0.0
    assert calculate_cost(1.234, 24.5) == 0.3


def test_session_and_block_cost_use_session_rate():
    blocks = [
        block(utc(2026, 1, 5, 0, 0), utc(2026, 1, 5, 0, 30), 3.5),
        block(utc(2026, 1, 5, 4, 0), utc(2026, 1, 5, 4, 30), 3.5),
    ]
    session = build_session(blocks)

    assert session_cost(session, 7.0) == 0.49
    assert block_cost(blocks[0], 10.0) == 0.35


def test_resolve_rate_precedence():
    assert resolve_rate() == DEFAULT_RATE_PENCE
    assert resolve_rate(auto_detect=True) == SMART_CHARGING_RATE_PENCE
    assert resolve_rate(override=12.0, auto_detect=True) == 12.0
    assert resolve_rate(override=0) == 0.0
    assert resolve_rate(default_rate=9.0) == 9.0
    assert resolve_rate(auto_detect=True, smart_charging_rate=6.5) == 6.5


def test_resolve_rate_rejects_negative():
    with pytest.raises(ValueError, match="0 or greater"):
        resolve_rate(override=-1)
