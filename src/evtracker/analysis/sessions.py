"""Charging session detection from consumption samples and dispatch blocks."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from ..models import Interval, Session

# Consumption detection thresholds
# A 7kW home charger adds ~3.5 kWh per 30-min slot; background household load
# rarely exceeds 2 kWh in a half hour.
CHARGING_KWH_THRESHOLD = 2.0  # kWh per 30-min slot indicates charging
CONSUMPTION_GAP_MINUTES = 60

# Intelligent Octopus schedules a night's charge as several dispatch blocks,
# often hours apart.
DISPATCH_GAP_MINUTES = 240


@dataclass(frozen=True)
class SegmentationRule:
    """How intervals are grouped into sessions.

    threshold_kwh is only used in consumption mode; None means every
    interval is eligible (dispatch mode).
    """

    gap: timedelta
    threshold_kwh: float | None = None
    same_location: bool = False


def consumption_rule(
    threshold_kwh: float = CHARGING_KWH_THRESHOLD,
    gap_minutes: float = CONSUMPTION_GAP_MINUTES,
    same_location: bool = False,
) -> SegmentationRule:
    return SegmentationRule(
        gap=timedelta(minutes=gap_minutes),
        threshold_kwh=threshold_kwh,
        same_location=same_location,
    )


def dispatch_rule(
    gap_minutes: float = DISPATCH_GAP_MINUTES, same_location: bool = False
) -> SegmentationRule:
    return SegmentationRule(gap=timedelta(minutes=gap_minutes), same_location=same_location)


def build_session(blocks: list[Interval]) -> Session:
    """Aggregate an ordered, non-empty run of intervals into a Session."""
    return Session(
        start=blocks[0].start,
        end=max(block.end for block in blocks),
        total_energy_kwh=round(sum(block.energy_kwh for block in blocks), 3),
        blocks=tuple(blocks),
    )


def segment(intervals: Iterable[Interval], rule: SegmentationRule) -> list[Session]:
    """Group intervals into sessions.

    Algorithm:
    1. Sort by start (then end) so the output does not depend on input order.
    2. In consumption mode an interval below the threshold closes any open
       session and is discarded.
    3. An eligible interval extends the open session when the gap from the
       session's end to the interval's start is <= rule.gap (inclusive), and,
       if same_location is set, the location tags match. Otherwise the open
       session is closed and a new one starts.
    4. A session still open at the end of input is emitted.
    """
    sessions = []
    current: list[Interval] = []
    current_end = None

    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if rule.threshold_kwh is not None and interval.energy_kwh < rule.threshold_kwh:
            # Low consumption - end current session if one is open
            if current:
                sessions.append(build_session(current))
                current = []
            continue

        if current:
            within_gap = interval.start - current_end <= rule.gap
            same_place = not rule.same_location or interval.location == current[-1].location
            if within_gap and same_place:
                current.append(interval)
                current_end = max(current_end, interval.end)
                continue
            sessions.append(build_session(current))

        current = [interval]
        current_end = interval.end

    # Don't forget the session in progress at end of data
    if current:
        sessions.append(build_session(current))

    return sessions


def detect_charging_sessions(
    intervals: Iterable[Interval],
    threshold_kwh: float = CHARGING_KWH_THRESHOLD,
    gap_minutes: float = CONSUMPTION_GAP_MINUTES,
) -> list[Session]:
    """Detect charging sessions from half-hourly consumption samples."""
    return segment(intervals, consumption_rule(threshold_kwh, gap_minutes))


def group_dispatch_blocks(
    intervals: Iterable[Interval],
    gap_minutes: float = DISPATCH_GAP_MINUTES,
    same_location: bool = False,
) -> list[Session]:
    """Group smart-charging dispatch blocks into sessions using the gap rule only."""
    return segment(intervals, dispatch_rule(gap_minutes, same_location))
