"""Normalize provider records into canonical intervals.

Each kind of upstream record is described by a RecordLayout: a prioritized
list of field names for the start, end, energy and location values. The
first field that is present and non-empty wins. Dotted names look inside
nested mappings, e.g. ``meta.location`` for GraphQL dispatches.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .models import Interval, IntervalSource
from .timefmt import parse_instant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordLayout:
    """Field-resolution order for one kind of provider record."""

    source: IntervalSource
    start_fields: tuple[str, ...]
    end_fields: tuple[str, ...]
    energy_fields: tuple[str, ...]
    location_fields: tuple[str, ...] = ()
    # Optional field naming the IntervalSource; falls back to `source`
    source_fields: tuple[str, ...] = ()


# REST consumption: {"consumption": 0.21, "interval_start": ..., "interval_end": ...}
CONSUMPTION_LAYOUT = RecordLayout(
    source=IntervalSource.CONSUMPTION,
    start_fields=("interval_start",),
    end_fields=("interval_end",),
    energy_fields=("consumption",),
)

# GraphQL completedDispatches and hand-exported dispatch JSON
DISPATCH_LAYOUT = RecordLayout(
    source=IntervalSource.DISPATCH,
    start_fields=("start", "start_time", "startDt"),
    end_fields=("end", "end_time", "endDt"),
    energy_fields=("delta", "charge_in_kwh", "charged_kwh", "kwh", "energy_added"),
    location_fields=("location", "meta.location"),
)

# Blocks as serialized into the dispatch_blocks column by this package
STORED_BLOCK_LAYOUT = RecordLayout(
    source=IntervalSource.DISPATCH,
    start_fields=("start",),
    end_fields=("end",),
    energy_fields=("charged_kwh", "charge_in_kwh"),
    location_fields=("location",),
    source_fields=("source",),
)


def resolve_field(record: Mapping[str, Any], names: Iterable[str]) -> Any:
    """Return the first present, non-empty value among `names`."""
    for name in names:
        value: Any = record
        for part in name.split("."):
            if not isinstance(value, Mapping):
                value = None
                break
            value = value.get(part)
        if value is not None and value != "":
            return value
    return None


def _parse_energy(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        energy = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(energy):
        return None
    return abs(energy)


def _resolve_source(record: Mapping[str, Any], layout: RecordLayout) -> IntervalSource:
    tag = resolve_field(record, layout.source_fields)
    try:
        return IntervalSource(tag) if tag is not None else layout.source
    except ValueError:
        return layout.source


def normalize_record(record: Mapping[str, Any], layout: RecordLayout) -> Interval | None:
    """Convert one provider record into an Interval.

    Returns None when the timestamps are unparseable, when the end precedes
    the start, or when the energy value is missing or not finite. Energy is
    the magnitude of the reported delta; Octopus reports dispatched charge
    as a negative number.
    """
    if not isinstance(record, Mapping):
        return None

    start = parse_instant(resolve_field(record, layout.start_fields))
    end = parse_instant(resolve_field(record, layout.end_fields))
    if start is None or end is None or end < start:
        return None

    energy = _parse_energy(resolve_field(record, layout.energy_fields))
    if energy is None:
        return None

    location = resolve_field(record, layout.location_fields)
    return Interval(
        start=start,
        end=end,
        energy_kwh=energy,
        source=_resolve_source(record, layout),
        location=str(location) if location is not None else None,
    )


def normalize_records(
    records: Iterable[Mapping[str, Any]], layout: RecordLayout
) -> list[Interval]:
    """Normalize a batch, dropping malformed records."""
    intervals = []
    dropped = 0
    for record in records:
        interval = normalize_record(record, layout)
        if interval is None:
            dropped += 1
            continue
        intervals.append(interval)

    if dropped:
        logger.debug("Dropped %d malformed %s record(s)", dropped, layout.source.value)
    return intervals
