import math

from conftest import utc
from evtracker.models import IntervalSource
from evtracker.normalize import (
    CONSUMPTION_LAYOUT,
    DISPATCH_LAYOUT,
    STORED_BLOCK_LAYOUT,
    normalize_record,
    normalize_records,
    resolve_field,
)


def test_consumption_record():
    interval = normalize_record(
        {
            "consumption": 3.21,
            "interval_start": "2026-01-05T01:00:00Z",
            "interval_end": "2026-01-05T01:30:00Z",
        },
        CONSUMPTION_LAYOUT,
    )

    assert interval.start == utc(2026, 1, 5, 1, 0)
    assert interval.end == utc(2026, 1, 5, 1, 30)
    assert interval.energy_kwh == 3.21
    assert interval.source == IntervalSource.CONSUMPTION
    assert interval.location is None


def test_graphql_dispatch_negative_delta():
    """completedDispatches reports charge as a negative delta; only magnitude matters."""
    interval = normalize_record(
        {
            "start": "2026-01-05T00:00:00+00:00",
            "end": "2026-01-05T00:30:00+00:00",
            "delta": "-3.5",
            "meta": {"location": "AT_HOME", "source": "smart-charge"},
        },
        DISPATCH_LAYOUT,
    )

    assert interval.energy_kwh == 3.5
    assert interval.location == "AT_HOME"
    assert interval.source == IntervalSource.DISPATCH


def test_dispatch_field_priority():
    """Earlier field names win over later ones."""
    interval = normalize_record(
        {
            "start_time": "2026-01-05T00:00:00Z",
            "end_time": "2026-01-05T00:30:00Z",
            "charge_in_kwh": -1.2,
            "kwh": 99,
            "location": "AWAY",
        },
        DISPATCH_LAYOUT,
    )

    assert interval.start == utc(2026, 1, 5, 0, 0)
    assert interval.energy_kwh == 1.2
    assert interval.location == "AWAY"


def test_resolve_field_skips_empty_values():
    record = {"start": "", "start_time": "2026-01-05T00:00:00Z", "meta": {"location": "X"}}
    assert resolve_field(record, ("start", "start_time")) == "2026-01-05T00:00:00Z"
    assert resolve_field(record, ("meta.location",)) == "X"
    assert resolve_field(record, ("meta.missing", "nope")) is None


def test_naive_timestamp_read_as_utc():
    interval = normalize_record(
        {"start": "2026-06-01T00:00:00", "end": "2026-06-01T00:30:00", "delta": 1},
        DISPATCH_LAYOUT,
    )
    assert interval.start == utc(2026, 6, 1, 0, 0)


def test_malformed_records_rejected():
    good_times = {"start": "2026-01-05T00:00:00Z", "end": "2026-01-05T00:30:00Z"}

    assert normalize_record({**good_times, "delta": "abc"}, DISPATCH_LAYOUT) is None
    assert normalize_record({**good_times, "delta": math.nan}, DISPATCH_LAYOUT) is None
    assert normalize_record({**good_times, "delta": "inf"}, DISPATCH_LAYOUT) is None
    assert normalize_record({**good_times}, DISPATCH_LAYOUT) is None
    assert normalize_record({"start": "yesterday", "end": "today", "delta": 1}, DISPATCH_LAYOUT) is None
    assert normalize_record({"end": "2026-01-05T00:30:00Z", "delta": 1}, DISPATCH_LAYOUT) is None
    assert normalize_record("not a record", DISPATCH_LAYOUT) is None


def test_end_before_start_rejected():
    record = {"start": "2026-01-05T01:00:00Z", "end": "2026-01-05T00:30:00Z", "delta": 1}
    assert normalize_record(record, DISPATCH_LAYOUT) is None


def test_batch_drops_bad_records():
    records = [
        {"start": "2026-01-05T00:00:00Z", "end": "2026-01-05T00:30:00Z", "delta": -1},
        {"start": "bad", "end": "2026-01-05T00:30:00Z", "delta": -1},
        {"start": "2026-01-05T01:00:00Z", "end": "2026-01-05T01:30:00Z", "delta": -2},
    ]

    intervals = normalize_records(records, DISPATCH_LAYOUT)
    assert [i.energy_kwh for i in intervals] == [1.0, 2.0]


def test_stored_block_keeps_source_tag():
    interval = normalize_record(
        {
            "start": "2026-01-05T01:00:00.000Z",
            "end": "2026-01-05T01:30:00.000Z",
            "charged_kwh": 3.0,
            "cost": 0.21,
            "source": "consumption",
            "location": None,
        },
        STORED_BLOCK_LAYOUT,
    )

    assert interval.source == IntervalSource.CONSUMPTION
    assert interval.location is None
