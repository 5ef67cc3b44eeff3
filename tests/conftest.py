"""Shared fixtures for tests."""

from datetime import datetime, timezone

import pytest

from evtracker import db
from evtracker.models import Interval, IntervalSource


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Ensure tests never touch real credentials or the user's database."""
    for name in (
        "OCTOPUS_API_KEY",
        "OCTOPUS_MPAN",
        "OCTOPUS_SERIAL",
        "OCTOPUS_ACCOUNT_NUMBER",
        "DEFAULT_VEHICLE",
        "EVTRACKER_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_path(tmp_path):
    """An initialized SQLite database in a temporary directory."""
    path = tmp_path / "evtracker.db"
    db.init_db(path)
    return path


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def block(start: datetime, end: datetime, kwh: float, location: str | None = None,
          source: IntervalSource = IntervalSource.DISPATCH) -> Interval:
    return Interval(start=start, end=end, energy_kwh=kwh, source=source, location=location)
