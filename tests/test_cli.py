"""Tests for the command-line interface."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import block
from evtracker import db
from evtracker.analysis.sessions import build_session
from evtracker.cli import cli
from evtracker.collectors import octopus
from evtracker.importer import build_record


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, db_path, *args):
    return runner.invoke(cli, ["--db-path", str(db_path), *args])


def dispatch(start: datetime, kwh: float = 3.5) -> dict:
    return {
        "start": start.isoformat(),
        "end": (start + timedelta(minutes=30)).isoformat(),
        "delta": -kwh,
        "meta": {"location": "AT_HOME", "source": "smart-charge"},
    }


def dispatch_record(start: datetime, kwh: float = 3.5):
    session = build_session([block(start, start + timedelta(minutes=30), kwh)])
    return build_record(session, 7.0, "octopus-graphql")


def test_database_init_and_stats(runner, tmp_path):
    path = tmp_path / "cli.db"

    result = invoke(runner, path, "database", "init")
    assert result.exit_code == 0
    assert "Database initialized" in result.output
    assert path.exists()

    result = invoke(runner, path, "database", "stats")
    assert result.exit_code == 0
    assert "Charging sessions" in result.output


def test_sessions_preview_json(runner, tmp_path):
    export = tmp_path / "dispatches.json"
    export.write_text(json.dumps({"data": {"completedDispatches": [
        dispatch(datetime(2026, 1, 5, 0, 0, tzinfo=timezone.utc)),
        dispatch(datetime(2026, 1, 5, 4, 0, tzinfo=timezone.utc)),
    ]}}))

    result = invoke(runner, tmp_path / "cli.db", "sessions", "preview", "--file", str(export), "--json")
    assert result.exit_code == 0

    [session] = json.loads(result.output)
    assert session["date"] == "2026-01-05"
    assert (session["start_time"], session["end_time"]) == ("00:00", "04:30")
    assert session["energy_kwh"] == 7.0
    assert session["cost_gbp"] == 0.49
    assert session["dispatch_count"] == 2
    assert session["location"] == "AT_HOME"


def test_sessions_preview_rejects_bad_shape(runner, tmp_path):
    export = tmp_path / "dispatches.json"
    export.write_text(json.dumps({"unexpected": True}))

    result = invoke(runner, tmp_path / "cli.db", "sessions", "preview", "--file", str(export))
    assert result.exit_code == 1
    assert "completed_dispatches" in result.output


def test_delete_before_invalid_date(runner, db_path):
    result = invoke(runner, db_path, "sessions", "delete-before", "16/02/2026")
    assert result.exit_code == 1
    assert "Invalid date format" in result.output


def test_import_dispatches_without_credentials(runner, db_path):
    result = invoke(runner, db_path, "import", "dispatches")
    assert result.exit_code == 1
    assert "OCTOPUS_API_KEY" in result.output


def test_import_dispatches_end_to_end(runner, db_path, monkeypatch):
    """Running the daily import twice leaves one stored session."""
    start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=12)
    dispatches = [dispatch(start), dispatch(start + timedelta(hours=2))]

    monkeypatch.setenv("OCTOPUS_API_KEY", "sk_test")
    with patch.object(octopus, "obtain_token", return_value="tok"), \
            patch.object(octopus, "fetch_completed_dispatches", return_value=dispatches) as fetch:
        for _ in range(2):
            result = invoke(runner, db_path, "import", "dispatches", "--account", "A-1234", "--vehicle", "Zoe")
            assert result.exit_code == 0, result.output
            assert "Sessions detected: 1" in result.output

    assert fetch.call_args.args[:2] == ("tok", "A-1234")

    [stored] = db.list_sessions(db_path=db_path)
    assert stored.energy_kwh == 7.0
    assert stored.tariff_rate_pence == 7.0
    assert stored.vehicle == "Zoe"
    assert db.get_last_import(db_path)["updated"] == 1

    result = invoke(runner, db_path, "sessions", "stats")
    assert "Sessions: 1" in result.output


def test_import_rejects_negative_rate(runner, db_path, monkeypatch):
    monkeypatch.setenv("OCTOPUS_API_KEY", "sk_test")
    result = invoke(runner, db_path, "import", "dispatches", "--account", "A-1", "--rate", "-2")
    assert result.exit_code == 1
    assert "0 or greater" in result.output


def test_sessions_list_uses_london_date(runner, db_path, monkeypatch):
    """At 23:30 UTC in summer it is already the next day in London."""
    monkeypatch.setenv("COLUMNS", "200")
    late_evening = dispatch_record(datetime(2026, 6, 1, 21, 0, tzinfo=timezone.utc))
    after_midnight = dispatch_record(datetime(2026, 6, 1, 23, 10, tzinfo=timezone.utc))
    with db.get_connection(db_path) as conn:
        store = db.SqliteSessionStore(conn)
        store.insert(late_evening)
        store.insert(after_midnight)
        store.commit()

    with patch("evtracker.cli.datetime") as mock_datetime:
        mock_datetime.now.return_value = datetime(2026, 6, 1, 23, 30, tzinfo=timezone.utc)
        result = invoke(runner, db_path, "sessions", "list", "--days", "0")

    assert result.exit_code == 0, result.output
    assert "2026-06-02" in result.output
    assert "2026-06-01" not in result.output
