"""Database connection, schema and charging-session storage."""

import json
import os
import random
import sqlite3
import string
import time
from contextlib import contextmanager
from datetime import date as date_cls, datetime, timedelta
from pathlib import Path
from typing import Iterator, Protocol, Sequence

from .analysis.merge import is_merge_candidate
from .analysis.sessions import build_session
from .models import ImportSummary, Session, SessionRecord
from .normalize import STORED_BLOCK_LAYOUT, normalize_records
from .tariffs import block_cost
from .timefmt import CIVIL_TZ, civil_time, civil_window, parse_instant, utc_iso

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "ev-tracker" / "evtracker.db"

# Source tags of rows produced by provider imports (manual rows never merge)
PROVIDER_SOURCES = ("octopus", "octopus-graphql")

SCHEMA = """
-- Charging sessions (manual entries and provider imports)
CREATE TABLE IF NOT EXISTS charging_sessions (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    start_at TEXT,
    end_at TEXT,
    energy_added REAL NOT NULL,
    start_soc REAL,
    end_soc REAL,
    tariff_rate REAL,
    cost REAL,
    notes TEXT,
    source TEXT NOT NULL DEFAULT 'manual',
    vehicle TEXT,
    idempotency_key TEXT UNIQUE,
    dispatch_count INTEGER,
    dispatch_blocks TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Key/value settings (last import summary)
CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sessions_date ON charging_sessions(date, start_time);
CREATE INDEX IF NOT EXISTS idx_sessions_source ON charging_sessions(source, date);
"""


class DuplicateSessionError(Exception):
    """A session with the same idempotency key is already stored."""
    pass


def get_db_path() -> Path:
    """Get the database path, creating parent directories if needed."""
    db_path = Path(os.environ.get("EVTRACKER_DB_PATH") or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Get a database connection with row factory enabled."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()


def generate_id() -> str:
    """Millisecond timestamp plus a random suffix, e.g. '1767571200000-k3j9x0a1b'."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def serialize_blocks(record: SessionRecord) -> str:
    """Serialize a session's blocks, with civil times and per-block cost."""
    blocks = []
    for block in record.session.blocks:
        blocks.append(
            {
                "start": utc_iso(block.start),
                "end": utc_iso(block.end),
                "start_local": civil_time(block.start),
                "end_local": civil_time(block.end),
                "charged_kwh": block.energy_kwh,
                "cost": block_cost(block, record.tariff_rate_pence),
                "source": block.source.value,
                "location": block.location,
            }
        )
    return json.dumps(blocks)


def row_to_record(row: sqlite3.Row) -> SessionRecord:
    """Rebuild a SessionRecord (with its blocks) from a stored row."""
    raw_blocks = json.loads(row["dispatch_blocks"]) if row["dispatch_blocks"] else []
    blocks = normalize_records(raw_blocks, STORED_BLOCK_LAYOUT)

    if blocks:
        session = build_session(sorted(blocks, key=lambda b: (b.start, b.end)))
    else:
        # Manual entries have no blocks; fall back to the stored span
        civil_start, civil_end = civil_window(row["date"], row["start_time"], row["end_time"])
        start = parse_instant(row["start_at"]) or civil_start.replace(tzinfo=CIVIL_TZ)
        end = parse_instant(row["end_at"]) or civil_end.replace(tzinfo=CIVIL_TZ)
        session = Session(
            start=start, end=end, total_energy_kwh=row["energy_added"], blocks=()
        )

    return SessionRecord(
        session=session,
        date=row["date"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        tariff_rate_pence=row["tariff_rate"] or 0.0,
        cost_gbp=row["cost"] or 0.0,
        source=row["source"],
        idempotency_key=row["idempotency_key"] or "",
        vehicle=row["vehicle"],
        notes=row["notes"],
        start_soc=row["start_soc"],
        end_soc=row["end_soc"],
        id=row["id"],
    )


def _record_values(record: SessionRecord) -> dict:
    return {
        "date": record.date,
        "start_time": record.start_time,
        "end_time": record.end_time,
        "start_at": utc_iso(record.session.start),
        "end_at": utc_iso(record.session.end),
        "energy_added": record.energy_kwh,
        "start_soc": record.start_soc,
        "end_soc": record.end_soc,
        "tariff_rate": record.tariff_rate_pence,
        "cost": record.cost_gbp,
        "notes": record.notes,
        "source": record.source,
        "vehicle": record.vehicle,
        "idempotency_key": record.idempotency_key,
        "dispatch_count": record.dispatch_count or None,
        "dispatch_blocks": serialize_blocks(record) if record.session.blocks else None,
    }


class SessionStore(Protocol):
    """Storage operations the importer needs."""

    def find_candidates(self, incoming: SessionRecord, gap: timedelta) -> list[SessionRecord]: ...

    def insert(self, record: SessionRecord) -> str: ...

    def update(self, record_id: str, record: SessionRecord) -> None: ...

    def delete(self, record_ids: Sequence[str]) -> int: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqliteSessionStore:
    """SessionStore backed by the charging_sessions table.

    Uses a single connection so each reconciliation's lookup and writes
    share one transaction, committed or rolled back by the caller.
    """

    def __init__(self, conn: sqlite3.Connection, sources: Sequence[str] = PROVIDER_SOURCES):
        self.conn = conn
        self.sources = tuple(sources)

    def find_candidates(self, incoming: SessionRecord, gap: timedelta) -> list[SessionRecord]:
        """Stored provider sessions whose civil window lies within gap of incoming.

        Rows are pre-filtered by date (a stored session may start the day
        before and wrap past midnight), then checked with the exact window
        predicate. Latest start first.
        """
        day = date_cls.fromisoformat(incoming.date[:10])
        span_days = timedelta(days=gap.days + 2)
        placeholders = ", ".join("?" for _ in self.sources)
        rows = self.conn.execute(
            f"""SELECT * FROM charging_sessions
                WHERE source IN ({placeholders})
                  AND date >= ? AND date <= ?
                ORDER BY date DESC, start_time DESC""",
            (*self.sources, (day - span_days).isoformat(), (day + span_days).isoformat()),
        ).fetchall()

        records = [row_to_record(row) for row in rows]
        return [r for r in records if is_merge_candidate(r, incoming, gap)]

    def insert(self, record: SessionRecord) -> str:
        record_id = record.id or generate_id()
        values = _record_values(record)
        columns = ["id", *values]
        placeholders = ", ".join("?" for _ in columns)
        try:
            self.conn.execute(
                f"INSERT INTO charging_sessions ({', '.join(columns)}) VALUES ({placeholders})",
                (record_id, *values.values()),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateSessionError(f"Session {record.idempotency_key} already stored") from e
        return record_id

    def update(self, record_id: str, record: SessionRecord) -> None:
        values = _record_values(record)
        # Manual fields are kept from the stored row
        for column in ("start_soc", "end_soc", "notes"):
            values.pop(column)
        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            self.conn.execute(
                f"UPDATE charging_sessions SET {assignments} WHERE id = ?",
                (*values.values(), record_id),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateSessionError(f"Session {record.idempotency_key} already stored") from e

    def delete(self, record_ids: Sequence[str]) -> int:
        if not record_ids:
            return 0
        placeholders = ", ".join("?" for _ in record_ids)
        cursor = self.conn.execute(
            f"DELETE FROM charging_sessions WHERE id IN ({placeholders})", tuple(record_ids)
        )
        return cursor.rowcount

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()


def list_sessions(
    start_date: str | None = None, end_date: str | None = None, db_path: Path | None = None
) -> list[SessionRecord]:
    """Get stored sessions, optionally within a civil date range, newest first."""
    query = "SELECT * FROM charging_sessions WHERE 1 = 1"
    params = []
    if start_date:
        query += " AND date >= ?"
        params.append(start_date)
    if end_date:
        query += " AND date <= ?"
        params.append(end_date)
    query += " ORDER BY date DESC, start_time DESC"

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
        return [row_to_record(row) for row in rows]


def delete_sessions_before(cutoff: str, db_path: Path | None = None) -> int:
    """Delete sessions dated before cutoff (YYYY-MM-DD). Returns count deleted."""
    date_cls.fromisoformat(cutoff)
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM charging_sessions WHERE date < ?", (cutoff,))
        conn.commit()
        return cursor.rowcount


def get_session_stats(db_path: Path | None = None) -> dict:
    """Totals across all stored sessions."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            """SELECT COUNT(*) as count,
                      COALESCE(SUM(energy_added), 0) as energy,
                      COALESCE(SUM(cost), 0) as cost
               FROM charging_sessions"""
        ).fetchone()

    count = row["count"]
    return {
        "total_sessions": count,
        "total_energy_kwh": round(row["energy"], 3),
        "total_cost_gbp": round(row["cost"], 2),
        "average_energy_kwh": round(row["energy"] / count, 3) if count else 0,
    }


def record_last_import(summary: ImportSummary, db_path: Path | None = None) -> None:
    """Store the summary of the latest import run."""
    value = json.dumps({"timestamp": datetime.now().astimezone().isoformat(), **summary.as_dict()})
    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO app_settings (key, value) VALUES ('last_import', ?)
               ON CONFLICT (key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP""",
            (value,),
        )
        conn.commit()


def get_last_import(db_path: Path | None = None) -> dict | None:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT value FROM app_settings WHERE key = 'last_import'").fetchone()
        return json.loads(row["value"]) if row else None


def get_stats(db_path: Path | None = None) -> dict:
    """Get database statistics."""
    with get_connection(db_path) as conn:
        stats = {}

        row = conn.execute(
            "SELECT COUNT(*) as count, MIN(date) as earliest, MAX(date) as latest FROM charging_sessions"
        ).fetchone()
        stats["charging_sessions"] = {
            "count": row["count"],
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        # By source
        rows = conn.execute(
            "SELECT source, COUNT(*) as count FROM charging_sessions GROUP BY source"
        ).fetchall()
        stats["sessions_by_source"] = {row["source"]: row["count"] for row in rows}

    stats["last_import"] = get_last_import(db_path)
    return stats
