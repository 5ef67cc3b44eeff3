"""Data models for intervals, charging sessions and import results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IntervalSource(str, Enum):
    """Where a piece of charging evidence came from."""

    CONSUMPTION = "consumption"
    DISPATCH = "dispatch"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Interval:
    """A timestamped span with the energy charged during it."""

    start: datetime
    end: datetime
    energy_kwh: float
    source: IntervalSource = IntervalSource.UNKNOWN
    location: str | None = None

    @property
    def key(self) -> tuple[datetime, datetime]:
        """Dedup key: the exact time window."""
        return (self.start, self.end)


@dataclass
class Session:
    """A cluster of intervals representing one charging event."""

    start: datetime
    end: datetime
    total_energy_kwh: float
    blocks: tuple[Interval, ...]

    @property
    def dispatch_count(self) -> int:
        return len(self.blocks)

    @property
    def location(self) -> str | None:
        return self.blocks[0].location if self.blocks else None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start <= end and self.end >= start


@dataclass
class SessionRecord:
    """A session annotated for storage and display."""

    session: Session
    date: str  # YYYY-MM-DD, Europe/London
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    tariff_rate_pence: float
    cost_gbp: float
    source: str
    idempotency_key: str
    vehicle: str | None = None
    notes: str | None = None
    start_soc: float | None = None
    end_soc: float | None = None
    id: str | None = None

    @property
    def energy_kwh(self) -> float:
        return self.session.total_energy_kwh

    @property
    def dispatch_count(self) -> int:
        return self.session.dispatch_count


@dataclass
class MergePlan:
    """What the store must do to fold an incoming session into stored ones."""

    session: Session
    keep_id: str
    delete_ids: list[str] = field(default_factory=list)


@dataclass
class ImportSummary:
    """Counts reported at the end of an import run."""

    detected: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    total_energy_kwh: float = 0.0
    total_cost_gbp: float = 0.0

    def as_dict(self) -> dict:
        return {
            "detected": self.detected,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "deleted": self.deleted,
            "total_energy_kwh": round(self.total_energy_kwh, 3),
            "total_cost_gbp": round(self.total_cost_gbp, 2),
        }
