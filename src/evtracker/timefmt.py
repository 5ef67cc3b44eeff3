"""Civil (Europe/London) date and time formatting.

Octopus Energy is UK based, so every stored or displayed date/time is
rendered in Europe/London regardless of the machine's local timezone.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/London"
CIVIL_TZ = ZoneInfo(DEFAULT_TIMEZONE)


def parse_instant(value) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Accepts a trailing 'Z'. Naive values are taken as UTC. Returns None for
    anything that cannot be parsed.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_civil(instant: datetime, tz: ZoneInfo = CIVIL_TZ) -> datetime:
    return instant.astimezone(tz)


def civil_date(instant: datetime, tz: ZoneInfo = CIVIL_TZ) -> str:
    """Format an instant as YYYY-MM-DD in the civil timezone."""
    return to_civil(instant, tz).strftime("%Y-%m-%d")


def civil_time(instant: datetime, tz: ZoneInfo = CIVIL_TZ) -> str:
    """Format an instant as 24-hour HH:MM in the civil timezone."""
    return to_civil(instant, tz).strftime("%H:%M")


def utc_iso(instant: datetime) -> str:
    """Render an instant as UTC ISO-8601 with milliseconds and a Z suffix."""
    text = instant.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def civil_window(date: str, start_time: str, end_time: str) -> tuple[datetime, datetime]:
    """Build the naive civil start/end of a stored session.

    An end time at or before the start time means the session ran past
    midnight, so the end moves to the following day.
    """
    start = datetime.fromisoformat(f"{date[:10]}T{start_time[:5]}")
    end = datetime.fromisoformat(f"{date[:10]}T{end_time[:5]}")
    if end <= start:
        end += timedelta(days=1)
    return start, end
