"""Idempotency keys for detected sessions."""

from datetime import datetime

from .models import Session
from .timefmt import utc_iso


def build_key(start: datetime, end: datetime, block_count: int) -> str:
    """Build a stable key from a session's span and block count.

    e.g. '2026-01-05T00:00:00.000Z_2026-01-05T04:30:00.000Z_2'

    A merge that changes the block count yields a new key, so superseded
    rows must be deleted explicitly rather than relying on upsert.
    """
    return f"{utc_iso(start)}_{utc_iso(end)}_{int(block_count)}"


def session_key(session: Session) -> str:
    return build_key(session.start, session.end, session.dispatch_count)
