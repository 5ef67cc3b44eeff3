"""Import charging sessions from Octopus Energy into the session store.

Pipeline: provider records -> normalize -> segment -> annotate -> reconcile.

Reconciliation assumes at most one import is in flight for any overlapping
time window. Two concurrent runs against the same store can both miss each
other's rows and insert duplicates or fragments; run imports sequentially
(e.g. from a single cron job).
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

import httpx

from .analysis.merge import plan_merge
from .analysis.sessions import SegmentationRule, dispatch_rule, segment
from .collectors import octopus
from .db import DuplicateSessionError, SessionStore
from .keys import session_key
from .models import ImportSummary, Session, SessionRecord
from .normalize import CONSUMPTION_LAYOUT, DISPATCH_LAYOUT, normalize_records
from .tariffs import session_cost
from .timefmt import civil_date, civil_time

logger = logging.getLogger(__name__)

CONSUMPTION_SOURCE = "octopus"
DISPATCH_SOURCE = "octopus-graphql"


def build_record(
    session: Session,
    rate_pence: float,
    source: str,
    vehicle: str | None = None,
    notes: str | None = None,
) -> SessionRecord:
    """Annotate a session with civil date/times, cost and its idempotency key."""
    return SessionRecord(
        session=session,
        date=civil_date(session.start),
        start_time=civil_time(session.start),
        end_time=civil_time(session.end),
        tariff_rate_pence=rate_pence,
        cost_gbp=session_cost(session, rate_pence),
        source=source,
        idempotency_key=session_key(session),
        vehicle=vehicle,
        notes=notes,
    )


def reconcile(record: SessionRecord, store: SessionStore, rule: SegmentationRule) -> tuple[str, int]:
    """Insert a new session or fold it into overlapping stored ones.

    Returns (outcome, deleted_rows) where outcome is "inserted", "updated"
    or "skipped" (idempotency key already stored).
    """
    candidates = store.find_candidates(record, rule.gap)
    plan = plan_merge(record.session, candidates, rule)

    try:
        if plan is None:
            store.insert(record)
            store.commit()
            return "inserted", 0

        keep = next(c for c in candidates if c.id == plan.keep_id)
        merged = build_record(
            plan.session,
            record.tariff_rate_pence,
            record.source,
            vehicle=keep.vehicle or record.vehicle,
            notes=keep.notes or record.notes,
        )
        # Drop superseded rows first so the merged key is free
        deleted = store.delete(plan.delete_ids)
        store.update(plan.keep_id, merged)
        store.commit()
        return "updated", deleted
    except DuplicateSessionError:
        # Undo this session's deletes; earlier sessions are already committed
        store.rollback()
        logger.info("Skipped duplicate session %s", record.idempotency_key)
        return "skipped", 0


def import_sessions(
    sessions: Iterable[Session],
    store: SessionStore,
    rate_pence: float,
    source: str,
    rule: SegmentationRule,
    vehicle: str | None = None,
) -> ImportSummary:
    """Annotate and reconcile detected sessions against the store."""
    summary = ImportSummary()

    for session in sessions:
        record = build_record(
            session,
            rate_pence,
            source,
            vehicle=vehicle,
            notes="Auto-imported from Octopus Energy",
        )
        summary.detected += 1
        summary.total_energy_kwh += record.energy_kwh
        summary.total_cost_gbp += record.cost_gbp

        outcome, deleted = reconcile(record, store, rule)
        summary.deleted += deleted
        if outcome == "inserted":
            summary.inserted += 1
        elif outcome == "updated":
            summary.updated += 1
        else:
            summary.skipped += 1
        logger.debug(
            "%s: %s %s-%s %.3f kWh",
            outcome,
            record.date,
            record.start_time,
            record.end_time,
            record.energy_kwh,
        )

    return summary


def import_consumption(
    credentials: octopus.OctopusCredentials,
    store: SessionStore,
    date_from: date,
    date_to: date,
    rate_pence: float,
    rule: SegmentationRule,
    vehicle: str | None = None,
    client: httpx.Client | None = None,
) -> ImportSummary:
    """Detect sessions from REST consumption data for a civil date range."""
    records = octopus.fetch_consumption(
        credentials,
        f"{date_from.isoformat()}T00:00:00Z",
        f"{date_to.isoformat()}T23:59:59Z",
        client=client,
    )
    intervals = normalize_records(records, CONSUMPTION_LAYOUT)
    sessions = segment(intervals, rule)
    logger.info("Detected %d session(s) from %d intervals", len(sessions), len(intervals))

    merge_rule = dispatch_rule(rule.gap.total_seconds() / 60, rule.same_location)
    return import_sessions(sessions, store, rate_pence, CONSUMPTION_SOURCE, merge_rule, vehicle)


def import_dispatches(
    credentials: octopus.OctopusCredentials,
    store: SessionStore,
    rate_pence: float,
    rule: SegmentationRule,
    days: int = 3,
    vehicle: str | None = None,
    now: datetime | None = None,
    client: httpx.Client | None = None,
) -> ImportSummary:
    """Import recent completed dispatches as sessions.

    The completedDispatches feed lags, so a few days are re-read on every
    run; the merge path folds repeats into existing rows.
    """
    if not credentials.account_number:
        raise ValueError("An Octopus account number is required to fetch dispatches")

    token = octopus.obtain_token(credentials.api_key, client=client)
    records = octopus.fetch_completed_dispatches(token, credentials.account_number, client=client)

    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    blocks = [b for b in normalize_records(records, DISPATCH_LAYOUT) if b.end >= since]
    sessions = segment(blocks, rule)
    logger.info("Grouped %d dispatch block(s) into %d session(s)", len(blocks), len(sessions))

    return import_sessions(sessions, store, rate_pence, DISPATCH_SOURCE, rule, vehicle)


def preview_dispatches(
    records: Iterable[Mapping[str, Any]], rule: SegmentationRule, rate_pence: float
) -> list[SessionRecord]:
    """Group raw dispatch records into annotated sessions without storing them."""
    blocks = normalize_records(records, DISPATCH_LAYOUT)
    return [build_record(s, rate_pence, DISPATCH_SOURCE) for s in segment(blocks, rule)]


def extract_dispatches(payload: Any) -> list[dict]:
    """Accept a bare list, a completed_dispatches wrapper or a GraphQL response."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("completed_dispatches", "completedDispatches"):
            if isinstance(payload.get(key), list):
                return payload[key]
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("completedDispatches"), list):
            return data["completedDispatches"]
    raise ValueError("JSON must be an array or include a completed_dispatches array")
