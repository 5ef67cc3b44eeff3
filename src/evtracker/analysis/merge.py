"""Reconciliation of newly detected sessions with previously stored ones.

Imports run over overlapping date windows (the dispatch feed lags by up to a
few days), so the same charge is seen several times, sometimes with extra
blocks. Instead of inserting a second row, the new evidence is folded into the
stored session(s) covering the same time cluster.
"""

from datetime import timedelta
from typing import Sequence

from ..models import Interval, MergePlan, Session, SessionRecord
from ..timefmt import civil_window
from .sessions import SegmentationRule, segment


def is_merge_candidate(stored: SessionRecord, incoming: SessionRecord, gap: timedelta) -> bool:
    """Window predicate used by the store's candidate lookup.

    Both spans are taken from civil date/time fields, with overnight wrap.
    A stored session is a candidate when it ends no earlier than gap before
    the incoming start and starts no later than gap after the incoming end.
    """
    stored_start, stored_end = civil_window(stored.date, stored.start_time, stored.end_time)
    incoming_start, incoming_end = civil_window(
        incoming.date, incoming.start_time, incoming.end_time
    )
    return stored_end >= incoming_start - gap and stored_start <= incoming_end + gap


def dedupe_blocks(blocks: Sequence[Interval]) -> list[Interval]:
    """Drop blocks whose exact (start, end) window was already seen."""
    seen = set()
    unique = []
    for block in blocks:
        if block.key in seen:
            continue
        seen.add(block.key)
        unique.append(block)
    return unique


def select_group(groups: list[Session], incoming: Session) -> Session | None:
    """Pick the regrouped session that overlaps the incoming one.

    Falls back to the group with the most energy when nothing overlaps.
    """
    if not groups:
        return None
    for group in groups:
        if group.overlaps(incoming.start, incoming.end):
            return group
    return max(groups, key=lambda g: g.total_energy_kwh)


def merge_sessions(
    incoming: Session, candidates: Sequence[Session], rule: SegmentationRule
) -> Session | None:
    """Union, dedupe and regroup the blocks of incoming and candidate sessions.

    Candidate blocks come first, so a stored block wins over an incoming one
    with the same window. Returns None only when there are no blocks at all.
    """
    blocks = [block for session in candidates for block in session.blocks]
    blocks.extend(incoming.blocks)

    dispatch_mode = SegmentationRule(gap=rule.gap, same_location=rule.same_location)
    groups = segment(dedupe_blocks(blocks), dispatch_mode)
    return select_group(groups, incoming)


def _survivor_order(record: SessionRecord):
    return (record.session.start, record.id or "")


def plan_merge(
    incoming: Session, candidates: Sequence[SessionRecord], rule: SegmentationRule
) -> MergePlan | None:
    """Decide how the store should absorb an incoming session.

    The merged session replaces the candidate with the latest start among
    those sharing a block with it; the other sharing candidates are now
    subsumed and listed for deletion. Candidates with no block in the
    merged session belong to another cluster and are left alone.

    Returns None when no stored candidate has a block in the merged
    session (plain insert).
    """
    stored = [c for c in candidates if c.id is not None]
    if not stored:
        return None

    merged = merge_sessions(incoming, [c.session for c in stored], rule)
    if merged is None:
        return None

    merged_keys = {block.key for block in merged.blocks}
    sharing = [
        c for c in stored if any(block.key in merged_keys for block in c.session.blocks)
    ]

    if not sharing:
        # Candidates fell in the window but regrouped into another cluster
        return None

    keep = max(sharing, key=_survivor_order)
    delete_ids = [c.id for c in sharing if c.id != keep.id]
    return MergePlan(session=merged, keep_id=keep.id, delete_ids=delete_ids)
