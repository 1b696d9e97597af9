"""Stage projector — derives a batch's stage and rollup from its events.

Pure functions over an event sequence. The summary is never stored as a
source of truth: the ledger may cache it, but it is always equal to a
fresh ``project_summary`` over the same events.

The current stage is the highest canonical stage present anywhere in
the sequence, so a late or out-of-order lower-stage event never moves a
batch backwards.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional, Sequence

from agtrace.models.trace import (
    STAGE_ORDER,
    BatchTimelineSummary,
    EventType,
    Stage,
    TraceEvent,
)

_STAGE_INDEX = {event_type: index for index, event_type in enumerate(STAGE_ORDER)}


def current_stage(events: Iterable[TraceEvent]) -> Stage:
    """Highest canonical stage present in ``events``, or UNKNOWN."""
    best = -1
    for event in events:
        best = max(best, _STAGE_INDEX.get(event.event_type, -1))
    if best < 0:
        return Stage.UNKNOWN
    return Stage(STAGE_ORDER[best].value)


def project_summary(batch_id: str, events: Sequence[TraceEvent]) -> BatchTimelineSummary:
    last_updated: Optional[datetime] = None
    for event in events:
        if last_updated is None or event.timestamp_utc > last_updated:
            last_updated = event.timestamp_utc

    return BatchTimelineSummary(
        batch_id=batch_id,
        total_events=len(events),
        current_stage=current_stage(events),
        participating_roles=frozenset(e.actor_role for e in events),
        quality_check_count=sum(1 for e in events if e.event_type == EventType.QUALITY_CHECK),
        verified_count=sum(1 for e in events if e.verified),
        issue_count=sum(1 for e in events if e.event_type == EventType.ISSUE_REPORTED),
        last_updated=last_updated,
    )


def stage_transition_times(events: Iterable[TraceEvent]) -> dict[str, float]:
    """Average days between consecutive canonical stages.

    Events may span several batches. For each batch the first occurrence
    of every stage is taken, and the gap between each pair of adjacent
    stages reached is attributed to ``"<from>_to_<to>"``.
    """
    first_seen: dict[str, dict[EventType, datetime]] = defaultdict(dict)
    for event in events:
        if event.event_type not in _STAGE_INDEX:
            continue
        seen = first_seen[event.batch_id]
        current = seen.get(event.event_type)
        if current is None or event.timestamp_utc < current:
            seen[event.event_type] = event.timestamp_utc

    gaps: dict[str, list[float]] = defaultdict(list)
    for seen in first_seen.values():
        reached = [t for t in STAGE_ORDER if t in seen]
        for earlier, later in zip(reached, reached[1:]):
            delta = seen[later] - seen[earlier]
            gaps[f"{earlier.value}_to_{later.value}"].append(delta.total_seconds() / 86400)

    return {key: sum(values) / len(values) for key, values in gaps.items()}
