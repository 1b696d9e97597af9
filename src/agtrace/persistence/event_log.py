"""Append-only batch event log — one JSONL file per batch.

Every trace event is written as one JSON line and never rewritten.
Verification, the only post-creation change an event may undergo, is
written as a separate ``verification`` line that refers to the event,
so the file itself stays append-only.

On load, each event's content hash is recomputed and compared with the
stored hash. Tampered lines, duplicate event IDs, gaps in the sequence
and double verifications are all rejected (fail-closed).
"""

from __future__ import annotations

import dataclasses
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from agtrace.models.trace import ActorRole, TraceEvent
from agtrace.persistence.memory import InMemoryBatchEventStore

logger = logging.getLogger(__name__)

_VERIFICATION_FIELDS = ("verified", "verified_by", "verified_by_role", "verified_at")


def batch_filename(batch_id: str) -> str:
    return quote(batch_id, safe="") + ".jsonl"


class FileBatchEventStore(InMemoryBatchEventStore):
    """Batch event store persisted as ``<root>/<batch>.jsonl``.

    All batches are loaded and integrity-checked on construction.
    """

    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        for path in sorted(self._root.glob("*.jsonl")):
            self._load_from_file(path)

    def _path(self, batch_id: str) -> Path:
        return self._root / batch_filename(batch_id)

    def _persist_append(self, event: TraceEvent) -> None:
        record: dict[str, Any] = {"record": "event", **event.to_dict()}
        for name in _VERIFICATION_FIELDS:
            record.pop(name)
        self._write_line(event.batch_id, record)

    def _persist_verification(self, event: TraceEvent) -> None:
        self._write_line(event.batch_id, {
            "record": "verification",
            "event_id": event.event_id,
            "verified_by": event.verified_by,
            "verified_by_role": event.verified_by_role.value if event.verified_by_role else None,
            "verified_at": event.verified_at.isoformat() if event.verified_at else None,
        })

    def _write_line(self, batch_id: str, record: dict[str, Any]) -> None:
        with self._path(batch_id).open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False, default=str) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load one batch file with integrity verification."""
        events: list[TraceEvent] = []
        positions: dict[str, int] = {}

        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                kind = data.pop("record", "event")

                if kind == "verification":
                    event_id = data["event_id"]
                    if event_id not in positions:
                        raise ValueError(
                            f"Verification of unknown event (line {line_num}): {event_id}"
                        )
                    index = positions[event_id]
                    if events[index].verified:
                        raise ValueError(
                            f"Event verified twice (line {line_num}): {event_id}"
                        )
                    events[index] = dataclasses.replace(
                        events[index],
                        verified=True,
                        verified_by=data.get("verified_by"),
                        verified_by_role=(
                            ActorRole(data["verified_by_role"])
                            if data.get("verified_by_role") else None
                        ),
                        verified_at=(
                            datetime.fromisoformat(data["verified_at"])
                            if data.get("verified_at") else None
                        ),
                    )
                    continue

                event = TraceEvent.from_dict(data)

                # Replay protection: reject duplicate IDs on load
                if event.event_id in positions:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event.event_id}"
                    )
                if event.sequence != len(events) + 1:
                    raise ValueError(
                        f"Sequence gap (line {line_num}): {event.event_id} has sequence "
                        f"{event.sequence}, expected {len(events) + 1}"
                    )

                expected_hash = event.expected_hash()
                if event.content_hash != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event.event_id} "
                        f"stored hash {event.content_hash} != computed {expected_hash}"
                    )

                positions[event.event_id] = len(events)
                events.append(event)

        if events:
            self._batches[events[0].batch_id] = events
            logger.debug("Loaded %d events for batch %s", len(events), events[0].batch_id)
