"""Traceability models — events recorded against a batch and derived summaries.

A TraceEvent is one immutable fact about a batch. Only its verification
fields may change, exactly once, and that change produces a replacement
record rather than mutating the original. The content hash covers the
immutable fields only, so verification never changes it.

Canonical stage order:
    CREATED → HARVESTED → PROCESSED → DISTRIBUTED → SOLD → DELIVERED
"""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class ActorRole(str, enum.Enum):
    """Custodial role of an actor in the supply chain."""
    FARMER = "farmer"
    PROCESSOR = "processor"
    DISTRIBUTOR = "distributor"
    CONSUMER = "consumer"


class EventType(str, enum.Enum):
    """Kind of supply-chain fact recorded against a batch."""
    CREATED = "created"
    HARVESTED = "harvested"
    QUALITY_CHECK = "quality_check"
    PROCESSED = "processed"
    PACKAGED = "packaged"
    SHIPPED = "shipped"
    RECEIVED = "received"
    DISTRIBUTED = "distributed"
    SOLD = "sold"
    DELIVERED = "delivered"
    FEEDBACK = "feedback"
    ISSUE_REPORTED = "issue_reported"
    CUSTOM = "custom"


class Stage(str, enum.Enum):
    """Furthest canonical lifecycle milestone reached by a batch."""
    CREATED = "created"
    HARVESTED = "harvested"
    PROCESSED = "processed"
    DISTRIBUTED = "distributed"
    SOLD = "sold"
    DELIVERED = "delivered"
    UNKNOWN = "unknown"


# Lowest to highest. Event types not listed here never change the stage.
STAGE_ORDER: tuple[EventType, ...] = (
    EventType.CREATED,
    EventType.HARVESTED,
    EventType.PROCESSED,
    EventType.DISTRIBUTED,
    EventType.SOLD,
    EventType.DELIVERED,
)


def make_event_id(batch_id: str, sequence: int) -> str:
    return f"{batch_id}#{sequence:06d}"


def parse_event_id(event_id: str) -> tuple[str, int]:
    """Split an event ID into (batch_id, sequence).

    Raises ValueError if the ID is not in ``<batch_id>#<sequence>`` form.
    """
    batch_id, sep, seq = event_id.rpartition("#")
    if not sep or not batch_id or not seq.isdigit():
        raise ValueError(f"Malformed event ID: {event_id!r}")
    return batch_id, int(seq)


def content_hash(
    event_id: str,
    batch_id: str,
    event_type: EventType,
    actor_id: str,
    actor_role: ActorRole,
    timestamp_utc: datetime,
    description: str,
    details: dict[str, Any],
    location: str = "",
    attachments: tuple[str, ...] = (),
    actor_display_name: str = "",
) -> str:
    """SHA-256 over the canonical JSON of an event's immutable fields."""
    canonical = json.dumps(
        {
            "event_id": event_id,
            "batch_id": batch_id,
            "event_type": event_type.value,
            "actor_id": actor_id,
            "actor_role": actor_role.value,
            "timestamp_utc": timestamp_utc.isoformat(),
            "description": description,
            "details": details,
            "location": location,
            "attachments": list(attachments),
            "actor_display_name": actor_display_name,
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventPayload:
    """Caller-supplied part of a trace event."""
    description: str
    location: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    attachments: tuple[str, ...] = ()
    actor_display_name: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventPayload:
        details = dict(data.get("details") or {})
        # The display name and description travel at the top level only
        details.pop("userName", None)
        details.pop("description", None)
        return EventPayload(
            description=str(data.get("description") or ""),
            location=str(data.get("location") or ""),
            details=details,
            attachments=tuple(data.get("attachments") or ()),
            actor_display_name=str(
                data.get("actor_display_name") or data.get("userName") or ""
            ),
        )


@dataclass(frozen=True)
class TraceEvent:
    """A single immutable fact recorded against a batch."""
    event_id: str
    batch_id: str
    sequence: int
    event_type: EventType
    actor_id: str
    actor_role: ActorRole
    timestamp_utc: datetime
    description: str
    content_hash: str
    actor_display_name: str = ""
    location: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    attachments: tuple[str, ...] = ()
    verified: bool = False
    verified_by: Optional[str] = None
    verified_by_role: Optional[ActorRole] = None
    verified_at: Optional[datetime] = None

    @staticmethod
    def create(
        batch_id: str,
        sequence: int,
        event_type: EventType,
        actor_id: str,
        actor_role: ActorRole,
        payload: EventPayload,
        timestamp_utc: datetime,
    ) -> TraceEvent:
        """Create a new unverified event with its content hash."""
        event_id = make_event_id(batch_id, sequence)
        details = dict(payload.details)
        return TraceEvent(
            event_id=event_id,
            batch_id=batch_id,
            sequence=sequence,
            event_type=event_type,
            actor_id=actor_id,
            actor_role=actor_role,
            timestamp_utc=timestamp_utc,
            description=payload.description,
            content_hash=content_hash(
                event_id, batch_id, event_type, actor_id, actor_role,
                timestamp_utc, payload.description, details,
                payload.location, tuple(payload.attachments), payload.actor_display_name,
            ),
            actor_display_name=payload.actor_display_name,
            location=payload.location,
            details=details,
            attachments=tuple(payload.attachments),
        )

    def with_verification(
        self,
        verifier_id: str,
        verifier_role: ActorRole,
        verified_at: datetime,
    ) -> TraceEvent:
        """Return the verified replacement of this event."""
        return dataclasses.replace(
            self,
            verified=True,
            verified_by=verifier_id,
            verified_by_role=verifier_role,
            verified_at=verified_at,
        )

    def expected_hash(self) -> str:
        return content_hash(
            self.event_id, self.batch_id, self.event_type, self.actor_id,
            self.actor_role, self.timestamp_utc, self.description, self.details,
            self.location, self.attachments, self.actor_display_name,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "batch_id": self.batch_id,
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role.value,
            "actor_display_name": self.actor_display_name,
            "timestamp_utc": self.timestamp_utc.isoformat(),
            "location": self.location,
            "description": self.description,
            "details": self.details,
            "attachments": list(self.attachments),
            "verified": self.verified,
            "verified_by": self.verified_by,
            "verified_by_role": (
                self.verified_by_role.value if self.verified_by_role else None
            ),
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "content_hash": self.content_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TraceEvent:
        verified_role = data.get("verified_by_role")
        verified_at = data.get("verified_at")
        return TraceEvent(
            event_id=data["event_id"],
            batch_id=data["batch_id"],
            sequence=int(data["sequence"]),
            event_type=EventType(data["event_type"]),
            actor_id=data["actor_id"],
            actor_role=ActorRole(data["actor_role"]),
            timestamp_utc=datetime.fromisoformat(data["timestamp_utc"]),
            description=data["description"],
            content_hash=data["content_hash"],
            actor_display_name=data.get("actor_display_name", ""),
            location=data.get("location", ""),
            details=dict(data.get("details") or {}),
            attachments=tuple(data.get("attachments") or ()),
            verified=bool(data.get("verified", False)),
            verified_by=data.get("verified_by"),
            verified_by_role=ActorRole(verified_role) if verified_role else None,
            verified_at=datetime.fromisoformat(verified_at) if verified_at else None,
        )


@dataclass(frozen=True)
class BatchTimelineSummary:
    """Derived rollup of a batch's events. Never a source of truth."""
    batch_id: str
    total_events: int
    current_stage: Stage
    participating_roles: frozenset[ActorRole]
    quality_check_count: int
    verified_count: int
    issue_count: int
    last_updated: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total_events": self.total_events,
            "current_stage": self.current_stage.value,
            "participating_roles": sorted(r.value for r in self.participating_roles),
            "quality_check_count": self.quality_check_count,
            "verified_count": self.verified_count,
            "issue_count": self.issue_count,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }
