"""Event ledger — append-only per-batch history of supply-chain events.

Every write goes through the authorization policy: an actor may append
only the event types its role is allowed to record. Events are never
edited or deleted; verification replaces an event with its verified
copy and leaves the content hash unchanged.

Ordering: insertion order within a batch is authoritative. Timestamps
are clamped so they never decrease within a batch, which makes
chronological order and insertion order identical and keeps every
earlier read a prefix of every later read.

Concurrency: a per-batch lock serializes appends and verifications for
the same batch, and the store additionally rejects stale writes with a
compare-and-swap on the batch length.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional, Union

from agtrace.errors import NotFoundError, ValidationError
from agtrace.identity import Actor
from agtrace.ledger.projector import current_stage, project_summary
from agtrace.ledger.verifier import EventVerifier
from agtrace.models.trace import (
    ActorRole,
    BatchTimelineSummary,
    EventPayload,
    EventType,
    TraceEvent,
    parse_event_id,
)
from agtrace.persistence.stores import BatchEventStore
from agtrace.policy.resolver import Action, AuthorizationPolicy, ResourceType

logger = logging.getLogger(__name__)


def _coerce_event_type(value: Union[EventType, str]) -> EventType:
    try:
        return EventType(value)
    except ValueError:
        raise ValidationError(f"Unknown event type: {value}") from None


def _coerce_role(value: Union[ActorRole, str]) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError:
        raise ValidationError(f"Unknown role: {value}") from None


class EventLedger:
    """Append-only event store with role-based write permissions.

    Usage:
        ledger = EventLedger(InMemoryBatchEventStore(), AuthorizationPolicy.default())
        event = ledger.append_event(
            "B1", EventType.CREATED, farmer, EventPayload("Batch registered"),
        )
        ledger.verify_event(event.event_id, processor)
    """

    def __init__(
        self,
        store: BatchEventStore,
        policy: AuthorizationPolicy,
        verifier: Optional[EventVerifier] = None,
    ) -> None:
        self._store = store
        self._policy = policy
        self._verifier = verifier or EventVerifier(policy)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._summaries: dict[str, BatchTimelineSummary] = {}

    def _batch_lock(self, batch_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(batch_id)
            if lock is None:
                lock = self._locks[batch_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_event(
        self,
        batch_id: str,
        event_type: Union[EventType, str],
        actor: Actor,
        payload: Union[EventPayload, dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> TraceEvent:
        """Validate, authorize and append one event to a batch.

        Raises:
            ValidationError: unknown event type or role, empty batch ID,
                or empty description.
            PermissionDeniedError: the actor's role may not record this
                event type.
            ConflictError: another writer appended to the batch first.
        """
        resolved_type = _coerce_event_type(event_type)
        role = _coerce_role(actor.role)
        if not batch_id or not batch_id.strip():
            raise ValidationError("Batch ID must not be empty")
        if "#" in batch_id:
            raise ValidationError(f"Batch ID may not contain '#': {batch_id}")

        self._policy.require(role, Action.APPEND, ResourceType.TRACE_EVENT, resolved_type)

        if isinstance(payload, dict):
            payload = EventPayload.from_dict(payload)
        if not payload.description.strip():
            raise ValidationError("Event description must not be empty")
        if not payload.actor_display_name and actor.display_name:
            payload = EventPayload(
                description=payload.description,
                location=payload.location,
                details=payload.details,
                attachments=payload.attachments,
                actor_display_name=actor.display_name,
            )
        if now is None:
            now = datetime.now(timezone.utc)

        with self._batch_lock(batch_id):
            events = self._store.events(batch_id)
            timestamp = now
            if events and events[-1].timestamp_utc > timestamp:
                timestamp = events[-1].timestamp_utc

            event = TraceEvent.create(
                batch_id=batch_id,
                sequence=len(events) + 1,
                event_type=resolved_type,
                actor_id=actor.user_id,
                actor_role=role,
                payload=payload,
                timestamp_utc=timestamp,
            )
            self._store.append(event, expected_length=len(events))
            events.append(event)
            self._summaries[batch_id] = project_summary(batch_id, events)

        logger.info(
            "Appended %s to batch %s by %s (%s)",
            event.event_type.value, batch_id, actor.user_id, role.value,
        )
        return event

    def verify_event(
        self,
        event_id: str,
        verifier: Actor,
        now: Optional[datetime] = None,
    ) -> TraceEvent:
        """Mark an event verified by an actor of a different role.

        Raises:
            NotFoundError: unknown event.
            PermissionDeniedError: verifier has the event's own role.
            AlreadyVerifiedError: the event is already verified.
        """
        try:
            batch_id, _ = parse_event_id(event_id)
        except ValueError:
            raise NotFoundError(f"Unknown event: {event_id}") from None
        role = _coerce_role(verifier.role)

        with self._batch_lock(batch_id):
            event = self._store.get(event_id)
            if event is None:
                raise NotFoundError(f"Unknown event: {event_id}")
            verified = self._verifier.verify(event, verifier.user_id, role, now)
            self._store.record_verification(verified)
            self._summaries[batch_id] = project_summary(
                batch_id, self._store.events(batch_id),
            )

        logger.info("Event %s verified by %s (%s)", event_id, verifier.user_id, role.value)
        return verified

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_batch_events(self, batch_id: str) -> list[TraceEvent]:
        """Events of a batch, oldest first. Unknown batch → []."""
        events = self._store.events(batch_id)
        return sorted(events, key=lambda e: (e.timestamp_utc, e.sequence))

    def get_event(self, event_id: str) -> Optional[TraceEvent]:
        return self._store.get(event_id)

    def get_summary(self, batch_id: str) -> BatchTimelineSummary:
        summary = self._summaries.get(batch_id)
        if summary is None:
            summary = project_summary(batch_id, self.get_batch_events(batch_id))
        return summary

    def batch_ids(self) -> list[str]:
        return self._store.batch_ids()

    def _all_events(self) -> list[TraceEvent]:
        events: list[TraceEvent] = []
        for batch_id in self._store.batch_ids():
            events.extend(self._store.events(batch_id))
        return events

    def events_by_actor(
        self,
        actor_id: str,
        role: Optional[Union[ActorRole, str]] = None,
    ) -> list[TraceEvent]:
        """Every event recorded by ``actor_id``, newest first."""
        wanted_role = _coerce_role(role) if role is not None else None
        matches = [
            e for e in self._all_events()
            if e.actor_id == actor_id and (wanted_role is None or e.actor_role == wanted_role)
        ]
        return sorted(matches, key=lambda e: e.timestamp_utc, reverse=True)

    def search_events(
        self,
        query: str = "",
        event_type: Optional[Union[EventType, str]] = None,
        role: Optional[Union[ActorRole, str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        verified: Optional[bool] = None,
    ) -> list[TraceEvent]:
        """Filter events across all batches, newest first.

        ``query`` matches case-insensitively against the batch ID,
        description, location and actor display name.
        """
        wanted_type = _coerce_event_type(event_type) if event_type is not None else None
        wanted_role = _coerce_role(role) if role is not None else None
        needle = query.strip().lower()

        results = []
        for event in self._all_events():
            if wanted_type is not None and event.event_type != wanted_type:
                continue
            if wanted_role is not None and event.actor_role != wanted_role:
                continue
            if date_from is not None and event.timestamp_utc < date_from:
                continue
            if date_to is not None and event.timestamp_utc > date_to:
                continue
            if verified is not None and event.verified != verified:
                continue
            if needle:
                haystack = " ".join((
                    event.batch_id, event.description,
                    event.location, event.actor_display_name,
                )).lower()
                if needle not in haystack:
                    continue
            results.append(event)
        return sorted(results, key=lambda e: e.timestamp_utc, reverse=True)

    def statistics(self) -> dict[str, Any]:
        """Ledger-wide counts by event type, role and batch stage."""
        events = self._all_events()
        by_batch: dict[str, list[TraceEvent]] = {}
        for event in events:
            by_batch.setdefault(event.batch_id, []).append(event)

        return {
            "total_batches": len(by_batch),
            "total_events": len(events),
            "verified_events": sum(1 for e in events if e.verified),
            "issues_reported": sum(
                1 for e in events if e.event_type == EventType.ISSUE_REPORTED
            ),
            "events_by_type": dict(Counter(e.event_type.value for e in events)),
            "events_by_role": dict(Counter(e.actor_role.value for e in events)),
            "batches_by_stage": dict(Counter(
                current_stage(batch_events).value for batch_events in by_batch.values()
            )),
        }
