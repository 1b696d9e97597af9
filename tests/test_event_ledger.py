"""Tests for the event ledger — permissions, append-only ordering, verification."""

from datetime import datetime, timedelta, timezone

import pytest

from agtrace.errors import (
    AlreadyVerifiedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from agtrace.identity import Actor
from agtrace.ledger.event_ledger import EventLedger
from agtrace.models.trace import ActorRole, EventPayload, EventType, Stage
from agtrace.persistence.memory import InMemoryBatchEventStore
from agtrace.policy.resolver import AuthorizationPolicy

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

FARMER = Actor.of("farmer_1", "farmer", "Ama's Farm")
PROCESSOR = Actor.of("proc_1", "processor")
DISTRIBUTOR = Actor.of("dist_1", "distributor")
CONSUMER = Actor.of("cons_1", "consumer")

ALLOWED = {
    ActorRole.FARMER: {"created", "harvested", "quality_check", "packaged", "shipped", "custom"},
    ActorRole.PROCESSOR: {"received", "quality_check", "processed", "packaged", "shipped", "custom"},
    ActorRole.DISTRIBUTOR: {
        "received", "quality_check", "distributed", "packaged", "shipped", "sold", "custom",
    },
    ActorRole.CONSUMER: {"received", "delivered", "feedback", "issue_reported", "custom"},
}


def _ledger() -> EventLedger:
    return EventLedger(InMemoryBatchEventStore(), AuthorizationPolicy.default())


def _payload(text: str = "Something happened") -> EventPayload:
    return EventPayload(description=text)


class TestPermissionMatrix:
    def test_every_role_and_type_combination(self) -> None:
        actors = {
            ActorRole.FARMER: FARMER,
            ActorRole.PROCESSOR: PROCESSOR,
            ActorRole.DISTRIBUTOR: DISTRIBUTOR,
            ActorRole.CONSUMER: CONSUMER,
        }
        ledger = _ledger()
        for role, actor in actors.items():
            for event_type in EventType:
                if event_type.value in ALLOWED[role]:
                    event = ledger.append_event("B-matrix", event_type, actor, _payload(), T0)
                    assert event.event_type == event_type
                else:
                    with pytest.raises(PermissionDeniedError):
                        ledger.append_event("B-matrix", event_type, actor, _payload(), T0)

    def test_rejected_append_leaves_batch_unchanged(self) -> None:
        ledger = _ledger()
        ledger.append_event("B1", "created", FARMER, _payload(), T0)
        with pytest.raises(PermissionDeniedError):
            ledger.append_event("B1", "harvested", PROCESSOR, _payload(), T0)
        assert len(ledger.get_batch_events("B1")) == 1


class TestValidation:
    def test_unknown_event_type(self) -> None:
        with pytest.raises(ValidationError):
            _ledger().append_event("B1", "teleported", FARMER, _payload(), T0)

    def test_empty_batch_id(self) -> None:
        with pytest.raises(ValidationError):
            _ledger().append_event("  ", "created", FARMER, _payload(), T0)

    def test_empty_description(self) -> None:
        with pytest.raises(ValidationError):
            _ledger().append_event("B1", "created", FARMER, EventPayload(description=" "), T0)

    def test_unknown_role_on_actor(self) -> None:
        with pytest.raises(ValidationError):
            Actor.of("x", "auditor")

    def test_payload_from_dict(self) -> None:
        event = _ledger().append_event(
            "B1", "created", FARMER,
            {"description": "Planted", "location": "Kumasi", "details": {"acres": 3}},
            T0,
        )
        assert event.location == "Kumasi"
        assert event.details == {"acres": 3}
        assert event.actor_display_name == "Ama's Farm"


class TestAppendOnly:
    def test_ids_and_sequences(self) -> None:
        ledger = _ledger()
        first = ledger.append_event("B1", "created", FARMER, _payload(), T0)
        second = ledger.append_event("B1", "harvested", FARMER, _payload(), T0)
        assert first.event_id == "B1#000001"
        assert second.sequence == 2
        assert first.content_hash.startswith("sha256:")
        assert first.content_hash == first.expected_hash()

    def test_earlier_reads_are_prefixes_of_later_reads(self) -> None:
        ledger = _ledger()
        reads = []
        for i in range(5):
            ledger.append_event("B1", "custom", FARMER, _payload(f"step {i}"), T0 + timedelta(hours=i))
            reads.append([e.event_id for e in ledger.get_batch_events("B1")])
        for earlier, later in zip(reads, reads[1:]):
            assert later[:len(earlier)] == earlier

    def test_backdated_event_is_clamped(self) -> None:
        ledger = _ledger()
        ledger.append_event("B1", "created", FARMER, _payload(), T0)
        late = ledger.append_event("B1", "harvested", FARMER, _payload(), T0 - timedelta(days=2))
        assert late.timestamp_utc == T0
        ids = [e.event_id for e in ledger.get_batch_events("B1")]
        assert ids == ["B1#000001", "B1#000002"]

    def test_unknown_batch_is_empty(self) -> None:
        assert _ledger().get_batch_events("nope") == []

    def test_batches_are_independent(self) -> None:
        ledger = _ledger()
        ledger.append_event("B1", "created", FARMER, _payload(), T0)
        other = ledger.append_event("B2", "created", FARMER, _payload(), T0)
        assert other.sequence == 1
        assert ledger.batch_ids() == ["B1", "B2"]


class TestVerification:
    def test_cross_role_verification(self) -> None:
        ledger = _ledger()
        event = ledger.append_event("B1", "created", FARMER, _payload(), T0)
        verified = ledger.verify_event(event.event_id, PROCESSOR, T0 + timedelta(hours=1))
        assert verified.verified
        assert verified.verified_by == "proc_1"
        assert verified.verified_by_role == ActorRole.PROCESSOR
        assert verified.content_hash == event.content_hash
        assert ledger.get_batch_events("B1")[0].verified

    def test_self_role_verification_forbidden(self) -> None:
        ledger = _ledger()
        event = ledger.append_event("B1", "created", FARMER, _payload(), T0)
        other_farmer = Actor.of("farmer_2", "farmer")
        with pytest.raises(PermissionDeniedError):
            ledger.verify_event(event.event_id, other_farmer)
        assert not ledger.get_event(event.event_id).verified

    def test_second_verification_is_an_error(self) -> None:
        ledger = _ledger()
        event = ledger.append_event("B1", "created", FARMER, _payload(), T0)
        ledger.verify_event(event.event_id, PROCESSOR)
        with pytest.raises(AlreadyVerifiedError):
            ledger.verify_event(event.event_id, DISTRIBUTOR)
        assert ledger.get_event(event.event_id).verified_by == "proc_1"

    def test_unknown_event(self) -> None:
        ledger = _ledger()
        with pytest.raises(NotFoundError):
            ledger.verify_event("B1#000009", PROCESSOR)
        with pytest.raises(NotFoundError):
            ledger.verify_event("garbage", PROCESSOR)

    def test_summary_counts_verified(self) -> None:
        ledger = _ledger()
        event = ledger.append_event("B1", "created", FARMER, _payload(), T0)
        ledger.verify_event(event.event_id, CONSUMER)
        assert ledger.get_summary("B1").verified_count == 1


class TestSummary:
    def test_summary_tracks_appends(self) -> None:
        ledger = _ledger()
        ledger.append_event("B1", "created", FARMER, _payload(), T0)
        ledger.append_event("B1", "quality_check", FARMER, _payload(), T0)
        ledger.append_event("B1", "received", PROCESSOR, _payload(), T0)
        ledger.append_event("B1", "issue_reported", CONSUMER, _payload(), T0)
        summary = ledger.get_summary("B1")
        assert summary.total_events == 4
        assert summary.current_stage == Stage.CREATED
        assert summary.quality_check_count == 1
        assert summary.issue_count == 1
        assert summary.participating_roles == frozenset(
            {ActorRole.FARMER, ActorRole.PROCESSOR, ActorRole.CONSUMER}
        )

    def test_unknown_batch_summary(self) -> None:
        summary = _ledger().get_summary("nope")
        assert summary.total_events == 0
        assert summary.current_stage == Stage.UNKNOWN
        assert summary.last_updated is None


class TestQueries:
    def _populated(self) -> EventLedger:
        ledger = _ledger()
        ledger.append_event("B1", "created", FARMER, EventPayload("Planted plantain", "Kumasi"), T0)
        ledger.append_event(
            "B1", "received", PROCESSOR, EventPayload("Received at mill"), T0 + timedelta(days=1),
        )
        ledger.append_event(
            "B2", "created", FARMER, EventPayload("Second field"), T0 + timedelta(days=2),
        )
        return ledger

    def test_events_by_actor_newest_first(self) -> None:
        events = self._populated().events_by_actor("farmer_1")
        assert [e.batch_id for e in events] == ["B2", "B1"]

    def test_events_by_actor_role_filter(self) -> None:
        assert self._populated().events_by_actor("farmer_1", role="processor") == []

    def test_search_by_text(self) -> None:
        results = self._populated().search_events(query="kumasi")
        assert [e.event_id for e in results] == ["B1#000001"]

    def test_search_by_type_and_dates(self) -> None:
        ledger = self._populated()
        created = ledger.search_events(event_type="created")
        assert len(created) == 2
        windowed = ledger.search_events(date_from=T0 + timedelta(hours=12))
        assert {e.event_id for e in windowed} == {"B1#000002", "B2#000001"}

    def test_search_by_verified(self) -> None:
        ledger = self._populated()
        ledger.verify_event("B1#000001", PROCESSOR)
        assert [e.event_id for e in ledger.search_events(verified=True)] == ["B1#000001"]

    def test_statistics(self) -> None:
        stats = self._populated().statistics()
        assert stats["total_batches"] == 2
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"created": 2, "received": 1}
        assert stats["events_by_role"] == {"farmer": 2, "processor": 1}
        assert stats["batches_by_stage"] == {"created": 2}
