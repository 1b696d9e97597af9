"""Tests for the stage projector."""

from datetime import datetime, timedelta, timezone

import pytest

from agtrace.ledger.projector import current_stage, project_summary, stage_transition_times
from agtrace.models.trace import ActorRole, EventPayload, EventType, Stage, TraceEvent

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _event(
    event_type: EventType,
    sequence: int = 1,
    batch_id: str = "B1",
    role: ActorRole = ActorRole.FARMER,
    at: datetime = T0,
    verified: bool = False,
) -> TraceEvent:
    event = TraceEvent.create(
        batch_id=batch_id,
        sequence=sequence,
        event_type=event_type,
        actor_id=f"{role.value}_1",
        actor_role=role,
        payload=EventPayload(description=event_type.value),
        timestamp_utc=at,
    )
    if verified:
        event = event.with_verification("someone", ActorRole.CONSUMER, at)
    return event


class TestCurrentStage:
    def test_empty_is_unknown(self) -> None:
        assert current_stage([]) == Stage.UNKNOWN

    def test_non_stage_events_only(self) -> None:
        events = [_event(EventType.QUALITY_CHECK), _event(EventType.FEEDBACK, 2)]
        assert current_stage(events) == Stage.UNKNOWN

    def test_highest_stage_wins(self) -> None:
        events = [
            _event(EventType.CREATED, 1),
            _event(EventType.HARVESTED, 2),
            _event(EventType.PROCESSED, 3, role=ActorRole.PROCESSOR),
        ]
        assert current_stage(events) == Stage.PROCESSED

    def test_never_regresses(self) -> None:
        events = [
            _event(EventType.DISTRIBUTED, 1, role=ActorRole.DISTRIBUTOR),
            _event(EventType.CREATED, 2),
            _event(EventType.HARVESTED, 3),
        ]
        assert current_stage(events) == Stage.DISTRIBUTED

    @pytest.mark.parametrize("event_type,stage", [
        (EventType.SOLD, Stage.SOLD),
        (EventType.DELIVERED, Stage.DELIVERED),
    ])
    def test_late_stages(self, event_type: EventType, stage: Stage) -> None:
        assert current_stage([_event(EventType.CREATED), _event(event_type, 2)]) == stage


class TestProjectSummary:
    def test_counts(self) -> None:
        events = [
            _event(EventType.CREATED, 1, verified=True),
            _event(EventType.QUALITY_CHECK, 2, at=T0 + timedelta(hours=1)),
            _event(EventType.ISSUE_REPORTED, 3, role=ActorRole.CONSUMER, at=T0 + timedelta(hours=2)),
        ]
        summary = project_summary("B1", events)
        assert summary.total_events == 3
        assert summary.verified_count == 1
        assert summary.quality_check_count == 1
        assert summary.issue_count == 1
        assert summary.last_updated == T0 + timedelta(hours=2)
        assert summary.participating_roles == frozenset({ActorRole.FARMER, ActorRole.CONSUMER})

    def test_deterministic(self) -> None:
        events = [_event(EventType.CREATED), _event(EventType.HARVESTED, 2)]
        assert project_summary("B1", events) == project_summary("B1", list(events))

    def test_to_dict(self) -> None:
        data = project_summary("B1", [_event(EventType.CREATED)]).to_dict()
        assert data["current_stage"] == "created"
        assert data["participating_roles"] == ["farmer"]


class TestStageTransitionTimes:
    def test_average_days_between_stages(self) -> None:
        events = [
            _event(EventType.CREATED, 1, batch_id="B1", at=T0),
            _event(EventType.HARVESTED, 2, batch_id="B1", at=T0 + timedelta(days=10)),
            _event(EventType.CREATED, 1, batch_id="B2", at=T0),
            _event(EventType.HARVESTED, 2, batch_id="B2", at=T0 + timedelta(days=20)),
        ]
        times = stage_transition_times(events)
        assert times == {"created_to_harvested": pytest.approx(15.0)}

    def test_skipped_stage_links_neighbours_reached(self) -> None:
        events = [
            _event(EventType.CREATED, 1, at=T0),
            _event(EventType.PROCESSED, 2, role=ActorRole.PROCESSOR, at=T0 + timedelta(days=3)),
        ]
        assert stage_transition_times(events) == {"created_to_processed": pytest.approx(3.0)}

    def test_no_stage_events(self) -> None:
        assert stage_transition_times([_event(EventType.FEEDBACK)]) == {}
