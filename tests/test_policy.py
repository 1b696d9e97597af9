"""Tests for the authorization policy and its invariant checks."""

import copy
import json
import sys
from pathlib import Path

import pytest

from agtrace.errors import PermissionDeniedError
from agtrace.models.order import DeliveryMode, DeliveryStatus, OrderType
from agtrace.models.trace import ActorRole, EventType
from agtrace.models.verification import VerificationLevel
from agtrace.policy.invariants import check_policy_invariants
from agtrace.policy.resolver import (
    DEFAULT_CONFIG_DIR,
    Action,
    AuthorizationPolicy,
    ResourceType,
)

ROOT = Path(__file__).resolve().parents[1]


def _policy_data() -> dict:
    return AuthorizationPolicy.default().raw


class TestPermits:
    def test_append_matrix(self) -> None:
        policy = AuthorizationPolicy.default()
        assert policy.permits(
            ActorRole.FARMER, Action.APPEND, ResourceType.TRACE_EVENT, EventType.HARVESTED,
        )
        assert not policy.permits(
            ActorRole.PROCESSOR, Action.APPEND, ResourceType.TRACE_EVENT, EventType.HARVESTED,
        )
        assert policy.permits("consumer", Action.APPEND, ResourceType.TRACE_EVENT, "feedback")

    def test_wildcard(self) -> None:
        policy = AuthorizationPolicy.default()
        assert policy.permits(
            ActorRole.CONSUMER, Action.VERIFY, ResourceType.TRACE_EVENT, EventType.CREATED,
        )

    def test_without_resource_means_any(self) -> None:
        policy = AuthorizationPolicy.default()
        assert policy.permits(ActorRole.PROCESSOR, Action.TRANSITION, ResourceType.ORDER)
        assert not policy.permits(ActorRole.FARMER, Action.TRANSITION, ResourceType.ORDER)

    def test_require_raises(self) -> None:
        policy = AuthorizationPolicy.default()
        with pytest.raises(PermissionDeniedError, match="farmer"):
            policy.require(
                ActorRole.FARMER, Action.CREATE, ResourceType.ORDER, OrderType.PROCESSING,
            )

    def test_unknown_role_is_denied(self) -> None:
        policy = AuthorizationPolicy.default()
        assert not policy.permits("auditor", Action.APPEND, ResourceType.TRACE_EVENT, "custom")

    def test_allowed_event_types(self) -> None:
        allowed = AuthorizationPolicy.default().allowed_event_types(ActorRole.CONSUMER)
        assert allowed == frozenset({
            EventType.RECEIVED, EventType.DELIVERED, EventType.FEEDBACK,
            EventType.ISSUE_REPORTED, EventType.CUSTOM,
        })


class TestBusinessRules:
    def test_order_parties(self) -> None:
        policy = AuthorizationPolicy.default()
        processing = policy.order_parties(OrderType.PROCESSING)
        assert processing.buyer_role == ActorRole.PROCESSOR
        assert processing.seller_role == ActorRole.FARMER
        assert processing.driver_role == ActorRole.PROCESSOR
        consumer = policy.order_parties(OrderType.CONSUMER)
        assert consumer.driver_role == ActorRole.DISTRIBUTOR

    def test_confirmable_states(self) -> None:
        policy = AuthorizationPolicy.default()
        assert policy.confirmable_delivery_states(DeliveryMode.STANDARD) == frozenset(
            {DeliveryStatus.OUT_FOR_DELIVERY}
        )
        assert DeliveryStatus.PROCESSING in policy.confirmable_delivery_states(DeliveryMode.PICKUP)

    def test_documents_and_tiers(self) -> None:
        policy = AuthorizationPolicy.default()
        assert policy.validity_days == 365
        assert policy.required_documents("distributor") == frozenset(
            {"identity", "business", "license", "insurance"}
        )
        assert "warehouse" in policy.document_types("distributor")
        assert [t.level for t in policy.tiers()] == [
            VerificationLevel.PREMIUM, VerificationLevel.STANDARD, VerificationLevel.BASIC,
        ]
        assert policy.tier_benefits(None) == ()

    def test_from_config_dir(self, tmp_path: Path) -> None:
        data = _policy_data()
        data["verification"]["validity_days"] = 30
        (tmp_path / "runtime_policy.json").write_text(json.dumps(data), encoding="utf-8")
        assert AuthorizationPolicy.from_config_dir(tmp_path).validity_days == 30

    def test_packaged_policy_location(self) -> None:
        assert (DEFAULT_CONFIG_DIR / "runtime_policy.json").exists()


class TestInvariants:
    def test_packaged_policy_passes(self) -> None:
        assert check_policy_invariants(_policy_data()) == []

    def test_custom_must_be_allowed(self) -> None:
        data = _policy_data()
        data["permissions"]["trace_event"]["append"]["farmer"].remove("custom")
        errors = check_policy_invariants(data)
        assert any("custom" in e for e in errors)

    def test_unknown_event_type(self) -> None:
        data = _policy_data()
        data["permissions"]["trace_event"]["append"]["farmer"].append("teleported")
        assert any("teleported" in e for e in check_policy_invariants(data))

    def test_tiers_must_nest(self) -> None:
        data = _policy_data()
        data["verification"]["tiers"][0]["requirements"] = ["facility", "insurance"]
        errors = check_policy_invariants(data)
        assert any("must include standard" in e for e in errors)

    def test_tiers_highest_first(self) -> None:
        data = _policy_data()
        data["verification"]["tiers"].reverse()
        assert any("highest first" in e for e in check_policy_invariants(data))

    def test_driver_must_hold_transition_right(self) -> None:
        data = _policy_data()
        data["permissions"]["order"]["transition"].pop("processor")
        errors = check_policy_invariants(data)
        assert any("may not transition" in e for e in errors)

    def test_confirmable_state_not_terminal(self) -> None:
        data = _policy_data()
        data["orders"]["confirmable_delivery_states"]["default"].append("delivered")
        assert any("terminal" in e for e in check_policy_invariants(data))

    def test_validity_positive(self) -> None:
        data = copy.deepcopy(_policy_data())
        data["verification"]["validity_days"] = 0
        assert "verification.validity_days must be > 0" in check_policy_invariants(data)


class TestInvariantTool:
    def test_tool_passes_on_packaged_policy(self, capsys: pytest.CaptureFixture[str]) -> None:
        sys.path.insert(0, str(ROOT / "tools"))
        try:
            from check_invariants import check
        finally:
            sys.path.remove(str(ROOT / "tools"))
        assert check() == 0
        assert "passed" in capsys.readouterr().out
