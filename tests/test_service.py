"""Tests for TraceabilityService — end-to-end flows through the facade."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from agtrace import __version__
from agtrace.identity import Actor
from agtrace.mirror.dispatcher import MirrorDispatcher
from agtrace.models.mirror import MirrorResult
from agtrace.models.order import Order, OrderStatus
from agtrace.models.trace import TraceEvent
from agtrace.persistence.memory import InMemoryMirrorMappingStore
from agtrace.policy.resolver import AuthorizationPolicy
from agtrace.service import TraceabilityService
from agtrace.settings import Settings

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)

FARMER = Actor.of("farmer_1", "farmer", "Ama's Farm")
PROCESSOR = Actor.of("proc_1", "processor")
DISTRIBUTOR = Actor.of("dist_1", "distributor")
CONSUMER = Actor.of("cons_1", "consumer")


class RecordingMirror:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def _result(self, local_id: str) -> MirrorResult:
        self.calls.append(local_id)
        return MirrorResult(
            external_ref=f"ref:{local_id}",
            tx_hash=f"0x{len(self.calls):064x}",
            external_url=f"https://explorer.test/tx/{len(self.calls)}",
        )

    def mirror_event(self, event: TraceEvent) -> MirrorResult:
        return self._result(event.event_id)

    def mirror_order_transition(self, order: Order, status: OrderStatus) -> MirrorResult:
        return self._result(f"{order.order_id}@{status.value}")


def _service() -> TraceabilityService:
    return TraceabilityService(AuthorizationPolicy.default())


def _mirrored_service() -> tuple[TraceabilityService, RecordingMirror]:
    mirror = RecordingMirror()
    mappings = InMemoryMirrorMappingStore()
    service = TraceabilityService(
        AuthorizationPolicy.default(),
        mapping_store=mappings,
        dispatcher=MirrorDispatcher(mirror, mappings),
    )
    return service, mirror


def _shipped_processing_order(service: TraceabilityService, batch_id: str = "B1") -> str:
    result = service.place_order(
        PROCESSOR, "processing", "farmer_1", "100", "250.00", batch_id=batch_id, now=T0,
    )
    assert result.success, result.errors
    order_id = result.data["order"]["order_id"]
    for target in ("confirmed", "processing", "ready"):
        assert service.transition_order(order_id, PROCESSOR, target, now=T0).success
    shipped = service.transition_order(
        order_id, PROCESSOR, "shipped",
        tracking_number="TRK-1", estimated_delivery=T0 + timedelta(days=2), now=T0,
    )
    assert shipped.success, shipped.errors
    return order_id


class TestBatchLifecycle:
    def test_custody_chain(self) -> None:
        service = _service()
        assert service.append_event(
            "B1", "created", FARMER, {"description": "Batch registered"}, now=T0,
        ).success
        harvested = service.append_event(
            "B1", "harvested", FARMER, {"description": "Harvested 100kg"}, now=T0,
        )
        assert harvested.data["summary"]["current_stage"] == "harvested"

        denied = service.append_event(
            "B1", "harvested", PROCESSOR, {"description": "Not my step"}, now=T0,
        )
        assert not denied.success
        assert denied.error_kind == "permission_denied"
        assert len(service.get_batch_events("B1")) == 2

        service.append_event("B1", "received", PROCESSOR, {"description": "Received"}, now=T0)
        processed = service.append_event(
            "B1", "processed", PROCESSOR, {"description": "Dried and milled"}, now=T0,
        )
        assert processed.data["summary"]["current_stage"] == "processed"

        distributed = service.append_event(
            "B1", "distributed", DISTRIBUTOR, {"description": "Sent to retail"}, now=T0,
        )
        assert distributed.success
        summary = service.get_summary("B1")
        assert summary.current_stage.value == "distributed"
        assert summary.total_events == 5
        assert {r.value for r in summary.participating_roles} == {
            "farmer", "processor", "distributor",
        }

    def test_display_name_from_actor(self) -> None:
        service = _service()
        result = service.append_event("B1", "created", FARMER, {"description": "New"})
        assert result.data["event"]["actor_display_name"] == "Ama's Farm"

    def test_verify_event(self) -> None:
        service = _service()
        event_id = service.append_event(
            "B1", "created", FARMER, {"description": "New"},
        ).data["event"]["event_id"]
        own_role = service.verify_event(event_id, Actor.of("farmer_2", "farmer"))
        assert own_role.error_kind == "permission_denied"
        assert service.verify_event(event_id, PROCESSOR).success
        again = service.verify_event(event_id, DISTRIBUTOR)
        assert again.error_kind == "already_verified"
        missing = service.verify_event("B9#000001", PROCESSOR)
        assert missing.error_kind == "not_found"

    def test_ledger_statistics(self) -> None:
        service = _service()
        service.append_event("B1", "created", FARMER, {"description": "New"}, now=T0)
        service.append_event(
            "B1", "harvested", FARMER, {"description": "Cut"}, now=T0 + timedelta(days=4),
        )
        stats = service.ledger_statistics()
        assert stats["total_events"] == 2
        assert stats["average_stage_days"] == {"created_to_harvested": 4.0}


class TestOrderFlows:
    def test_confirm_delivery_records_receipt_on_batch(self) -> None:
        service = _service()
        order_id = _shipped_processing_order(service)
        result = service.confirm_delivery(order_id, PROCESSOR, now=T0 + timedelta(days=2))
        assert result.success
        assert result.data["changed"] is True
        assert result.data["order"]["status"] == "delivered"
        event = service.get_event(result.data["ledger_event_id"])
        assert event.event_type.value == "received"
        assert event.details == {"order_id": order_id}
        assert "warning" not in result.data

    def test_confirm_delivery_is_idempotent(self) -> None:
        service = _service()
        order_id = _shipped_processing_order(service)
        service.confirm_delivery(order_id, PROCESSOR)
        second = service.confirm_delivery(order_id, PROCESSOR)
        assert second.success
        assert second.data["changed"] is False
        assert len(service.get_batch_events("B1")) == 1

    def test_cross_link_failure_is_a_warning(self) -> None:
        data = AuthorizationPolicy.default().raw
        data["permissions"]["trace_event"]["append"]["processor"].remove("received")
        service = TraceabilityService(AuthorizationPolicy(data))
        order_id = _shipped_processing_order(service)
        result = service.confirm_delivery(order_id, PROCESSOR)
        assert result.success
        assert result.data["order"]["status"] == "delivered"
        assert "not recorded on batch ledger" in result.data["warning"]
        assert service.get_batch_events("B1") == []

    def test_order_without_batch_has_no_cross_link(self) -> None:
        service = _service()
        order_id = _shipped_processing_order(service, batch_id=None)
        result = service.confirm_delivery(order_id, PROCESSOR)
        assert result.success
        assert "ledger_event_id" not in result.data

    def test_wrong_party_is_rejected(self) -> None:
        service = _service()
        order_id = _shipped_processing_order(service)
        result = service.confirm_delivery(order_id, Actor.of("proc_2", "processor"))
        assert result.error_kind == "permission_denied"

    def test_payment_creates_consumer_orders(self) -> None:
        service = _service()
        items = [{"product_id": "p1", "product_name": "Chips", "quantity": "2",
                  "unit_price": "5.50", "batch_id": "B1"}]
        delivery = {"mode": "standard", "address": "12 Market St"}
        result = service.on_payment_success("PAY-9", CONSUMER, "dist_1", items, delivery)
        assert result.success
        [order] = result.data["orders"]
        assert order["status"] == "confirmed"
        assert order["total_amount"] == "11.00"

        duplicate = service.on_payment_success("PAY-9", CONSUMER, "dist_1", items, delivery)
        assert duplicate.error_kind == "already_registered"

        malformed = service.on_payment_success("PAY-10", CONSUMER, "dist_1", [{}], delivery)
        assert malformed.error_kind == "validation"

    def test_consumer_delivery_records_delivered_event(self) -> None:
        service = _service()
        items = [{"product_id": "p1", "quantity": "1", "unit_price": "3", "batch_id": "B7"}]
        result = service.on_payment_success(
            "PAY-1", CONSUMER, "dist_1", items, {"mode": "standard"},
        )
        order_id = result.data["orders"][0]["order_id"]
        for target in ("processing", "shipped", "in_transit", "out_for_delivery"):
            assert service.advance_delivery(order_id, DISTRIBUTOR, target).success
        confirmed = service.confirm_delivery(order_id, CONSUMER)
        assert confirmed.success
        assert service.get_event(confirmed.data["ledger_event_id"]).event_type.value == "delivered"

    def test_order_statistics(self) -> None:
        service = _service()
        _shipped_processing_order(service)
        stats = service.order_statistics("proc_1")
        assert stats["total_orders"] == 1
        assert stats["orders_as_buyer"] == 1
        assert stats["by_status"]["shipped"] == 1


class TestVerificationFlow:
    def test_submit_and_approve(self) -> None:
        service = _service()
        for doc in ("identity", "business", "bankStatement"):
            assert service.submit_document("farmer_1", "farmer", doc).success
        result = service.approve_verification("farmer_1", "rev_1")
        assert result.success
        assert result.data["profile"]["level"] == "standard"
        assert "Higher listing priority" in result.data["benefits"]

    def test_reject_unknown_user(self) -> None:
        result = _service().reject_verification("ghost", "rev_1", "No documents")
        assert result.error_kind == "not_found"

    def test_expire_verifications(self) -> None:
        service = _service()
        for doc in ("identity", "business", "bankStatement"):
            service.submit_document("farmer_1", "farmer", doc, now=T0)
        service.approve_verification("farmer_1", "rev_1", now=T0)
        result = service.expire_verifications(T0 + timedelta(days=366))
        assert result.data["expired"] == ["farmer_1"]
        assert service.get_verification("farmer_1").status.value == "expired"


class TestMirrorIntegration:
    def test_commits_are_queued_and_mirrored(self) -> None:
        service, mirror = _mirrored_service()
        event = service.append_event("B1", "created", FARMER, {"description": "New"})
        event_id = event.data["event"]["event_id"]
        assert service.mirror_mapping(event_id) is None
        assert len(service.dispatcher.pending_jobs()) == 1

        assert service.process_mirror() == 1
        assert service.mirror_mapping(event_id).external_ref == f"ref:{event_id}"
        assert mirror.calls == [event_id]

    def test_delivery_mirrors_only_status_changes(self) -> None:
        service, _ = _mirrored_service()
        items = [{"product_id": "p1", "quantity": "1", "unit_price": "3"}]
        result = service.on_payment_success(
            "PAY-1", CONSUMER, "dist_1", items, {"mode": "standard"},
        )
        order_id = result.data["orders"][0]["order_id"]
        for target in ("processing", "shipped", "in_transit"):
            service.advance_delivery(order_id, DISTRIBUTOR, target)
        local_ids = sorted(job.local_id for job in service.dispatcher.pending_jobs())
        assert local_ids == sorted([
            f"{order_id}@confirmed", f"{order_id}@processing", f"{order_id}@shipped",
        ])

    def test_backfill_skips_mapped_entries(self) -> None:
        service, _ = _mirrored_service()
        service.append_event("B1", "created", FARMER, {"description": "New"})
        service.process_mirror()
        assert service.backfill_mirror() == 0

    def test_without_dispatcher(self) -> None:
        service = _service()
        assert service.backfill_mirror() == 0
        assert service.process_mirror() == 0
        service.close()


class TestStatus:
    def test_status(self) -> None:
        service, _ = _mirrored_service()
        service.append_event("B1", "created", FARMER, {"description": "New"})
        service.submit_document("farmer_1", "farmer", "identity")
        status = service.status()
        assert status["version"] == __version__
        assert status["ledger"] == {"batches": 1, "events": 1, "verified": 0}
        assert status["verification"] == {"profiles": 1}
        assert status["mirror"] == {"enabled": True, "mapped": 0, "pending": 1, "parked": 0}

    def test_from_settings_is_durable(self, tmp_path: Path) -> None:
        settings = Settings(data_dir=tmp_path)
        first = TraceabilityService.from_settings(settings)
        first.append_event("B1", "created", FARMER, {"description": "New"})
        first.place_order(PROCESSOR, "processing", "farmer_1", "10", "20")

        second = TraceabilityService.from_settings(settings)
        assert len(second.get_batch_events("B1")) == 1
        assert len(second.orders_for_party("proc_1")) == 1
        assert second.status()["mirror"] == {"enabled": False, "mapped": 0}
