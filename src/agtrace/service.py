"""agtrace service — unified facade over the traceability core.

This is the primary interface for programmatic access to agtrace.
It orchestrates all subsystems:
- Event ledger (append, verify, query, batch summaries)
- Orders (placement, lifecycle transitions, delivery, payment hook)
- KYC verification (documents, review, expiry, tiers)
- Mirror (best-effort re-recording of committed facts)

Mutating operations return a ServiceResult instead of raising. A local
commit is never undone because something downstream of it failed: a
mirror problem is handled by the dispatcher, and a failed ledger
cross-link after a delivery confirmation is reported as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import InvalidOperation
from typing import Any, Optional, Union

from agtrace import __version__
from agtrace.errors import AgTraceError, ValidationError
from agtrace.identity import Actor
from agtrace.kyc.manager import VerificationManager
from agtrace.ledger.event_ledger import EventLedger
from agtrace.ledger.projector import stage_transition_times
from agtrace.mirror.anchor import Web3Mirror
from agtrace.mirror.dispatcher import MirrorDispatcher
from agtrace.models.mirror import MirrorMapping
from agtrace.models.order import (
    DeliveryRecord,
    DeliveryStatus,
    Order,
    OrderLine,
    OrderStatus,
    OrderType,
)
from agtrace.models.trace import BatchTimelineSummary, EventPayload, EventType, TraceEvent
from agtrace.models.verification import VerificationProfile
from agtrace.orders.manager import OrderManager
from agtrace.persistence.event_log import FileBatchEventStore
from agtrace.persistence.memory import (
    InMemoryBatchEventStore,
    InMemoryMirrorMappingStore,
    InMemoryOrderStore,
    InMemoryVerificationStore,
)
from agtrace.persistence.state_store import (
    FileMirrorMappingStore,
    FileOrderStore,
    FileVerificationStore,
)
from agtrace.persistence.stores import (
    BatchEventStore,
    MirrorMappingStore,
    OrderStore,
    VerificationStore,
)
from agtrace.policy.resolver import AuthorizationPolicy
from agtrace.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None


def _failure(exc: AgTraceError) -> ServiceResult:
    logger.debug("Request rejected (%s): %s", exc.kind, exc)
    return ServiceResult(success=False, errors=[str(exc)], error_kind=exc.kind)


class TraceabilityService:
    """Unified traceability facade.

    Usage:
        service = TraceabilityService(AuthorizationPolicy.default())

        farmer = Actor.of("f1", "farmer")
        result = service.append_event("B1", "created", farmer,
                                      {"description": "Batch registered"})
        events = service.get_batch_events("B1")

    Persistence and mirroring (optional):
        service = TraceabilityService.from_settings(Settings.from_env())
        # Stores are file-backed under settings.data_dir; the mirror
        # dispatcher runs when mirror credentials are configured.
    """

    def __init__(
        self,
        policy: AuthorizationPolicy,
        event_store: Optional[BatchEventStore] = None,
        order_store: Optional[OrderStore] = None,
        verification_store: Optional[VerificationStore] = None,
        mapping_store: Optional[MirrorMappingStore] = None,
        dispatcher: Optional[MirrorDispatcher] = None,
    ) -> None:
        self._policy = policy
        self._ledger = EventLedger(event_store or InMemoryBatchEventStore(), policy)
        self._orders = OrderManager(order_store or InMemoryOrderStore(), policy)
        self._kyc = VerificationManager(verification_store or InMemoryVerificationStore(), policy)
        self._mappings = mapping_store or InMemoryMirrorMappingStore()
        self._dispatcher = dispatcher

    @classmethod
    def from_settings(cls, settings: Settings, start_mirror: bool = False) -> TraceabilityService:
        """Build a file-backed service from deployment settings."""
        if settings.policy_dir is not None:
            policy = AuthorizationPolicy.from_config_dir(settings.policy_dir)
        else:
            policy = AuthorizationPolicy.default()

        root = settings.data_dir
        mappings = FileMirrorMappingStore(root / "mirror")
        dispatcher = None
        if settings.mirror_enabled:
            assert settings.mirror_rpc_url and settings.mirror_private_key
            dispatcher = MirrorDispatcher(
                Web3Mirror(
                    settings.mirror_rpc_url,
                    settings.mirror_private_key,
                    chain_id=settings.mirror_chain_id,
                    explorer_url=settings.mirror_explorer_url,
                ),
                mappings,
                max_attempts=settings.mirror_max_attempts,
                backoff_seconds=settings.mirror_backoff_seconds,
            )
            if start_mirror:
                dispatcher.start()

        return cls(
            policy,
            event_store=FileBatchEventStore(root / "events"),
            order_store=FileOrderStore(root / "orders"),
            verification_store=FileVerificationStore(root / "profiles"),
            mapping_store=mappings,
            dispatcher=dispatcher,
        )

    @property
    def policy(self) -> AuthorizationPolicy:
        return self._policy

    @property
    def dispatcher(self) -> Optional[MirrorDispatcher]:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Mirror enqueueing
    # ------------------------------------------------------------------

    def _mirror_event(self, event: TraceEvent) -> None:
        if self._dispatcher is not None:
            self._dispatcher.submit_event(event)

    def _mirror_order(self, order: Order) -> None:
        if self._dispatcher is not None:
            self._dispatcher.submit_order_transition(order, order.status)

    # ------------------------------------------------------------------
    # Event ledger
    # ------------------------------------------------------------------

    def append_event(
        self,
        batch_id: str,
        event_type: Union[EventType, str],
        actor: Actor,
        payload: Union[EventPayload, dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            event = self._ledger.append_event(batch_id, event_type, actor, payload, now)
        except AgTraceError as exc:
            return _failure(exc)

        self._mirror_event(event)
        return ServiceResult(success=True, data={
            "event": event.to_dict(),
            "summary": self._ledger.get_summary(batch_id).to_dict(),
        })

    def verify_event(
        self,
        event_id: str,
        verifier: Actor,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            event = self._ledger.verify_event(event_id, verifier, now)
        except AgTraceError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={"event": event.to_dict()})

    def get_batch_events(self, batch_id: str) -> list[TraceEvent]:
        return self._ledger.get_batch_events(batch_id)

    def get_event(self, event_id: str) -> Optional[TraceEvent]:
        return self._ledger.get_event(event_id)

    def get_summary(self, batch_id: str) -> BatchTimelineSummary:
        return self._ledger.get_summary(batch_id)

    def events_by_actor(self, actor_id: str, role: Optional[str] = None) -> list[TraceEvent]:
        return self._ledger.events_by_actor(actor_id, role)

    def search_events(self, **filters: Any) -> list[TraceEvent]:
        return self._ledger.search_events(**filters)

    def ledger_statistics(self) -> dict[str, Any]:
        stats = self._ledger.statistics()
        all_events = [
            e for batch_id in self._ledger.batch_ids()
            for e in self._ledger.get_batch_events(batch_id)
        ]
        stats["average_stage_days"] = stage_transition_times(all_events)
        return stats

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def place_order(
        self,
        buyer: Actor,
        order_type: Union[OrderType, str],
        seller_id: str,
        quantity: Any,
        total_amount: Any,
        **kwargs: Any,
    ) -> ServiceResult:
        try:
            order = self._orders.place_order(
                buyer, order_type, seller_id, quantity, total_amount, **kwargs,
            )
        except AgTraceError as exc:
            return _failure(exc)
        self._mirror_order(order)
        return ServiceResult(success=True, data={"order": order.to_dict()})

    def transition_order(
        self,
        order_id: str,
        actor: Actor,
        target: Union[OrderStatus, str],
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            order = self._orders.transition_order(
                order_id, actor, target, tracking_number, estimated_delivery, now,
            )
        except AgTraceError as exc:
            return _failure(exc)
        self._mirror_order(order)
        return ServiceResult(success=True, data={"order": order.to_dict()})

    def advance_delivery(
        self,
        order_id: str,
        actor: Actor,
        target: Union[DeliveryStatus, str],
        **kwargs: Any,
    ) -> ServiceResult:
        before = self._orders.get_order(order_id)
        try:
            order = self._orders.advance_delivery(order_id, actor, target, **kwargs)
        except AgTraceError as exc:
            return _failure(exc)
        if before is None or before.status != order.status:
            self._mirror_order(order)
        return ServiceResult(success=True, data={"order": order.to_dict()})

    def confirm_delivery(
        self,
        order_id: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Buyer confirms receipt, then records it on the batch's ledger.

        The ledger cross-link (DELIVERED for consumer orders, RECEIVED
        otherwise) is best effort: if it fails, the confirmation stands
        and the result carries a warning.
        """
        try:
            order, changed = self._orders.confirm_delivery(order_id, actor, now)
        except AgTraceError as exc:
            return _failure(exc)

        data: dict[str, Any] = {"order": order.to_dict(), "changed": changed}
        if not changed:
            return ServiceResult(success=True, data=data)

        self._mirror_order(order)
        if order.batch_id:
            event_type = (
                EventType.DELIVERED if order.order_type == OrderType.CONSUMER
                else EventType.RECEIVED
            )
            try:
                event = self._ledger.append_event(
                    order.batch_id,
                    event_type,
                    actor,
                    EventPayload(
                        description=f"Delivery of order {order.order_id} confirmed by buyer",
                        details={"order_id": order.order_id},
                    ),
                    now,
                )
            except AgTraceError as exc:
                logger.warning(
                    "Delivery of %s confirmed but ledger cross-link failed: %s", order_id, exc,
                )
                data["warning"] = f"Delivery confirmed but not recorded on batch ledger: {exc}"
            else:
                self._mirror_event(event)
                data["ledger_event_id"] = event.event_id
        return ServiceResult(success=True, data=data)

    def on_payment_success(
        self,
        reference: str,
        buyer: Actor,
        seller_id: str,
        items: list[Union[OrderLine, dict[str, Any]]],
        delivery: Union[DeliveryRecord, dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Payment gateway hook: create the consumer orders for a paid cart."""
        try:
            lines = [i if isinstance(i, OrderLine) else OrderLine.from_dict(i) for i in items]
            if not isinstance(delivery, DeliveryRecord):
                delivery = DeliveryRecord.from_dict(delivery)
        except (KeyError, ValueError, InvalidOperation) as exc:
            return _failure(ValidationError(f"Malformed payment payload: {exc}"))

        try:
            orders = self._orders.create_consumer_orders(
                reference, buyer, seller_id, lines, delivery, now,
            )
        except AgTraceError as exc:
            return _failure(exc)
        for order in orders:
            self._mirror_order(order)
        return ServiceResult(success=True, data={
            "payment_reference": reference,
            "orders": [o.to_dict() for o in orders],
        })

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get_order(order_id)

    def orders_for_party(self, user_id: str, side: Optional[str] = None) -> list[Order]:
        return self._orders.orders_for_party(user_id, side)

    def order_statistics(self, user_id: str) -> dict[str, Any]:
        return self._orders.order_statistics(user_id)

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    def submit_document(
        self,
        user_id: str,
        role: str,
        document_type: str,
        reference: str = "",
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            profile = self._kyc.submit_document(
                user_id, role, document_type, reference, metadata, now,
            )
        except AgTraceError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={"profile": profile.to_dict()})

    def approve_verification(
        self,
        user_id: str,
        reviewer_id: str,
        level: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            profile = self._kyc.approve_verification(user_id, reviewer_id, level, now)
        except AgTraceError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={
            "profile": profile.to_dict(),
            "benefits": list(self._kyc.benefits(profile.level)),
        })

    def reject_verification(
        self,
        user_id: str,
        reviewer_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            profile = self._kyc.reject_verification(user_id, reviewer_id, reason, now)
        except AgTraceError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={"profile": profile.to_dict()})

    def expire_verifications(self, now: Optional[datetime] = None) -> ServiceResult:
        expired = self._kyc.expire_due(now)
        return ServiceResult(success=True, data={"expired": expired})

    def get_verification(self, user_id: str) -> Optional[VerificationProfile]:
        return self._kyc.get_profile(user_id)

    def verification_progress(self, user_id: str, role: Optional[str] = None) -> dict[str, Any]:
        return self._kyc.verification_progress(user_id, role)

    @property
    def verification(self) -> VerificationManager:
        return self._kyc

    # ------------------------------------------------------------------
    # Mirror
    # ------------------------------------------------------------------

    def mirror_mapping(self, local_id: str) -> Optional[MirrorMapping]:
        """External reference for a local ID, or None if not yet mirrored."""
        return self._mappings.get(local_id)

    def backfill_mirror(self, now: Optional[datetime] = None) -> int:
        """Queue every event and current order status that has no mapping.

        Returns the number of jobs queued. Zero when no mirror is configured.
        """
        if self._dispatcher is None:
            return 0
        queued = 0
        for batch_id in self._ledger.batch_ids():
            for event in self._ledger.get_batch_events(batch_id):
                if self._dispatcher.submit_event(event, now):
                    queued += 1
        for order in self._orders.all_orders():
            if self._dispatcher.submit_order_transition(order, order.status, now):
                queued += 1
        logger.info("Backfill queued %d mirror job(s)", queued)
        return queued

    def process_mirror(self, now: Optional[datetime] = None) -> int:
        if self._dispatcher is None:
            return 0
        return self._dispatcher.process_due(now)

    def close(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.stop()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        stats = self._ledger.statistics()
        mirror: dict[str, Any] = {
            "enabled": self._dispatcher is not None,
            "mapped": len(self._mappings.all_mappings()),
        }
        if self._dispatcher is not None:
            mirror["pending"] = len(self._dispatcher.pending_jobs())
            mirror["parked"] = len(self._dispatcher.failed_jobs())
        return {
            "version": __version__,
            "ledger": {
                "batches": stats["total_batches"],
                "events": stats["total_events"],
                "verified": stats["verified_events"],
            },
            "orders": {
                "total": len(self._orders.all_orders()),
            },
            "verification": {
                "profiles": len(self._kyc.user_ids()),
            },
            "mirror": mirror,
        }
