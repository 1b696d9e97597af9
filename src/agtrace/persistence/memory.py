"""In-memory implementations of the storage ports.

Orders and profiles are copied on the way in and out so callers can never
change stored state without going through ``update``/``save``. The
file-backed stores subclass these and persist inside the ``_persist_*``
hooks, which run under the store lock after validation and before the
in-memory state changes.
"""

from __future__ import annotations

import copy
import threading
from typing import Dict, List, Optional

from agtrace.errors import (
    AlreadyRegisteredError,
    AlreadyVerifiedError,
    ConflictError,
    NotFoundError,
)
from agtrace.models.mirror import MirrorMapping
from agtrace.models.order import Order
from agtrace.models.trace import TraceEvent, parse_event_id
from agtrace.models.verification import VerificationProfile


class InMemoryBatchEventStore:
    """Per-batch event lists. Events are only ever appended."""

    def __init__(self) -> None:
        self._batches: Dict[str, List[TraceEvent]] = {}
        self._lock = threading.Lock()

    def append(self, event: TraceEvent, expected_length: int) -> None:
        with self._lock:
            events = self._batches.get(event.batch_id, [])
            if len(events) != expected_length:
                raise ConflictError(
                    f"Batch {event.batch_id} changed concurrently: expected "
                    f"{expected_length} events, found {len(events)}"
                )
            if event.sequence != expected_length + 1:
                raise ValueError(
                    f"Event {event.event_id} has sequence {event.sequence}, "
                    f"expected {expected_length + 1}"
                )
            self._persist_append(event)
            self._batches.setdefault(event.batch_id, []).append(event)

    def events(self, batch_id: str) -> list[TraceEvent]:
        with self._lock:
            return list(self._batches.get(batch_id, []))

    def length(self, batch_id: str) -> int:
        with self._lock:
            return len(self._batches.get(batch_id, []))

    def get(self, event_id: str) -> Optional[TraceEvent]:
        try:
            batch_id, sequence = parse_event_id(event_id)
        except ValueError:
            return None
        with self._lock:
            events = self._batches.get(batch_id, [])
            if 1 <= sequence <= len(events):
                event = events[sequence - 1]
                if event.event_id == event_id:
                    return event
        return None

    def record_verification(self, event: TraceEvent) -> None:
        with self._lock:
            events = self._batches.get(event.batch_id, [])
            index = event.sequence - 1
            if not (0 <= index < len(events)) or events[index].event_id != event.event_id:
                raise NotFoundError(f"Unknown event: {event.event_id}")
            current = events[index]
            if current.verified:
                raise AlreadyVerifiedError(f"Event already verified: {event.event_id}")
            if current.content_hash != event.content_hash or not event.verified:
                raise ValueError(
                    f"Verification of {event.event_id} may only change verification fields"
                )
            self._persist_verification(event)
            events[index] = event

    def batch_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._batches)

    # Hooks for durable subclasses
    def _persist_append(self, event: TraceEvent) -> None:
        pass

    def _persist_verification(self, event: TraceEvent) -> None:
        pass


class InMemoryOrderStore:
    """Orders with buyer, seller and payment-reference indexes kept on write."""

    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._by_buyer: Dict[str, List[str]] = {}
        self._by_seller: Dict[str, List[str]] = {}
        self._by_payment: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order is not None else None

    def add(self, order: Order) -> None:
        with self._lock:
            if order.order_id in self._orders:
                raise AlreadyRegisteredError(f"Order ID already exists: {order.order_id}")
            self._persist_order(order)
            self._index(copy.deepcopy(order))

    def update(self, order: Order, expected_version: int) -> None:
        with self._lock:
            current = self._orders.get(order.order_id)
            if current is None:
                raise NotFoundError(f"Unknown order: {order.order_id}")
            if current.version != expected_version:
                raise ConflictError(
                    f"Order {order.order_id} changed concurrently: expected version "
                    f"{expected_version}, found {current.version}"
                )
            self._persist_order(order)
            self._orders[order.order_id] = copy.deepcopy(order)

    def by_buyer(self, user_id: str) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(self._orders[i]) for i in self._by_buyer.get(user_id, [])]

    def by_seller(self, user_id: str) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(self._orders[i]) for i in self._by_seller.get(user_id, [])]

    def by_payment_reference(self, reference: str) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(self._orders[i]) for i in self._by_payment.get(reference, [])]

    def all_orders(self) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._orders.values()]

    def _index(self, order: Order) -> None:
        """Register an order and its index entries. Caller holds the lock."""
        self._orders[order.order_id] = order
        self._by_buyer.setdefault(order.buyer_id, []).append(order.order_id)
        self._by_seller.setdefault(order.seller_id, []).append(order.order_id)
        if order.payment_reference:
            self._by_payment.setdefault(order.payment_reference, []).append(order.order_id)

    def _persist_order(self, order: Order) -> None:
        pass


class InMemoryVerificationStore:
    def __init__(self) -> None:
        self._profiles: Dict[str, VerificationProfile] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[VerificationProfile]:
        with self._lock:
            profile = self._profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def save(self, profile: VerificationProfile) -> None:
        with self._lock:
            self._persist_profile(profile)
            self._profiles[profile.user_id] = copy.deepcopy(profile)

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._profiles)

    def _persist_profile(self, profile: VerificationProfile) -> None:
        pass


class InMemoryMirrorMappingStore:
    def __init__(self) -> None:
        self._mappings: Dict[str, MirrorMapping] = {}
        self._lock = threading.Lock()

    def get(self, local_id: str) -> Optional[MirrorMapping]:
        with self._lock:
            return self._mappings.get(local_id)

    def add(self, mapping: MirrorMapping) -> None:
        with self._lock:
            if mapping.local_id in self._mappings:
                raise AlreadyRegisteredError(f"Already mirrored: {mapping.local_id}")
            self._persist_mapping(mapping)
            self._mappings[mapping.local_id] = mapping

    def all_mappings(self) -> list[MirrorMapping]:
        with self._lock:
            return list(self._mappings.values())

    def _persist_mapping(self, mapping: MirrorMapping) -> None:
        pass
