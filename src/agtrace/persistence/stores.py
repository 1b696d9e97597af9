"""Storage ports — one independently durable store per record family.

Records are keyed by batch ID (event sequence), order ID, user ID and
mirror local ID. Nothing joins across stores; cross-references are plain
string IDs. Every store exposes explicit append/update operations that
check the caller's view of the record (sequence length or version) so
a racing writer fails with ConflictError instead of losing an update.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from agtrace.models.mirror import MirrorMapping
from agtrace.models.order import Order
from agtrace.models.trace import TraceEvent
from agtrace.models.verification import VerificationProfile


@runtime_checkable
class BatchEventStore(Protocol):
    """Append-only event sequences keyed by batch ID."""

    def append(self, event: TraceEvent, expected_length: int) -> None:
        """Append ``event`` if the batch currently holds ``expected_length`` events."""
        ...

    def events(self, batch_id: str) -> list[TraceEvent]:
        """Events of a batch in insertion order. Unknown batch → []."""
        ...

    def length(self, batch_id: str) -> int:
        ...

    def get(self, event_id: str) -> Optional[TraceEvent]:
        ...

    def record_verification(self, event: TraceEvent) -> None:
        """Replace an unverified event with its verified version."""
        ...

    def batch_ids(self) -> list[str]:
        ...


@runtime_checkable
class OrderStore(Protocol):
    """Orders keyed by order ID, with buyer/seller/payment indexes."""

    def get(self, order_id: str) -> Optional[Order]:
        ...

    def add(self, order: Order) -> None:
        ...

    def update(self, order: Order, expected_version: int) -> None:
        ...

    def by_buyer(self, user_id: str) -> list[Order]:
        ...

    def by_seller(self, user_id: str) -> list[Order]:
        ...

    def by_payment_reference(self, reference: str) -> list[Order]:
        ...

    def all_orders(self) -> list[Order]:
        ...


@runtime_checkable
class VerificationStore(Protocol):
    """KYC profiles keyed by user ID."""

    def get(self, user_id: str) -> Optional[VerificationProfile]:
        ...

    def save(self, profile: VerificationProfile) -> None:
        ...

    def user_ids(self) -> list[str]:
        ...


@runtime_checkable
class MirrorMappingStore(Protocol):
    """Mirror references keyed by local ID."""

    def get(self, local_id: str) -> Optional[MirrorMapping]:
        ...

    def add(self, mapping: MirrorMapping) -> None:
        ...

    def all_mappings(self) -> list[MirrorMapping]:
        ...
