"""Mirror port — the only thing the core knows about the external ledger.

Adapters re-record a committed local fact (a trace event or an order
transition) somewhere public and hand back a reference. They raise
MirrorUnavailable when that is not possible right now; the dispatcher
decides whether to retry.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from agtrace.errors import MirrorUnavailable
from agtrace.models.mirror import MirrorResult
from agtrace.models.order import Order, OrderStatus
from agtrace.models.trace import TraceEvent


@runtime_checkable
class MirrorPort(Protocol):
    """Anything that can re-record local facts on an external ledger."""

    def mirror_event(self, event: TraceEvent) -> MirrorResult:
        ...

    def mirror_order_transition(self, order: Order, status: OrderStatus) -> MirrorResult:
        ...


class NullMirror:
    """Mirror used when no external ledger is configured.

    Every call reports the mirror as unavailable, so work submitted to a
    dispatcher backed by it ends up parked and can be replayed once a
    real mirror is configured.
    """

    def mirror_event(self, event: TraceEvent) -> MirrorResult:
        raise MirrorUnavailable("No mirror configured")

    def mirror_order_transition(self, order: Order, status: OrderStatus) -> MirrorResult:
        raise MirrorUnavailable("No mirror configured")
