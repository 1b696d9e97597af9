"""Core data models for agtrace."""

from agtrace.models.mirror import MirrorKind, MirrorMapping, MirrorResult
from agtrace.models.order import (
    DeliveryMode,
    DeliveryRecord,
    DeliveryStatus,
    Order,
    OrderLine,
    OrderStatus,
    OrderType,
)
from agtrace.models.trace import (
    ActorRole,
    BatchTimelineSummary,
    EventPayload,
    EventType,
    Stage,
    TraceEvent,
)
from agtrace.models.verification import (
    DocumentRecord,
    VerificationLevel,
    VerificationProfile,
    VerificationStatus,
)

__all__ = [
    "ActorRole",
    "BatchTimelineSummary",
    "DeliveryMode",
    "DeliveryRecord",
    "DeliveryStatus",
    "DocumentRecord",
    "EventPayload",
    "EventType",
    "MirrorKind",
    "MirrorMapping",
    "MirrorResult",
    "Order",
    "OrderLine",
    "OrderStatus",
    "OrderType",
    "Stage",
    "TraceEvent",
    "VerificationLevel",
    "VerificationProfile",
    "VerificationStatus",
]
