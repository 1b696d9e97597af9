"""Order models — purchase orders between custodial roles and their delivery.

Order lifecycle (processing and distribution orders):
    PENDING → CONFIRMED → PROCESSING → READY → SHIPPED → DELIVERED
    PENDING → CANCELLED

Consumer orders are created CONFIRMED once payment succeeds and move
through the finer-grained delivery lifecycle instead:
    PENDING → CONFIRMED → PROCESSING → SHIPPED → IN_TRANSIT
        → OUT_FOR_DELIVERY → DELIVERED
    Any non-terminal delivery state → FAILED

All monetary values use Decimal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


class OrderType(str, enum.Enum):
    """Which hand-over in the chain the order covers."""
    PROCESSING = "processing"      # farmer → processor
    DISTRIBUTION = "distribution"  # processor → distributor
    CONSUMER = "consumer"          # distributor → consumer


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY = "ready"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryMode(str, enum.Enum):
    PICKUP = "pickup"
    STANDARD = "standard"
    EXPRESS = "express"
    SAME_DAY = "same_day"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"


# Valid order transitions
ORDER_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # Terminal states: no outgoing transitions
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Valid delivery transitions. FAILED is added for every non-terminal state.
_DELIVERY_CHAIN = (
    DeliveryStatus.PENDING,
    DeliveryStatus.CONFIRMED,
    DeliveryStatus.PROCESSING,
    DeliveryStatus.SHIPPED,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.OUT_FOR_DELIVERY,
    DeliveryStatus.DELIVERED,
)
DELIVERY_TRANSITIONS: Dict[DeliveryStatus, frozenset] = {
    current: frozenset({nxt, DeliveryStatus.FAILED})
    for current, nxt in zip(_DELIVERY_CHAIN, _DELIVERY_CHAIN[1:])
}
DELIVERY_TRANSITIONS[DeliveryStatus.DELIVERED] = frozenset()
DELIVERY_TRANSITIONS[DeliveryStatus.FAILED] = frozenset()

# Coarse order status shown for a consumer order at each delivery status.
# FAILED leaves the order status where it was.
DELIVERY_TO_ORDER_STATUS: Dict[DeliveryStatus, OrderStatus] = {
    DeliveryStatus.PENDING: OrderStatus.CONFIRMED,
    DeliveryStatus.CONFIRMED: OrderStatus.CONFIRMED,
    DeliveryStatus.PROCESSING: OrderStatus.PROCESSING,
    DeliveryStatus.SHIPPED: OrderStatus.SHIPPED,
    DeliveryStatus.IN_TRANSIT: OrderStatus.SHIPPED,
    DeliveryStatus.OUT_FOR_DELIVERY: OrderStatus.SHIPPED,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
}


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class OrderLine:
    """One cart line of a consumer order."""
    product_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    unit: str = "units"
    batch_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "unit": self.unit,
            "batch_id": self.batch_id,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> OrderLine:
        return OrderLine(
            product_id=data["product_id"],
            product_name=data.get("product_name", ""),
            quantity=Decimal(str(data["quantity"])),
            unit_price=Decimal(str(data["unit_price"])),
            unit=data.get("unit", "units"),
            batch_id=data.get("batch_id"),
        )


@dataclass
class DeliveryRecord:
    """Delivery details and fine-grained delivery status of an order."""
    mode: DeliveryMode
    address: str = ""
    recipient_name: str = ""
    contact_phone: str = ""
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    notes: str = ""
    delivered_utc: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "address": self.address,
            "recipient_name": self.recipient_name,
            "contact_phone": self.contact_phone,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "estimated_delivery": _iso(self.estimated_delivery),
            "status": self.status.value,
            "notes": self.notes,
            "delivered_utc": _iso(self.delivered_utc),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DeliveryRecord:
        return DeliveryRecord(
            mode=DeliveryMode(data["mode"]),
            address=data.get("address", ""),
            recipient_name=data.get("recipient_name", ""),
            contact_phone=data.get("contact_phone", ""),
            carrier=data.get("carrier"),
            tracking_number=data.get("tracking_number"),
            estimated_delivery=_dt(data.get("estimated_delivery")),
            status=DeliveryStatus(data.get("status", DeliveryStatus.PENDING.value)),
            notes=data.get("notes", ""),
            delivered_utc=_dt(data.get("delivered_utc")),
        )


@dataclass
class Order:
    """A purchase order between a buyer and a seller.

    Mutable — state transitions happen during the order lifecycle.
    ``version`` increases by one on every committed change and backs the
    optimistic check in the order stores.
    """
    order_id: str
    order_type: OrderType
    buyer_id: str
    seller_id: str
    quantity: Decimal
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    batch_id: Optional[str] = None
    items: list[OrderLine] = field(default_factory=list)
    unit: str = "kg"
    product_name: str = ""
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    payment_reference: Optional[str] = None
    delivery: Optional[DeliveryRecord] = None
    special_instructions: str = ""
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    shipped_utc: Optional[datetime] = None
    delivered_utc: Optional[datetime] = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_type": self.order_type.value,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "quantity": str(self.quantity),
            "total_amount": str(self.total_amount),
            "status": self.status.value,
            "batch_id": self.batch_id,
            "items": [line.to_dict() for line in self.items],
            "unit": self.unit,
            "product_name": self.product_name,
            "tracking_number": self.tracking_number,
            "estimated_delivery": _iso(self.estimated_delivery),
            "payment_reference": self.payment_reference,
            "delivery": self.delivery.to_dict() if self.delivery else None,
            "special_instructions": self.special_instructions,
            "created_utc": _iso(self.created_utc),
            "updated_utc": _iso(self.updated_utc),
            "shipped_utc": _iso(self.shipped_utc),
            "delivered_utc": _iso(self.delivered_utc),
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Order:
        delivery = data.get("delivery")
        return Order(
            order_id=data["order_id"],
            order_type=OrderType(data["order_type"]),
            buyer_id=data["buyer_id"],
            seller_id=data["seller_id"],
            quantity=Decimal(str(data["quantity"])),
            total_amount=Decimal(str(data["total_amount"])),
            status=OrderStatus(data["status"]),
            batch_id=data.get("batch_id"),
            items=[OrderLine.from_dict(line) for line in data.get("items") or []],
            unit=data.get("unit", "kg"),
            product_name=data.get("product_name", ""),
            tracking_number=data.get("tracking_number"),
            estimated_delivery=_dt(data.get("estimated_delivery")),
            payment_reference=data.get("payment_reference"),
            delivery=DeliveryRecord.from_dict(delivery) if delivery else None,
            special_instructions=data.get("special_instructions", ""),
            created_utc=_dt(data.get("created_utc")),
            updated_utc=_dt(data.get("updated_utc")),
            shipped_utc=_dt(data.get("shipped_utc")),
            delivered_utc=_dt(data.get("delivered_utc")),
            version=int(data.get("version", 0)),
        )
