"""Order and delivery state machines — enforce valid lifecycle transitions.

Order lifecycle:
    PENDING → CONFIRMED → PROCESSING → READY → SHIPPED → DELIVERED
    PENDING → CANCELLED

Delivery lifecycle:
    PENDING → CONFIRMED → PROCESSING → SHIPPED → IN_TRANSIT
        → OUT_FOR_DELIVERY → DELIVERED
    Any non-terminal state → FAILED

State semantics:
- READY: goods prepared, waiting for dispatch details.
- SHIPPED: dispatched with a tracking number and estimated delivery.
- DELIVERED: terminal, goods received by the buyer.
- CANCELLED: terminal, withdrawn before confirmation.
- OUT_FOR_DELIVERY: the last leg; the buyer may now confirm receipt.
- FAILED: terminal, delivery abandoned.

Fail-closed: invalid transitions return errors. There are no implicit
transitions.
"""

from __future__ import annotations

from agtrace.models.order import (
    DELIVERY_TRANSITIONS,
    ORDER_TRANSITIONS,
    DeliveryRecord,
    DeliveryStatus,
    Order,
    OrderStatus,
)


def _describe(current: str, target: str, allowed: frozenset, kind: str) -> list[str]:
    allowed_str = ", ".join(sorted(s.value for s in allowed))
    return [
        f"Invalid {kind} transition: {current} → {target}. "
        f"Allowed from {current}: [{allowed_str}]"
    ]


class OrderStateMachine:
    """Validates and applies coarse order status transitions.

    Pure computation: validates transitions only. Permission checks,
    persistence and logging are handled by the order manager.
    """

    @staticmethod
    def validate_transition(order: Order, target: OrderStatus) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        allowed = ORDER_TRANSITIONS.get(order.status, frozenset())
        if target not in allowed:
            return _describe(order.status.value, target.value, allowed, "order")
        return []

    @staticmethod
    def apply_transition(order: Order, target: OrderStatus) -> list[str]:
        """Validate and apply a state transition.

        Returns errors if transition is invalid. On success,
        mutates order.status and returns empty list.
        """
        errors = OrderStateMachine.validate_transition(order, target)
        if errors:
            return errors
        order.status = target
        return []

    @staticmethod
    def is_terminal(status: OrderStatus) -> bool:
        return status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    @staticmethod
    def valid_transitions(status: OrderStatus) -> set[OrderStatus]:
        return set(ORDER_TRANSITIONS.get(status, frozenset()))


class DeliveryStateMachine:
    """Validates and applies delivery status transitions."""

    @staticmethod
    def validate_transition(delivery: DeliveryRecord, target: DeliveryStatus) -> list[str]:
        allowed = DELIVERY_TRANSITIONS.get(delivery.status, frozenset())
        if target not in allowed:
            return _describe(delivery.status.value, target.value, allowed, "delivery")
        return []

    @staticmethod
    def apply_transition(delivery: DeliveryRecord, target: DeliveryStatus) -> list[str]:
        errors = DeliveryStateMachine.validate_transition(delivery, target)
        if errors:
            return errors
        delivery.status = target
        return []

    @staticmethod
    def is_terminal(status: DeliveryStatus) -> bool:
        return status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)

    @staticmethod
    def valid_transitions(status: DeliveryStatus) -> set[DeliveryStatus]:
        return set(DELIVERY_TRANSITIONS.get(status, frozenset()))
