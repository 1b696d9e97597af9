"""Order manager — purchase orders between custodial roles and their delivery.

Processing and distribution orders are placed by the buyer and driven
through the coarse order lifecycle by the party configured for the order
type (the buyer for both). Consumer orders are created CONFIRMED from a
successful payment, one order per cart line, and move through the
finer-grained delivery lifecycle: the seller advances delivery, and only
the buyer can confirm it as delivered.

Every committed change bumps ``Order.version`` under a per-order lock;
the store rejects a stale version with ConflictError.

The order manager is a pure state machine with respect to the ledger and
the mirror: cross-linking and mirroring are handled by the service
layer.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from uuid import uuid4

from agtrace.errors import (
    AlreadyRegisteredError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from agtrace.identity import Actor
from agtrace.models.order import (
    DELIVERY_TO_ORDER_STATUS,
    DeliveryRecord,
    DeliveryStatus,
    Order,
    OrderLine,
    OrderStatus,
    OrderType,
)
from agtrace.orders.state_machine import DeliveryStateMachine, OrderStateMachine
from agtrace.persistence.stores import OrderStore
from agtrace.policy.resolver import Action, AuthorizationPolicy, ResourceType

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number, got {value!r}") from None


def _coerce(enum_cls: Any, value: Any, name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {name}: {value}") from None


def generate_tracking_number(now: Optional[datetime] = None) -> str:
    """Tracking number of the form ``TRK-<base36 millis><4 random chars>``."""
    millis = int((now.timestamp() if now is not None else time.time()) * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"TRK-{_base36(millis)}{suffix}"


class OrderManager:
    """Manages orders and their delivery state.

    Usage:
        manager = OrderManager(InMemoryOrderStore(), AuthorizationPolicy.default())
        order = manager.place_order(processor, OrderType.PROCESSING, "farmer_1",
                                    Decimal("100"), Decimal("250.00"), batch_id="B1")
        order = manager.transition_order(order.order_id, processor, OrderStatus.CONFIRMED)
    """

    def __init__(self, store: OrderStore, policy: AuthorizationPolicy) -> None:
        self._store = store
        self._policy = policy
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._payment_lock = threading.Lock()

    def _order_lock(self, order_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = self._locks[order_id] = threading.Lock()
            return lock

    def _get(self, order_id: str) -> Order:
        order = self._store.get(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    def _commit(self, order: Order, now: datetime) -> Order:
        expected = order.version
        order.version += 1
        order.updated_utc = now
        self._store.update(order, expected_version=expected)
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def place_order(
        self,
        buyer: Actor,
        order_type: Union[OrderType, str],
        seller_id: str,
        quantity: Union[Decimal, str, int],
        total_amount: Union[Decimal, str, int],
        batch_id: Optional[str] = None,
        product_name: str = "",
        unit: str = "kg",
        special_instructions: str = "",
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """Create a processing or distribution order in PENDING state.

        Raises:
            ValidationError: bad type, quantity, amount or seller.
            PermissionDeniedError: the buyer's role may not place this
                order type.
        """
        resolved_type = _coerce(OrderType, order_type, "order type")
        if resolved_type == OrderType.CONSUMER:
            raise ValidationError("Consumer orders are created from successful payments")
        self._policy.require(buyer.role, Action.CREATE, ResourceType.ORDER, resolved_type)

        qty = _decimal(quantity, "quantity")
        amount = _decimal(total_amount, "total_amount")
        if qty <= Decimal("0"):
            raise ValidationError("Order quantity must be positive")
        if amount < Decimal("0"):
            raise ValidationError("Order amount must not be negative")
        if not seller_id:
            raise ValidationError("Order seller must not be empty")
        if seller_id == buyer.user_id:
            raise ValidationError("Buyer and seller must differ")
        if now is None:
            now = datetime.now(timezone.utc)

        order = Order(
            order_id=order_id or f"order_{uuid4().hex[:12]}",
            order_type=resolved_type,
            buyer_id=buyer.user_id,
            seller_id=seller_id,
            quantity=qty,
            total_amount=amount,
            status=OrderStatus.PENDING,
            batch_id=batch_id,
            unit=unit,
            product_name=product_name,
            special_instructions=special_instructions,
            created_utc=now,
            updated_utc=now,
            version=1,
        )
        self._store.add(order)
        logger.info(
            "Placed %s order %s: %s → %s",
            resolved_type.value, order.order_id, seller_id, buyer.user_id,
        )
        return order

    def create_consumer_orders(
        self,
        payment_reference: str,
        buyer: Actor,
        seller_id: str,
        items: list[OrderLine],
        delivery: DeliveryRecord,
        now: Optional[datetime] = None,
    ) -> list[Order]:
        """Create one CONFIRMED consumer order per cart line.

        Payment has already succeeded, so the orders skip PENDING.

        Raises:
            AlreadyRegisteredError: orders already exist for this payment.
            ValidationError: missing reference, empty cart or bad line.
        """
        if not payment_reference:
            raise ValidationError("Payment reference must not be empty")
        if not items:
            raise ValidationError("A consumer order needs at least one item")
        self._policy.require(buyer.role, Action.CREATE, ResourceType.ORDER, OrderType.CONSUMER)
        for line in items:
            if line.quantity <= Decimal("0"):
                raise ValidationError(f"Quantity must be positive for {line.product_id}")
            if line.unit_price < Decimal("0"):
                raise ValidationError(f"Unit price must not be negative for {line.product_id}")
        if now is None:
            now = datetime.now(timezone.utc)

        orders = []
        with self._payment_lock:
            if self._store.by_payment_reference(payment_reference):
                raise AlreadyRegisteredError(
                    f"Orders already exist for payment {payment_reference}"
                )
            for line in items:
                order = Order(
                    order_id=f"order_{uuid4().hex[:12]}",
                    order_type=OrderType.CONSUMER,
                    buyer_id=buyer.user_id,
                    seller_id=seller_id,
                    quantity=line.quantity,
                    total_amount=line.line_total,
                    status=OrderStatus.CONFIRMED,
                    batch_id=line.batch_id,
                    items=[line],
                    unit=line.unit,
                    product_name=line.product_name,
                    payment_reference=payment_reference,
                    delivery=DeliveryRecord(
                        mode=delivery.mode,
                        address=delivery.address,
                        recipient_name=delivery.recipient_name,
                        contact_phone=delivery.contact_phone,
                        carrier=delivery.carrier,
                        estimated_delivery=delivery.estimated_delivery,
                        status=DeliveryStatus.CONFIRMED,
                        notes=delivery.notes,
                    ),
                    created_utc=now,
                    updated_utc=now,
                    version=1,
                )
                self._store.add(order)
                orders.append(order)

        logger.info(
            "Created %d consumer order(s) for payment %s", len(orders), payment_reference,
        )
        return orders

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition_order(
        self,
        order_id: str,
        actor: Actor,
        target: Union[OrderStatus, str],
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """Move a processing or distribution order to ``target``.

        Only the driving party for the order type, matched by role and by
        user ID, may transition. READY → SHIPPED requires a tracking
        number and an estimated delivery.

        Raises:
            InvalidTransitionError: out-of-sequence target, or a consumer
                order (those move through delivery status).
            PermissionDeniedError: actor is not the driving party.
            ValidationError: shipping without tracking details.
        """
        resolved = _coerce(OrderStatus, target, "order status")
        if now is None:
            now = datetime.now(timezone.utc)

        with self._order_lock(order_id):
            order = self._get(order_id)
            if order.order_type == OrderType.CONSUMER:
                raise InvalidTransitionError(
                    f"Consumer order {order_id} moves through delivery status, "
                    f"not order transitions"
                )
            self._policy.require(actor.role, Action.TRANSITION, ResourceType.ORDER, order.order_type)
            parties = self._policy.order_parties(order.order_type)
            if actor.role != parties.driver_role or actor.user_id != parties.driver_id(order):
                raise PermissionDeniedError(
                    f"Only the {parties.driver} ({parties.driver_role.value}) of order "
                    f"{order_id} may change its status"
                )

            errors = OrderStateMachine.validate_transition(order, resolved)
            if errors:
                raise InvalidTransitionError("; ".join(errors))

            if resolved == OrderStatus.SHIPPED:
                if not tracking_number or estimated_delivery is None:
                    raise ValidationError(
                        "Shipping requires a tracking number and an estimated delivery"
                    )
                order.tracking_number = tracking_number
                order.estimated_delivery = estimated_delivery
                order.shipped_utc = now
            elif resolved == OrderStatus.DELIVERED:
                order.delivered_utc = now

            OrderStateMachine.apply_transition(order, resolved)
            self._commit(order, now)

        logger.info("Order %s → %s by %s", order_id, resolved.value, actor.user_id)
        return order

    def advance_delivery(
        self,
        order_id: str,
        actor: Actor,
        target: Union[DeliveryStatus, str],
        carrier: Optional[str] = None,
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """Seller-side advance of an order's delivery status.

        DELIVERED is never reachable here; the buyer confirms it with
        ``confirm_delivery``. The coarse order status follows.
        """
        resolved = _coerce(DeliveryStatus, target, "delivery status")
        if resolved == DeliveryStatus.DELIVERED:
            raise InvalidTransitionError(
                "Delivery can only be marked delivered by the buyer's confirmation"
            )
        if now is None:
            now = datetime.now(timezone.utc)

        with self._order_lock(order_id):
            order = self._get(order_id)
            if order.delivery is None:
                raise InvalidTransitionError(f"Order {order_id} has no delivery record")
            self._policy.require(
                actor.role, Action.ADVANCE_DELIVERY, ResourceType.ORDER, order.order_type,
            )
            parties = self._policy.order_parties(order.order_type)
            if actor.role != parties.seller_role or actor.user_id != order.seller_id:
                raise PermissionDeniedError(
                    f"Only the seller of order {order_id} may advance its delivery"
                )

            errors = DeliveryStateMachine.validate_transition(order.delivery, resolved)
            if errors:
                raise InvalidTransitionError("; ".join(errors))

            delivery = order.delivery
            if carrier is not None:
                delivery.carrier = carrier
            if tracking_number is not None:
                delivery.tracking_number = tracking_number
                order.tracking_number = tracking_number
            if estimated_delivery is not None:
                delivery.estimated_delivery = estimated_delivery
                order.estimated_delivery = estimated_delivery
            if notes is not None:
                delivery.notes = notes
            if resolved == DeliveryStatus.SHIPPED:
                order.shipped_utc = now

            DeliveryStateMachine.apply_transition(delivery, resolved)
            coarse = DELIVERY_TO_ORDER_STATUS.get(resolved)
            if coarse is not None:
                order.status = coarse
            self._commit(order, now)

        logger.info("Order %s delivery → %s by %s", order_id, resolved.value, actor.user_id)
        return order

    def confirm_delivery(
        self,
        order_id: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> tuple[Order, bool]:
        """Buyer confirms receipt. Idempotent.

        Returns:
            Tuple of (order, changed). ``changed`` is False when the order
            was already delivered.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        with self._order_lock(order_id):
            order = self._get(order_id)
            self._policy.require(
                actor.role, Action.CONFIRM_DELIVERY, ResourceType.ORDER, order.order_type,
            )
            parties = self._policy.order_parties(order.order_type)
            if actor.role != parties.buyer_role or actor.user_id != order.buyer_id:
                raise PermissionDeniedError(
                    f"Only the buyer of order {order_id} may confirm its delivery"
                )
            if order.status == OrderStatus.DELIVERED:
                return order, False

            delivery = order.delivery
            if delivery is not None:
                allowed = self._policy.confirmable_delivery_states(delivery.mode)
                if delivery.status not in allowed:
                    raise InvalidTransitionError(
                        f"Cannot confirm delivery of order {order_id} while "
                        f"{delivery.status.value}; expected one of "
                        f"[{', '.join(sorted(s.value for s in allowed))}]"
                    )
                delivery.status = DeliveryStatus.DELIVERED
                delivery.delivered_utc = now
            elif order.status != OrderStatus.SHIPPED:
                raise InvalidTransitionError(
                    f"Cannot confirm delivery of order {order_id} while {order.status.value}"
                )

            order.status = OrderStatus.DELIVERED
            order.delivered_utc = now
            self._commit(order, now)

        logger.info("Order %s delivery confirmed by %s", order_id, actor.user_id)
        return order, True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._store.get(order_id)

    def all_orders(self) -> list[Order]:
        return self._store.all_orders()

    def orders_for_party(self, user_id: str, side: Optional[str] = None) -> list[Order]:
        """Orders where ``user_id`` is the buyer, the seller, or either.

        Newest first.
        """
        if side == "buyer":
            orders = self._store.by_buyer(user_id)
        elif side == "seller":
            orders = self._store.by_seller(user_id)
        elif side is None:
            seen: dict[str, Order] = {}
            for order in self._store.by_buyer(user_id) + self._store.by_seller(user_id):
                seen[order.order_id] = order
            orders = list(seen.values())
        else:
            raise ValidationError(f"side must be 'buyer' or 'seller', got {side!r}")
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(orders, key=lambda o: o.created_utc or epoch, reverse=True)

    def order_statistics(self, user_id: str) -> dict[str, Any]:
        """Counts by status plus revenue (as seller) and purchases (as buyer).

        Cancelled orders do not count towards either amount.
        """
        as_buyer = self._store.by_buyer(user_id)
        as_seller = self._store.by_seller(user_id)
        by_status: dict[str, int] = {status.value: 0 for status in OrderStatus}
        for order in {o.order_id: o for o in as_buyer + as_seller}.values():
            by_status[order.status.value] += 1

        return {
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "orders_as_buyer": len(as_buyer),
            "orders_as_seller": len(as_seller),
            "total_revenue": sum(
                (o.total_amount for o in as_seller if o.status != OrderStatus.CANCELLED),
                Decimal("0"),
            ),
            "total_purchases": sum(
                (o.total_amount for o in as_buyer if o.status != OrderStatus.CANCELLED),
                Decimal("0"),
            ),
        }

    @staticmethod
    def generate_tracking_number(now: Optional[datetime] = None) -> str:
        return generate_tracking_number(now)
