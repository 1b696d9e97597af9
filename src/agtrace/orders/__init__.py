"""Orders — purchase order lifecycle and the delivery sub-machine."""

from agtrace.orders.manager import OrderManager, generate_tracking_number
from agtrace.orders.state_machine import DeliveryStateMachine, OrderStateMachine

__all__ = [
    "DeliveryStateMachine",
    "OrderManager",
    "OrderStateMachine",
    "generate_tracking_number",
]
