"""
State Definitions for the Order Delivery Lifecycle
"""
from enum import Enum

from app.db.models.order import OrderStatus


class OrderStage(str, Enum):
    """Lifecycle position of an order, derived from its milestone timestamps"""

    UNASSIGNED = "UNASSIGNED"
    ACCEPTED = "ACCEPTED"
    PICKED_UP = "PICKED_UP"
    NAVIGATING = "NAVIGATING"
    REACHED = "REACHED"
    DELIVERED = "DELIVERED"


# Stages in lifecycle order
STAGE_SEQUENCE = [
    OrderStage.UNASSIGNED,
    OrderStage.ACCEPTED,
    OrderStage.PICKED_UP,
    OrderStage.NAVIGATING,
    OrderStage.REACHED,
    OrderStage.DELIVERED,
]

ORDER_TRANSITIONS = {
    OrderStage.UNASSIGNED: [OrderStage.ACCEPTED],
    OrderStage.ACCEPTED: [OrderStage.PICKED_UP],
    OrderStage.PICKED_UP: [OrderStage.NAVIGATING],
    OrderStage.NAVIGATING: [OrderStage.REACHED],
    OrderStage.REACHED: [OrderStage.DELIVERED],
    OrderStage.DELIVERED: [],
}

# Milestone column on Order that marks each stage as reached
STAGE_TIMESTAMP_FIELDS = {
    OrderStage.ACCEPTED: "accepted_at",
    OrderStage.PICKED_UP: "picked_up_at",
    OrderStage.NAVIGATING: "navigation_started_at",
    OrderStage.REACHED: "reached_at",
    OrderStage.DELIVERED: "delivered_time",
}

# Stored status written when the stage is entered
STAGE_STATUS = {
    OrderStage.ACCEPTED: OrderStatus.ON_THE_WAY,
    OrderStage.PICKED_UP: OrderStatus.ON_THE_WAY,
    OrderStage.NAVIGATING: OrderStatus.OUT_FOR_DELIVERY,
    OrderStage.REACHED: OrderStatus.YOUR_DESTINATION,
    OrderStage.DELIVERED: OrderStatus.DELIVERED,
}

STAGE_LABELS = {
    OrderStage.UNASSIGNED: "Waiting for a delivery partner",
    OrderStage.ACCEPTED: "Heading to store",
    OrderStage.PICKED_UP: "Order picked up",
    OrderStage.NAVIGATING: "On the way to customer",
    OrderStage.REACHED: "Reached customer location",
    OrderStage.DELIVERED: "Delivered",
}

# Operation that moves an order out of each stage
STAGE_NEXT_ACTION = {
    OrderStage.UNASSIGNED: "accept_order",
    OrderStage.ACCEPTED: "pickup_order",
    OrderStage.PICKED_UP: "start_navigation",
    OrderStage.NAVIGATING: "reached_location",
    OrderStage.REACHED: "complete_delivery",
    OrderStage.DELIVERED: None,
}


def stage_rank(stage: OrderStage) -> int:
    return STAGE_SEQUENCE.index(stage)


def predecessor_of(stage: OrderStage) -> OrderStage | None:
    """Stage that must be current before ``stage`` can be entered"""
    for source, targets in ORDER_TRANSITIONS.items():
        if stage in targets:
            return source
    return None


def is_valid_transition(current: OrderStage, target: OrderStage, strict: bool = True) -> bool:
    """
    Check if an order at ``current`` may move to ``target``.

    Strict mode follows ORDER_TRANSITIONS exactly. Relaxed mode accepts any
    stage that has not been reached yet. Delivered orders never move.
    """
    if current == OrderStage.DELIVERED:
        return False
    if strict:
        return target in ORDER_TRANSITIONS[current]
    return stage_rank(target) > stage_rank(current)
