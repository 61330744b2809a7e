"""
Lifecycle derivation helpers.

Everything here is a pure function of an order's milestone timestamps; the
stored status string is never consulted. Works on Order rows as well as on
any object exposing the same attribute names.
"""
from datetime import datetime
from typing import Any, Optional

from app.state_machine.states import (
    OrderStage,
    STAGE_LABELS,
    STAGE_NEXT_ACTION,
)

TIMELINE_STEPS = [
    ("to_store", "Picked up from store", "picked_up_at"),
    ("to_customer", "On the way to customer", "navigation_started_at"),
    ("reached", "Reached customer", "reached_at"),
    ("delivered", "Delivered", "delivered_time"),
]


def derive_order_stage(order: Any) -> OrderStage:
    """Latest milestone wins"""
    if getattr(order, "delivered_time", None):
        return OrderStage.DELIVERED
    if getattr(order, "reached_at", None):
        return OrderStage.REACHED
    if getattr(order, "navigation_started_at", None):
        return OrderStage.NAVIGATING
    if getattr(order, "picked_up_at", None):
        return OrderStage.PICKED_UP
    if getattr(order, "accepted_at", None):
        return OrderStage.ACCEPTED
    return OrderStage.UNASSIGNED


def stage_label(stage: OrderStage) -> str:
    return STAGE_LABELS[stage]


def next_action(stage: OrderStage) -> Optional[str]:
    """Name of the next lifecycle operation, None once delivered"""
    return STAGE_NEXT_ACTION.get(stage)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_timeline_steps(order: Any) -> list[dict]:
    """Four timeline steps with completion flag and timestamp"""
    steps = []
    for key, label, field in TIMELINE_STEPS:
        timestamp = getattr(order, field, None)
        steps.append({
            "key": key,
            "label": label,
            "completed": timestamp is not None,
            "timestamp": _iso(timestamp),
        })
    return steps
