"""
State Machine Module for the Order Delivery Lifecycle
"""
from app.state_machine.states import OrderStage, ORDER_TRANSITIONS, is_valid_transition
from app.state_machine.lifecycle import derive_order_stage, build_timeline_steps, next_action

__all__ = [
    "OrderStage",
    "ORDER_TRANSITIONS",
    "is_valid_transition",
    "derive_order_stage",
    "build_timeline_steps",
    "next_action",
]
