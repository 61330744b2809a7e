"""
Tests for the order lifecycle: stage derivation, transitions and timeline
"""
from datetime import datetime
from types import SimpleNamespace

import pytest

from app.state_machine import (
    ORDER_TRANSITIONS,
    OrderStage,
    build_timeline_steps,
    derive_order_stage,
    is_valid_transition,
    next_action,
)
from app.state_machine.states import STAGE_SEQUENCE, predecessor_of

T = datetime(2024, 5, 1, 10, 0, 0)


def _order(**milestones) -> SimpleNamespace:
    fields = dict(
        accepted_at=None,
        picked_up_at=None,
        navigation_started_at=None,
        reached_at=None,
        delivered_time=None,
    )
    fields.update(milestones)
    return SimpleNamespace(**fields)


@pytest.mark.unit
class TestDeriveStage:
    def test_no_milestones_is_unassigned(self):
        assert derive_order_stage(_order()) == OrderStage.UNASSIGNED

    @pytest.mark.parametrize(
        "field,stage",
        [
            ("accepted_at", OrderStage.ACCEPTED),
            ("picked_up_at", OrderStage.PICKED_UP),
            ("navigation_started_at", OrderStage.NAVIGATING),
            ("reached_at", OrderStage.REACHED),
            ("delivered_time", OrderStage.DELIVERED),
        ],
    )
    def test_single_milestone(self, field, stage):
        assert derive_order_stage(_order(**{field: T})) == stage

    def test_latest_milestone_wins_even_with_gaps(self):
        # Relaxed mode can skip steps; delivered still wins
        assert derive_order_stage(_order(accepted_at=T, delivered_time=T)) == OrderStage.DELIVERED

    def test_stored_status_is_ignored(self):
        order = _order(accepted_at=T)
        order.status = "Delivered"
        assert derive_order_stage(order) == OrderStage.ACCEPTED


@pytest.mark.unit
class TestTransitions:
    def test_strict_allows_only_next_step(self):
        assert is_valid_transition(OrderStage.ACCEPTED, OrderStage.PICKED_UP)
        assert not is_valid_transition(OrderStage.ACCEPTED, OrderStage.REACHED)
        assert not is_valid_transition(OrderStage.REACHED, OrderStage.PICKED_UP)

    def test_relaxed_allows_skipping_forward(self):
        assert is_valid_transition(OrderStage.ACCEPTED, OrderStage.REACHED, strict=False)
        assert not is_valid_transition(OrderStage.REACHED, OrderStage.PICKED_UP, strict=False)

    @pytest.mark.parametrize("strict", [True, False])
    def test_delivered_is_terminal(self, strict):
        for target in STAGE_SEQUENCE:
            assert not is_valid_transition(OrderStage.DELIVERED, target, strict=strict)

    def test_every_stage_but_delivered_has_one_successor(self):
        for stage, targets in ORDER_TRANSITIONS.items():
            expected = 0 if stage == OrderStage.DELIVERED else 1
            assert len(targets) == expected

    def test_predecessor(self):
        assert predecessor_of(OrderStage.PICKED_UP) == OrderStage.ACCEPTED
        assert predecessor_of(OrderStage.UNASSIGNED) is None


@pytest.mark.unit
class TestNextActionAndTimeline:
    def test_next_action_per_stage(self):
        assert next_action(OrderStage.UNASSIGNED) == "accept_order"
        assert next_action(OrderStage.REACHED) == "complete_delivery"
        assert next_action(OrderStage.DELIVERED) is None

    def test_timeline_has_four_steps(self):
        steps = build_timeline_steps(_order(accepted_at=T, picked_up_at=T))

        assert [s["key"] for s in steps] == ["to_store", "to_customer", "reached", "delivered"]
        assert steps[0]["completed"] is True
        assert steps[0]["timestamp"] == T.isoformat()
        assert all(s["completed"] is False and s["timestamp"] is None for s in steps[1:])
