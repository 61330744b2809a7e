"""
Property-based tests with hypothesis for the pure helpers.

Invariants checked:
1. Outbox retry backoff: monotone and capped
2. Geo: distance is symmetric and non-negative
3. Earnings windows: start <= end, both around "now"
4. Lifecycle: stage derivation and transition rules
5. Money rounding
"""
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import (
    booleans,
    datetimes,
    decimals,
    floats,
    integers,
    sampled_from,
)

from app.core.geo import distance_km, estimate_eta_minutes
from app.domain.services.earnings_service import PERIODS, period_bounds, work_summary_bounds
from app.domain.services.outbox_service import _calculate_backoff_seconds
from app.domain.services.wallet_service import to_money
from app.state_machine.lifecycle import derive_order_stage
from app.state_machine.states import (
    STAGE_SEQUENCE,
    STAGE_TIMESTAMP_FIELDS,
    OrderStage,
    is_valid_transition,
)


# ============================================================================
# Strategies
# ============================================================================

LATITUDES = floats(min_value=-90, max_value=90, allow_nan=False, allow_infinity=False)
LONGITUDES = floats(min_value=-180, max_value=180, allow_nan=False, allow_infinity=False)
NAIVE_UTC = datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2099, 12, 31))
TIMEZONES = sampled_from(["Asia/Kolkata", "UTC", "America/New_York", "Australia/Adelaide"])
STAGES = sampled_from(STAGE_SEQUENCE)


class TestBackoffProperties:
    """Retry delay never exceeds the cap and never shrinks as retries grow"""

    @pytest.mark.unit
    @given(
        retry=integers(min_value=0, max_value=200),
        base=integers(min_value=1, max_value=600),
        cap=integers(min_value=1, max_value=86400),
    )
    def test_capped_and_monotone(self, retry: int, base: int, cap: int):
        current = _calculate_backoff_seconds(retry, base_seconds=base, max_backoff_seconds=cap)
        following = _calculate_backoff_seconds(retry + 1, base_seconds=base, max_backoff_seconds=cap)

        assert 0 < current <= cap
        assert following >= current

    @pytest.mark.unit
    @given(retry=integers(min_value=0, max_value=30), base=integers(min_value=1, max_value=60))
    def test_matches_exponential_below_cap(self, retry: int, base: int):
        cap = 10 ** 12
        assert _calculate_backoff_seconds(retry, base_seconds=base, max_backoff_seconds=cap) == base * 2 ** retry


class TestGeoProperties:
    """Great-circle distance behaves like a distance"""

    @pytest.mark.unit
    @given(lat1=LATITUDES, lng1=LONGITUDES, lat2=LATITUDES, lng2=LONGITUDES)
    def test_symmetric_and_bounded(self, lat1, lng1, lat2, lng2):
        there = distance_km(lat1, lng1, lat2, lng2)
        back = distance_km(lat2, lng2, lat1, lng1)

        assert there == back
        # Half the Earth's circumference, plus rounding slack
        assert 0 <= there <= 20015.1

    @pytest.mark.unit
    @given(lat=LATITUDES, lng=LONGITUDES)
    def test_same_point_is_zero(self, lat, lng):
        assert distance_km(lat, lng, lat, lng) == 0

    @pytest.mark.unit
    @given(
        distance=floats(min_value=0, max_value=5000, allow_nan=False),
        speed=floats(min_value=1, max_value=120, allow_nan=False),
    )
    def test_eta_never_negative(self, distance, speed):
        assert estimate_eta_minutes(distance, speed) >= 0


class TestEarningsWindowProperties:
    """Period windows are well ordered and contain now"""

    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(now=NAIVE_UTC, period=sampled_from(PERIODS), tz=TIMEZONES)
    def test_period_contains_now(self, now, period, tz):
        start, end, resolved = period_bounds(period, now=now, tz=tz)

        assert resolved == period
        assert start <= now <= end
        if period != "week":
            # End is exclusive and lies past now
            assert now < end

    @pytest.mark.unit
    @given(now=NAIVE_UTC, tz=TIMEZONES)
    def test_work_windows_nested(self, now, tz):
        windows = work_summary_bounds(now, tz=tz)

        today_start, today_end = windows["today"]
        week_start, week_end = windows["this_week"]
        assert week_start <= today_start <= today_end <= week_end
        for start, end in windows.values():
            assert start <= now < end


class TestLifecycleProperties:
    """Stage derivation follows the latest milestone"""

    @pytest.mark.unit
    @given(flags=sampled_from(range(1 << len(STAGE_TIMESTAMP_FIELDS))))
    def test_latest_milestone_wins(self, flags: int):
        stamp = datetime(2024, 1, 1)
        stages = list(STAGE_TIMESTAMP_FIELDS)
        order = SimpleNamespace(**{field: None for field in STAGE_TIMESTAMP_FIELDS.values()})
        reached = [stage for i, stage in enumerate(stages) if flags & (1 << i)]
        for stage in reached:
            setattr(order, STAGE_TIMESTAMP_FIELDS[stage], stamp)

        expected = reached[-1] if reached else OrderStage.UNASSIGNED
        assert derive_order_stage(order) == expected

    @pytest.mark.unit
    @given(current=STAGES, target=STAGES)
    def test_strict_moves_are_also_relaxed_moves(self, current, target):
        if is_valid_transition(current, target, strict=True):
            assert is_valid_transition(current, target, strict=False)

    @pytest.mark.unit
    @given(current=STAGES, target=STAGES, strict=booleans())
    def test_never_backwards_and_delivered_is_final(self, current, target, strict):
        allowed = is_valid_transition(current, target, strict=strict)
        if current == OrderStage.DELIVERED:
            assert not allowed
        if allowed:
            assert STAGE_SEQUENCE.index(target) > STAGE_SEQUENCE.index(current)


class TestMoneyProperties:
    """to_money keeps two decimal places"""

    @pytest.mark.unit
    @given(value=decimals(min_value=-10 ** 9, max_value=10 ** 9, allow_nan=False, allow_infinity=False, places=4))
    def test_two_places_and_close(self, value: Decimal):
        money = to_money(value)

        assert money.as_tuple().exponent == -2
        assert abs(money - value) <= Decimal("0.005")

    @pytest.mark.unit
    @given(value=integers(min_value=-10 ** 9, max_value=10 ** 9))
    def test_integers_exact(self, value: int):
        assert to_money(value) == Decimal(value)
