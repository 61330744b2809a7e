"""
Tests for the geo helpers used by the tracking view
"""
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from app.core.geo import (
    build_navigation_url,
    distance_km,
    estimate_eta_minutes,
    map_point,
    round_coord,
)


@pytest.mark.unit
class TestCoordinates:
    def test_round_coord_six_places(self):
        assert round_coord(12.97159876) == 12.971599

    def test_round_coord_accepts_decimal(self):
        assert round_coord(Decimal("77.5946")) == 77.5946

    @pytest.mark.parametrize("value", [None, "12.9", True, float("nan"), float("inf")])
    def test_round_coord_rejects_non_numeric(self, value):
        assert round_coord(value) is None

    def test_map_point_needs_both_coordinates(self):
        assert map_point(12.9, None) is None
        assert map_point(12.9, 77.6) == {"lat": 12.9, "lng": 77.6}


@pytest.mark.unit
class TestDistance:
    def test_same_point_is_zero(self):
        assert distance_km(12.97, 77.59, 12.97, 77.59) == 0.0

    def test_known_distance(self):
        # Bengaluru to Chennai is roughly 290 km as the crow flies
        d = distance_km(12.9716, 77.5946, 13.0827, 80.2707)
        assert 285 <= d <= 295

    def test_symmetry(self):
        assert distance_km(12.9, 77.6, 13.0, 77.7) == distance_km(13.0, 77.7, 12.9, 77.6)

    def test_missing_coordinate(self):
        assert distance_km(12.9, 77.6, None, 77.7) is None


@pytest.mark.unit
class TestEta:
    def test_rounds_up(self):
        # 1 km at 20 km/h = 3 minutes; a bit more rounds up to 4
        assert estimate_eta_minutes(1.0, 20.0) == 3
        assert estimate_eta_minutes(1.01, 20.0) == 4

    def test_no_distance(self):
        assert estimate_eta_minutes(None, 20.0) is None

    def test_zero_speed(self):
        assert estimate_eta_minutes(5.0, 0) is None


@pytest.mark.unit
class TestNavigationUrl:
    def test_builds_google_maps_directions(self):
        url = build_navigation_url(12.9716, 77.5946)
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert parsed.netloc == "www.google.com"
        assert query["destination"] == ["12.9716,77.5946"]
        assert query["travelmode"] == ["driving"]

    def test_missing_destination(self):
        assert build_navigation_url(None, 77.5) is None
