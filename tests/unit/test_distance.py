"""
Distance Unit Tests
===================

Tests for great-circle distance and the running distance accumulator.
"""

import itertools

import pytest

from fleettrack.infrastructure.gps.distance import DistanceAccumulator, great_circle_km


class TestGreatCircle:
    """Tests for haversine distance in kilometres."""

    def test_same_point_zero_distance(self):
        """Same point should return 0."""
        assert great_circle_km(40.0, -3.0, 40.0, -3.0) == 0.0

    def test_equator_one_degree(self):
        """One degree of longitude at the equator is ~111.19 km."""
        assert great_circle_km(0, 0, 0, 1) == pytest.approx(111.195, abs=0.01)

    def test_known_distance_madrid_barcelona(self):
        """Madrid to Barcelona is roughly 505 km."""
        d = great_circle_km(40.4168, -3.7038, 41.3874, 2.1686)
        assert 495 < d < 515

    def test_symmetry(self):
        """Distance A->B should equal B->A for a spread of coordinates."""
        coords = [(0.0, 0.0), (40.0, -3.0), (-33.9, 151.2), (89.9, 179.9), (-89.9, -179.9), (51.5, -0.1)]
        for (lat1, lon1), (lat2, lon2) in itertools.product(coords, repeat=2):
            assert great_circle_km(lat1, lon1, lat2, lon2) == pytest.approx(
                great_circle_km(lat2, lon2, lat1, lon1), abs=1e-9
            )

    def test_non_negative(self):
        """Distance is never negative and only zero for identical points."""
        coords = [(0.0, 0.0), (40.0, -3.0), (40.00001, -3.0), (-45.0, 170.0)]
        for (lat1, lon1), (lat2, lon2) in itertools.product(coords, repeat=2):
            d = great_circle_km(lat1, lon1, lat2, lon2)
            assert d >= 0
            if (lat1, lon1) != (lat2, lon2):
                assert d > 0

    def test_antipodal_points_half_circumference(self):
        """Antipodes are half the circumference apart without math errors."""
        assert great_circle_km(0, 0, 0, 180) == pytest.approx(20015.09, abs=0.1)


class TestDistanceAccumulator:
    """Tests for incremental distance accumulation."""

    def test_starts_empty(self):
        acc = DistanceAccumulator()
        assert acc.total_km == 0.0
        assert acc.segments == 0

    def test_accumulates_segments(self):
        """Total should be the sum of the added segments."""
        acc = DistanceAccumulator()
        d1 = acc.add(40.0, -3.0, 40.001, -3.0)
        d2 = acc.add(40.001, -3.0, 40.001, -3.001)
        assert acc.total_km == pytest.approx(d1 + d2)
        assert acc.segments == 2
        assert acc.total_meters == pytest.approx((d1 + d2) * 1000)
        assert acc.longest_segment_km == max(d1, d2)

    def test_reset(self):
        """Reset should clear all state."""
        acc = DistanceAccumulator()
        acc.add(40.0, -3.0, 40.01, -3.0)
        acc.reset()
        assert acc.total_km == 0.0
        assert acc.segments == 0
        assert acc.longest_segment_km == 0.0

    def test_to_dict(self):
        acc = DistanceAccumulator()
        acc.add(40.0, -3.0, 40.001, -3.0)
        d = acc.to_dict()
        assert d["segments"] == 1
        assert d["total_km"] == pytest.approx(0.1112, abs=1e-3)
