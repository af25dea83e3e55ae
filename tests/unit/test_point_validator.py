"""
Point Validator Unit Tests
==========================

Tests for the fix plausibility rules.
"""

import pytest

from fleettrack.domain.models import FilteredPoint, LocationFix
from fleettrack.infrastructure.gps.validator import PointValidator


def point(lat: float, lng: float, t_ms: int, **kwargs) -> FilteredPoint:
    return FilteredPoint(latitude=lat, longitude=lng, timestamp=t_ms, **kwargs)


@pytest.fixture
def validator() -> PointValidator:
    return PointValidator()


@pytest.fixture
def history() -> list[FilteredPoint]:
    return [point(40.0, -3.0, 10_000, accuracy=5.0)]


class TestPointValidator:
    """Rule-by-rule checks, applied in order."""

    def test_first_point_always_valid(self, validator):
        """Bootstrap: no history means no basis for rejection."""
        fix = LocationFix(latitude=40.0, longitude=-3.0, timestamp=0, accuracy=500.0)
        assert validator.is_valid(fix, []) is True

    def test_poor_accuracy_rejected(self, validator, history):
        fix = LocationFix(latitude=40.0001, longitude=-3.0, timestamp=11_000, accuracy=31.0)
        assert validator.is_valid(fix, history) is False

    def test_accuracy_at_threshold_accepted(self, validator, history):
        fix = LocationFix(latitude=40.0001, longitude=-3.0, timestamp=11_000, accuracy=30.0)
        assert validator.is_valid(fix, history) is True

    def test_missing_accuracy_not_rejected(self, validator, history):
        fix = LocationFix(latitude=40.0001, longitude=-3.0, timestamp=11_000)
        assert validator.is_valid(fix, history) is True

    @pytest.mark.parametrize("t_ms", [10_000, 9_999, 0])
    @pytest.mark.parametrize("accuracy", [None, 0.0, 5.0, 29.0])
    @pytest.mark.parametrize("speed", [None, 0.0, 12.5])
    def test_non_increasing_timestamp_always_rejected(self, validator, history, t_ms, accuracy, speed):
        """Duplicate or earlier timestamps are rejected whatever the other fields say."""
        fix = LocationFix(latitude=40.0001, longitude=-3.0, timestamp=t_ms, accuracy=accuracy, speed=speed)
        assert validator.is_valid(fix, history) is False

    def test_teleport_rejected(self, validator, history):
        """~1.1 km in one second is ~4000 km/h."""
        fix = LocationFix(latitude=40.01, longitude=-3.0, timestamp=11_000, accuracy=5.0)
        assert validator.is_valid(fix, history) is False

    def test_fast_but_plausible_accepted(self, validator, history):
        """~33 m in one second is ~120 km/h."""
        fix = LocationFix(latitude=40.0003, longitude=-3.0, timestamp=11_000, accuracy=5.0)
        assert validator.is_valid(fix, history) is True

    def test_just_over_speed_limit_rejected(self, validator, history):
        """~55 m in one second is ~200 km/h."""
        fix = LocationFix(latitude=40.0005, longitude=-3.0, timestamp=11_000, accuracy=5.0)
        assert validator.is_valid(fix, history) is False

    def test_stationary_jitter_rejected(self, validator, history):
        """Less than a metre in five seconds adds no signal."""
        fix = LocationFix(latitude=40.000001, longitude=-3.0, timestamp=15_000, accuracy=5.0)
        assert validator.is_valid(fix, history) is False

    def test_small_move_within_one_second_accepted(self, validator, history):
        """The stationary rule needs more than one second to pass."""
        fix = LocationFix(latitude=40.000001, longitude=-3.0, timestamp=11_000, accuracy=5.0)
        assert validator.is_valid(fix, history) is True

    def test_only_last_point_matters(self, validator):
        """Validation is against the most recent accepted point."""
        track = [point(41.0, -3.0, 0), point(40.0, -3.0, 10_000)]
        fix = LocationFix(latitude=40.0001, longitude=-3.0, timestamp=11_000)
        assert validator.is_valid(fix, track) is True

    def test_thresholds_are_configurable(self, history):
        strict = PointValidator(max_accuracy_m=3.0, max_speed_kmh=50.0)
        fix = LocationFix(latitude=40.0003, longitude=-3.0, timestamp=11_000, accuracy=2.0)
        assert strict.is_valid(fix, history) is False
        assert PointValidator().is_valid(fix, history) is True
