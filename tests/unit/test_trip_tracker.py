"""
Trip Tracker Unit Tests
=======================

Tests for the recording session state machine.
"""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from fleettrack.core.lease import LeaseOutcome, VehicleLeaseManager
from fleettrack.core.tracker import InvalidTransition, TripFailure, TripState, TripTracker, whole_km
from fleettrack.domain.models import LocationFix, TripMetadata, VehicleRecord
from fleettrack.infrastructure.gps.distance import great_circle_km
from fleettrack.infrastructure.gps.route import RouteAssessment
from fleettrack.infrastructure.store.memory import InMemoryVehicleStore

pytestmark = pytest.mark.asyncio

OPERATOR = "ana@example.com"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def drive(n: int, step_deg: float = 0.0003, headings=(10.0, 170.0)) -> list[LocationFix]:
    """n exact fixes heading north one second apart (~120 km/h)."""
    return [
        LocationFix(
            latitude=40.0 + i * step_deg,
            longitude=-3.0,
            timestamp=1_000_000 + i * 1000,
            accuracy=0.0,
            heading=headings[i % len(headings)],
        )
        for i in range(n)
    ]


@pytest_asyncio.fixture
async def store():
    s = InMemoryVehicleStore()
    await s.put_vehicle(VehicleRecord(vehicle_id="V", odometer=1200, fuel_level="3/4"))
    return s


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def tracker(store, clock):
    return TripTracker(VehicleLeaseManager(store), store, OPERATOR, clock=clock)


async def record(tracker, fixes):
    started = await tracker.start("V")
    assert started.ok
    for fix in fixes:
        tracker.on_fix(fix)


# =============================================================================
# start
# =============================================================================


async def test_start_acquires_lease(tracker, store):
    result = await tracker.start("V")
    assert result.ok
    assert result.state is TripState.RECORDING
    assert tracker.vehicle_id == "V"
    assert store.raw_vehicle("V")["holder"] == OPERATOR


async def test_start_on_vehicle_in_use(tracker, store):
    await VehicleLeaseManager(store).acquire("V", "someone-else")
    result = await tracker.start("V")
    assert result.failure is TripFailure.LEASE_UNAVAILABLE
    assert result.lease.outcome is LeaseOutcome.CONFLICT
    assert tracker.state is TripState.IDLE


async def test_start_on_missing_vehicle(tracker):
    result = await tracker.start("NOPE")
    assert result.failure is TripFailure.LEASE_UNAVAILABLE
    assert result.lease.outcome is LeaseOutcome.NOT_FOUND
    assert tracker.state is TripState.IDLE


async def test_start_with_store_down(tracker, store):
    store.available = False
    result = await tracker.start("V")
    assert result.failure is TripFailure.STORE_UNAVAILABLE
    assert tracker.state is TripState.IDLE


async def test_start_while_recording(tracker):
    await tracker.start("V")
    result = await tracker.start("V")
    assert result.failure is TripFailure.ALREADY_RECORDING
    assert tracker.state is TripState.RECORDING


async def test_start_while_stopped_is_invalid(tracker):
    await record(tracker, drive(3))
    tracker.stop()
    with pytest.raises(InvalidTransition):
        await tracker.start("V")


# =============================================================================
# on_fix
# =============================================================================


async def test_on_fix_outside_recording_is_invalid(tracker):
    with pytest.raises(InvalidTransition):
        tracker.on_fix(drive(1)[0])


async def test_inaccurate_fix_is_dropped(tracker):
    """Two fixes at 5 m are kept, a third at 200 m is not."""
    await tracker.start("V")
    fixes = [
        LocationFix(latitude=40.0, longitude=-3.0, timestamp=0, accuracy=5.0),
        LocationFix(latitude=40.0001, longitude=-3.0001, timestamp=1000, accuracy=5.0),
        LocationFix(latitude=40.0002, longitude=-3.0002, timestamp=2000, accuracy=200.0),
    ]
    assert [tracker.on_fix(f) for f in fixes] == [True, True, False]
    assert tracker.point_count == 2
    first, second = tracker.points
    # k = 1 / (1 + 5^2) pulls the second fix only 1/26 of the way
    assert second.latitude == pytest.approx(40.0 + 0.0001 / 26, abs=1e-10)
    assert second.longitude == pytest.approx(-3.0 - 0.0001 / 26, abs=1e-10)
    assert second.accuracy == 5.0
    assert tracker.distance_km == pytest.approx(
        great_circle_km(first.latitude, first.longitude, second.latitude, second.longitude)
    )
    assert tracker.distance_km > 0


async def test_distance_is_sum_of_segments(tracker):
    await record(tracker, drive(5))
    pts = tracker.points
    expected = sum(
        great_circle_km(a.latitude, a.longitude, b.latitude, b.longitude) for a, b in zip(pts, pts[1:])
    )
    assert tracker.distance_km == pytest.approx(expected)
    assert tracker.distance_km == pytest.approx(4 * 0.0333585, abs=1e-4)


async def test_route_preview(tracker):
    await record(tracker, drive(4))
    assert len(tracker.route_preview()) == 7


async def test_elapsed_freezes_at_stop(tracker, clock):
    await tracker.start("V")
    clock.advance(30)
    assert tracker.elapsed_seconds == 30
    tracker.stop()
    clock.advance(100)
    assert tracker.elapsed_seconds == 30


# =============================================================================
# stop / save
# =============================================================================


async def test_stop_with_too_few_points(tracker):
    await record(tracker, drive(1))
    stopped = tracker.stop()
    assert stopped.failure is TripFailure.INSUFFICIENT_POINTS
    assert tracker.state is TripState.STOPPED

    saved = await tracker.save(TripMetadata())
    assert saved.failure is TripFailure.INSUFFICIENT_POINTS
    assert tracker.state is TripState.STOPPED


async def test_save_while_recording_is_invalid(tracker):
    await tracker.start("V")
    with pytest.raises(InvalidTransition):
        await tracker.save(TripMetadata())


async def test_save_updates_odometer_and_releases(tracker, store, clock):
    await record(tracker, drive(60))
    clock.advance(60)
    assert tracker.stop().ok

    result = await tracker.save(TripMetadata())
    assert result.ok
    assert result.state is TripState.SAVED
    assert result.warnings == ()

    trip = result.trip
    assert trip.start_odometer == 1200
    assert trip.end_odometer == 1202
    assert trip.fuel_level == "3/4"
    assert trip.observations == "GPS trip - computed distance: 1.97 km - duration: 01:00"
    assert trip.plausible_route is True
    assert trip.average_speed_kmh == pytest.approx(118.1, abs=0.5)

    doc = store.raw_vehicle("V")
    assert doc["odometer"] == 1202
    assert doc["held"] is False
    assert doc["holder"] is None
    assert len(store.trips) == 1
    assert store.trips[0]["vehicle_id"] == "V"
    assert len(store.trips[0]["points"]) == 60


@pytest.mark.parametrize(
    ("distance_km", "expected"),
    [(0.0, 0), (0.49, 0), (0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2), (3.51, 4)],
)
async def test_whole_km_rounds_halves_up(distance_km, expected):
    assert whole_km(distance_km) == expected


async def test_half_kilometre_trip_rounds_up(tracker, store):
    """A 2.5 km trip adds 3 km to the odometer."""
    await record(tracker, drive(5))
    tracker.stop()
    tracker._session.distance.total_km = 2.5

    result = await tracker.save(TripMetadata())
    assert result.trip.distance_km == 2.5
    assert result.trip.end_odometer == 1203
    assert store.raw_vehicle("V")["odometer"] == 1203


async def test_save_uses_operator_metadata(tracker, store):
    await record(tracker, drive(5))
    tracker.stop()
    result = await tracker.save(TripMetadata(fuel_level="1/4", observations="  Apron 3 run  ", start_odometer=500))
    assert result.trip.fuel_level == "1/4"
    assert result.trip.observations == "Apron 3 run"
    assert result.trip.start_odometer == 500
    assert store.raw_vehicle("V")["fuel_level"] == "1/4"


async def test_straight_line_needs_confirmation(tracker, store):
    await record(tracker, drive(12, headings=(0.0,)))
    tracker.stop()

    refused = await tracker.save(TripMetadata())
    assert refused.failure is TripFailure.IMPLAUSIBLE_ROUTE
    assert refused.assessment.plausible is False
    assert tracker.state is TripState.STOPPED
    assert store.trips == []
    assert store.raw_vehicle("V")["holder"] == OPERATOR

    confirmed = await tracker.save(TripMetadata(), confirm_implausible=True)
    assert confirmed.ok
    assert confirmed.trip.plausible_route is False
    assert len(store.trips) == 1


async def test_save_store_failure_keeps_session(tracker, store):
    await record(tracker, drive(5))
    tracker.stop()

    store.available = False
    failed = await tracker.save(TripMetadata())
    assert failed.failure is TripFailure.STORE_UNAVAILABLE
    assert tracker.state is TripState.STOPPED
    assert tracker.point_count == 5
    assert store.raw_vehicle("V")["holder"] == OPERATOR

    store.available = True
    retried = await tracker.save(TripMetadata())
    assert retried.ok
    assert store.raw_vehicle("V")["held"] is False


async def test_save_after_force_unlock_still_writes_odometer(tracker, store):
    await record(tracker, drive(60))
    await VehicleLeaseManager(store).force_unlock("V", "admin")
    tracker.stop()
    result = await tracker.save(TripMetadata())
    assert result.ok
    assert result.warnings == ()
    assert store.raw_vehicle("V")["odometer"] == 1202


async def test_save_after_someone_else_took_vehicle_keeps_their_lease(tracker, store):
    await record(tracker, drive(5))
    leases = VehicleLeaseManager(store)
    await leases.force_unlock("V", "admin")
    await leases.acquire("V", "B")
    tracker.stop()
    result = await tracker.save(TripMetadata())
    assert result.ok
    assert store.raw_vehicle("V")["holder"] == "B"


async def test_new_session_after_save_starts_clean(tracker):
    await record(tracker, drive(5))
    tracker.stop()
    await tracker.save(TripMetadata())

    result = await tracker.start("V")
    assert result.ok
    assert tracker.point_count == 0
    assert tracker.distance_km == 0.0
    assert not tracker.smoother.primed


# =============================================================================
# cancel
# =============================================================================


async def test_cancel_releases_and_discards(tracker, store):
    await record(tracker, drive(5))
    result = await tracker.cancel()
    assert result.state is TripState.CANCELLED
    assert tracker.point_count == 0
    assert tracker.distance_km == 0.0
    assert store.raw_vehicle("V")["held"] is False
    assert store.trips == []


async def test_cancel_after_stop(tracker, store):
    await record(tracker, drive(1))
    tracker.stop()
    assert (await tracker.cancel()).state is TripState.CANCELLED
    assert store.raw_vehicle("V")["held"] is False


async def test_cancel_with_store_down_keeps_session(tracker, store):
    await record(tracker, drive(5))
    tracker.stop()
    store.available = False
    result = await tracker.cancel()
    assert result.failure is TripFailure.STORE_UNAVAILABLE
    assert tracker.state is TripState.STOPPED
    assert tracker.point_count == 5


async def test_cancel_when_idle_is_invalid(tracker):
    with pytest.raises(InvalidTransition):
        await tracker.cancel()


async def test_stop_when_idle_is_invalid(tracker):
    with pytest.raises(InvalidTransition):
        tracker.stop()


async def test_build_trip_without_stopped_session_is_invalid(tracker):
    assessment = RouteAssessment(plausible=True, direction_changes=0)
    with pytest.raises(InvalidTransition):
        tracker.build_trip(TripMetadata(), assessment)

    await record(tracker, drive(3))
    with pytest.raises(InvalidTransition):
        tracker.build_trip(TripMetadata(), assessment)
