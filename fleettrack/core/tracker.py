"""
FleetTrack Trip Tracker
=======================

Owns one recording session at a time and drives it through
Idle -> Recording -> Stopped -> Saved | Cancelled.

Fixes are processed synchronously in arrival order. Only start(), save()
and cancel() touch the store, and a failed store call leaves the session
exactly as it was.

Usage:
    tracker = TripTracker(leases, store, operator="ana@example.com")

    result = await tracker.start("VAN-01")
    async for fix in gps.stream_fixes():
        tracker.on_fix(fix)
        ...
    tracker.stop()
    result = await tracker.save(TripMetadata(fuel_level="3/4"))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Callable

from ..domain.models import DEFAULT_FUEL_LEVEL, FilteredPoint, LocationFix, Trip, TripMetadata
from ..infrastructure.gps.distance import DistanceAccumulator
from ..infrastructure.gps.route import Coordinate, RoadFollowingHeuristic, RouteAssessment, smooth_path
from ..infrastructure.gps.smoothing import SmoothingFilter
from ..infrastructure.gps.validator import PointValidator
from ..infrastructure.store.base import StoreUnavailable, VehicleStore
from .lease import LeaseOutcome, LeaseResult, VehicleLeaseManager

logger = logging.getLogger(__name__)


class TripState(str, Enum):
    """Session state."""

    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    SAVED = "saved"
    CANCELLED = "cancelled"


class TripFailure(str, Enum):
    """Recoverable reasons an operation did not complete."""

    LEASE_UNAVAILABLE = "lease_unavailable"
    ALREADY_RECORDING = "already_recording"
    INSUFFICIENT_POINTS = "insufficient_points"
    IMPLAUSIBLE_ROUTE = "implausible_route"
    STORE_UNAVAILABLE = "store_unavailable"


class InvalidTransition(Exception):
    """Operation called in a state that does not allow it."""

    def __init__(self, operation: str, state: TripState) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"{operation}() not allowed while {state.value}")


@dataclass(frozen=True)
class TripResult:
    """Outcome of a tracker operation."""

    state: TripState
    failure: TripFailure | None = None
    message: str = ""
    lease: LeaseResult | None = None
    assessment: RouteAssessment | None = None
    trip: Trip | None = None
    trip_id: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class TripSession:
    """In-memory state of one recording."""

    vehicle_id: str
    operator: str
    started_at: datetime
    start_odometer: int = 0
    fuel_level: str | None = None
    ended_at: datetime | None = None
    points: list[FilteredPoint] = field(default_factory=list)
    distance: DistanceAccumulator = field(default_factory=DistanceAccumulator)
    state: TripState = TripState.RECORDING


def _format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


def whole_km(distance_km: float) -> int:
    """Round a distance to whole kilometres, halves up (2.5 -> 3)."""
    return int(math.floor(distance_km + 0.5))


class TripTracker:
    """
    Records one vehicle trip at a time for one operator.

    The tracker never holds more than one session. Invalid transitions
    raise InvalidTransition before any effect; everything else is
    reported through TripResult.
    """

    def __init__(
        self,
        leases: VehicleLeaseManager,
        store: VehicleStore,
        operator: str,
        validator: PointValidator | None = None,
        smoother: SmoothingFilter | None = None,
        route_check: RoadFollowingHeuristic | None = None,
        min_points: int = 2,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.leases = leases
        self.store = store
        self.operator = operator
        self.validator = validator or PointValidator()
        self.smoother = smoother or SmoothingFilter()
        self.route_check = route_check or RoadFollowingHeuristic()
        self.min_points = max(2, min_points)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._session: TripSession | None = None
        self._state = TripState.IDLE

    # =========================================================================
    # Read-only accessors
    # =========================================================================

    @property
    def state(self) -> TripState:
        return self._state

    @property
    def vehicle_id(self) -> str | None:
        return self._session.vehicle_id if self._session else None

    @property
    def distance_km(self) -> float:
        """Running distance of the current session in km."""
        return self._session.distance.total_km if self._session else 0.0

    @property
    def point_count(self) -> int:
        return len(self._session.points) if self._session else 0

    @property
    def points(self) -> tuple[FilteredPoint, ...]:
        return tuple(self._session.points) if self._session else ()

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since start, frozen at stop."""
        if self._session is None:
            return 0.0
        end = self._session.ended_at or self._clock()
        return max(0.0, (end - self._session.started_at).total_seconds())

    def route_preview(self) -> list[Coordinate]:
        """Display-only smoothed path of the current track."""
        return smooth_path(self.points)

    def _require(self, operation: str, *allowed: TripState) -> None:
        if self._state not in allowed:
            raise InvalidTransition(operation, self._state)

    def _current(self, operation: str) -> TripSession:
        if self._session is None:
            raise InvalidTransition(operation, self._state)
        return self._session

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start(self, vehicle_id: str) -> TripResult:
        """
        Lease the vehicle and begin recording.

        Returns:
            TripResult in RECORDING, or a failure with the state unchanged
        """
        if self._state is TripState.RECORDING:
            return TripResult(
                state=self._state,
                failure=TripFailure.ALREADY_RECORDING,
                message=f"Already recording vehicle {self.vehicle_id}. Stop or cancel it first.",
            )
        self._require("start", TripState.IDLE, TripState.SAVED, TripState.CANCELLED)

        lease = await self.leases.acquire(vehicle_id, self.operator)
        if lease.outcome is LeaseOutcome.STORE_UNAVAILABLE:
            return TripResult(state=self._state, failure=TripFailure.STORE_UNAVAILABLE, message=lease.message, lease=lease)
        if lease.outcome is not LeaseOutcome.ACQUIRED:
            return TripResult(state=self._state, failure=TripFailure.LEASE_UNAVAILABLE, message=lease.message, lease=lease)

        record = lease.record
        self.smoother.reset()
        self._session = TripSession(
            vehicle_id=vehicle_id,
            operator=self.operator,
            started_at=self._clock(),
            start_odometer=record.odometer if record else 0,
            fuel_level=record.fuel_level if record else None,
        )
        self._state = TripState.RECORDING
        logger.info("Recording started: vehicle=%s operator=%s", vehicle_id, self.operator)
        return TripResult(state=self._state, lease=lease, message="Trip recording started.")

    def on_fix(self, fix: LocationFix) -> bool:
        """
        Smooth, validate and append one fix.

        Returns:
            True if the fix was accepted into the track
        """
        self._require("on_fix", TripState.RECORDING)
        session = self._current("on_fix")

        lat, lng = self.smoother.filter(fix.latitude, fix.longitude, fix.accuracy)
        point = FilteredPoint.from_fix(fix, lat, lng)
        if not self.validator.is_valid(point, session.points):
            return False

        if session.points:
            prev = session.points[-1]
            session.distance.add(prev.latitude, prev.longitude, point.latitude, point.longitude)
        session.points.append(point)
        return True

    def stop(self) -> TripResult:
        """End recording. The session stays open for save() or cancel()."""
        self._require("stop", TripState.RECORDING)
        session = self._current("stop")

        session.ended_at = self._clock()
        session.state = TripState.STOPPED
        self._state = TripState.STOPPED
        logger.info(
            "Recording stopped: vehicle=%s points=%d distance=%.3fkm",
            session.vehicle_id,
            len(session.points),
            session.distance.total_km,
        )

        if len(session.points) < self.min_points:
            return TripResult(
                state=self._state,
                failure=TripFailure.INSUFFICIENT_POINTS,
                message=f"Only {len(session.points)} points recorded; the trip is too short to save.",
            )
        return TripResult(
            state=self._state,
            message=f"{len(session.points)} points recorded, approx. {session.distance.total_km:.2f} km.",
        )

    def build_trip(self, metadata: TripMetadata, assessment: RouteAssessment) -> Trip:
        """Assemble the Trip aggregate from the stopped session."""
        session = self._current("build_trip")
        if session.ended_at is None:
            raise InvalidTransition("build_trip", self._state)

        distance = session.distance.total_km
        start_odometer = metadata.start_odometer if metadata.start_odometer is not None else session.start_odometer
        observations = metadata.observations.strip() or (
            f"GPS trip - computed distance: {distance:.2f} km - "
            f"duration: {_format_duration(self.elapsed_seconds)}"
        )
        return Trip(
            vehicle_id=session.vehicle_id,
            operator=session.operator,
            started_at=session.started_at,
            ended_at=session.ended_at,
            start_odometer=start_odometer,
            end_odometer=start_odometer + whole_km(distance),
            fuel_level=metadata.fuel_level or session.fuel_level or DEFAULT_FUEL_LEVEL,
            observations=observations,
            points=tuple(session.points),
            distance_km=distance,
            plausible_route=assessment.plausible,
        )

    async def save(self, metadata: TripMetadata, confirm_implausible: bool = False) -> TripResult:
        """
        Persist the stopped trip and release the vehicle.

        A straight-line track needs confirm_implausible=True. A store
        failure on the trip write keeps the session STOPPED and the lease
        held so the operator can retry.
        """
        self._require("save", TripState.STOPPED)
        session = self._current("save")

        if len(session.points) < self.min_points:
            return TripResult(
                state=self._state,
                failure=TripFailure.INSUFFICIENT_POINTS,
                message="Not enough points to save this trip. Cancel it instead.",
            )

        assessment = self.route_check.assess(session.points)
        if not assessment.plausible and not confirm_implausible:
            return TripResult(
                state=self._state,
                failure=TripFailure.IMPLAUSIBLE_ROUTE,
                message=assessment.message,
                assessment=assessment,
            )

        trip = self.build_trip(metadata, assessment)
        try:
            trip_id = await self.store.append_trip(trip)
        except StoreUnavailable as exc:
            logger.error("Saving trip for %s failed: %s", session.vehicle_id, exc)
            return TripResult(
                state=self._state,
                failure=TripFailure.STORE_UNAVAILABLE,
                message="The trip could not be saved. Check the connection and try again.",
                assessment=assessment,
            )

        # The trip is durable from here on; follow-up failures are warnings only
        session.state = TripState.SAVED
        self._state = TripState.SAVED
        warnings = await self._write_back(trip)
        logger.info("Trip %s saved: vehicle=%s distance=%.3fkm", trip_id, trip.vehicle_id, trip.distance_km)
        return TripResult(
            state=self._state,
            message="Trip saved.",
            assessment=assessment,
            trip=trip,
            trip_id=trip_id,
            warnings=warnings,
        )

    async def _write_back(self, trip: Trip) -> tuple[str, ...]:
        vehicle_fields = {"odometer": trip.end_odometer, "fuel_level": trip.fuel_level}
        lease = await self.leases.release(trip.vehicle_id, self.operator, extra_fields=vehicle_fields)
        if lease.outcome is LeaseOutcome.RELEASED:
            return ()
        if lease.outcome is LeaseOutcome.STORE_UNAVAILABLE:
            return (
                "Trip saved, but the vehicle record could not be updated. "
                "Odometer and reservation may need manual correction.",
            )

        # Lease was no longer ours (e.g. force-unlocked); still record the odometer
        try:
            await self.store.write_vehicle(trip.vehicle_id, vehicle_fields)
        except StoreUnavailable as exc:
            logger.error("Odometer update for %s failed: %s", trip.vehicle_id, exc)
            return ("Trip saved, but the vehicle odometer could not be updated.",)
        return ()

    async def cancel(self) -> TripResult:
        """
        Release the vehicle and discard the session.

        If the store cannot be reached nothing is discarded and the
        operator can retry.
        """
        self._require("cancel", TripState.RECORDING, TripState.STOPPED)
        session = self._current("cancel")

        lease = await self.leases.release(session.vehicle_id, self.operator)
        if lease.outcome is LeaseOutcome.STORE_UNAVAILABLE:
            return TripResult(
                state=self._state,
                failure=TripFailure.STORE_UNAVAILABLE,
                message=lease.message,
                lease=lease,
            )

        session.points.clear()
        session.distance.reset()
        session.state = TripState.CANCELLED
        self._state = TripState.CANCELLED
        logger.info("Recording cancelled: vehicle=%s", session.vehicle_id)
        return TripResult(state=self._state, message="Trip discarded.", lease=lease)
