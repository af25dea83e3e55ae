from __future__ import annotations

import asyncio
import csv
import logging
from collections.abc import Iterator
from pathlib import Path

from ..config import FleetTrackConfig, StoreBackend
from ..core.lease import VehicleLeaseManager
from ..core.tracker import TripFailure, TripResult, TripState, TripTracker
from ..domain.models import LocationFix, TripMetadata
from ..infrastructure.gps.gpsd_client import AsyncGPSClient, GPSClientConfig, MockGPSClient
from ..infrastructure.gps.route import RoadFollowingHeuristic
from ..infrastructure.gps.smoothing import SmoothingFilter
from ..infrastructure.gps.validator import PointValidator
from ..infrastructure.store.base import VehicleStore
from ..infrastructure.store.memory import InMemoryVehicleStore
from ..infrastructure.store.sqlite import SqliteVehicleStore

logger = logging.getLogger(__name__)


async def build_store(cfg: FleetTrackConfig) -> VehicleStore:
    if cfg.store.backend is StoreBackend.MEMORY:
        return InMemoryVehicleStore()
    store = SqliteVehicleStore(cfg.store.db_path)
    await store.init_schema()
    return store


def build_tracker(cfg: FleetTrackConfig, store: VehicleStore, operator: str) -> TripTracker:
    t = cfg.tracking
    r = cfg.route_check
    return TripTracker(
        leases=VehicleLeaseManager(store, atomic=cfg.lease.atomic),
        store=store,
        operator=operator,
        validator=PointValidator(
            max_accuracy_m=t.max_accuracy_m,
            max_speed_kmh=t.max_speed_kmh,
            min_movement_km=t.min_movement_km,
            stationary_after_s=t.stationary_after_s,
        ),
        smoother=SmoothingFilter(variance=t.filter_variance, default_accuracy_m=t.default_accuracy_m),
        route_check=RoadFollowingHeuristic(
            min_points=r.min_points,
            turn_threshold_deg=r.turn_threshold_deg,
            wrap_threshold_deg=r.wrap_threshold_deg,
            min_direction_changes=r.min_direction_changes,
        ),
        min_points=t.min_points,
    )


def build_gps_client(cfg: FleetTrackConfig) -> AsyncGPSClient:
    if cfg.gps.mock_mode:
        return MockGPSClient(start_lat=cfg.gps.mock_lat, start_lon=cfg.gps.mock_lon, interval=cfg.gps.mock_interval)
    return AsyncGPSClient(
        GPSClientConfig(
            host=cfg.gps.host,
            port=cfg.gps.port,
            timeout=cfg.gps.timeout,
            reconnect_delay=cfg.gps.reconnect_delay,
        )
    )


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


def read_fixes_csv(path: Path) -> Iterator[LocationFix]:
    """
    Read fixes from a CSV with a header row.

    Required columns: timestamp_ms, latitude, longitude. Optional:
    accuracy, speed, heading (blank = unknown).

    Raises:
        ValueError: On missing columns or unparsable rows.
    """
    with Path(path).open("r", encoding="utf-8", newline="") as fp:
        reader = csv.DictReader(fp)
        missing = {"timestamp_ms", "latitude", "longitude"} - set(reader.fieldnames or ())
        if missing:
            raise ValueError(f"CSV is missing columns: {', '.join(sorted(missing))}")
        for line_no, row in enumerate(reader, start=2):
            try:
                yield LocationFix(
                    timestamp=int(row["timestamp_ms"]),
                    latitude=float(row["latitude"]),
                    longitude=float(row["longitude"]),
                    accuracy=_optional_float(row.get("accuracy")),
                    speed=_optional_float(row.get("speed")),
                    heading=_optional_float(row.get("heading")),
                )
            except ValueError as exc:
                raise ValueError(f"{path}:{line_no}: {exc}") from exc


async def _finish(
    tracker: TripTracker,
    metadata: TripMetadata,
    confirm_implausible: bool,
) -> TripResult:
    stopped = tracker.stop()
    if stopped.failure is TripFailure.INSUFFICIENT_POINTS:
        cancelled = await tracker.cancel()
        if not cancelled.ok:
            return cancelled
        return stopped
    return await tracker.save(metadata, confirm_implausible=confirm_implausible)


async def replay_trip(
    tracker: TripTracker,
    vehicle_id: str,
    fixes: Iterator[LocationFix],
    metadata: TripMetadata,
    confirm_implausible: bool = False,
) -> TripResult:
    """
    Feed recorded fixes through a full session and save it.

    An implausible route without confirmation leaves the session STOPPED
    (lease held) and returns the IMPLAUSIBLE_ROUTE result.
    """
    started = await tracker.start(vehicle_id)
    if not started.ok:
        return started

    accepted = 0
    total = 0
    try:
        for fix in fixes:
            total += 1
            if tracker.on_fix(fix):
                accepted += 1
    except ValueError:
        await tracker.cancel()
        raise
    logger.info("Replay %s: %d/%d fixes accepted", vehicle_id, accepted, total)
    return await _finish(tracker, metadata, confirm_implausible)


async def record_trip(
    tracker: TripTracker,
    gps: AsyncGPSClient,
    vehicle_id: str,
    metadata: TripMetadata,
    duration: float,
    max_fixes: int = 0,
    confirm_implausible: bool = False,
) -> TripResult:
    """
    Record a live trip for duration seconds (or max_fixes fixes) and save it.
    """
    started = await tracker.start(vehicle_id)
    if not started.ok:
        return started

    async def _consume() -> None:
        count = 0
        async for fix in gps.stream_fixes():
            tracker.on_fix(fix)
            count += 1
            if max_fixes and count >= max_fixes:
                break

    try:
        await asyncio.wait_for(_consume(), timeout=duration)
    except asyncio.TimeoutError:
        logger.debug("Recording window of %.1fs elapsed", duration)
    finally:
        await gps.stop()

    if tracker.state is not TripState.RECORDING:
        return TripResult(state=tracker.state, message="Recording ended unexpectedly.")
    return await _finish(tracker, metadata, confirm_implausible)
