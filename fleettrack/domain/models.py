"""FleetTrack Domain Models - Pydantic models for fixes, vehicles and trips."""

from __future__ import annotations

from datetime import datetime
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

FUEL_LEVELS: Final[tuple[str, ...]] = ("1/8", "1/4", "3/8", "1/2", "5/8", "3/4", "7/8", "1")
DEFAULT_FUEL_LEVEL: Final[str] = "1/2"


class LocationFix(BaseModel):
    """One raw reading from a location provider."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: int  # epoch milliseconds
    accuracy: float | None = Field(default=None, ge=0)  # metres
    speed: float | None = None  # m/s
    heading: float | None = Field(default=None, ge=0, le=360)  # degrees from true north

    @property
    def timestamp_s(self) -> float:
        """Epoch seconds as float."""
        return self.timestamp / 1000.0


class FilteredPoint(LocationFix):
    """A smoothed fix accepted into a trip track."""

    @classmethod
    def from_fix(cls, fix: LocationFix, latitude: float, longitude: float) -> FilteredPoint:
        """Build a point from a raw fix and its smoothed coordinates."""
        return cls(
            latitude=latitude,
            longitude=longitude,
            timestamp=fix.timestamp,
            accuracy=fix.accuracy,
            speed=fix.speed,
            heading=fix.heading,
        )


class VehicleRecord(BaseModel):
    """
    Shared vehicle document.

    The lease is the (held, holder) pair on this record. Fields the
    core does not know about are preserved by the stores.
    """

    model_config = ConfigDict(extra="ignore")

    vehicle_id: str = Field(..., min_length=1)
    held: bool = False
    holder: str | None = None
    odometer: int = Field(default=0, ge=0)  # km
    fuel_level: str | None = None
    plate: str | None = None
    model: str | None = None

    @property
    def is_free(self) -> bool:
        """True when nobody holds the vehicle."""
        return not self.held

    def held_by(self, identity: str) -> bool:
        return self.held and self.holder == identity


class TripMetadata(BaseModel):
    """Operator input collected when a trip is saved."""

    fuel_level: str | None = None
    observations: str = ""
    start_odometer: int | None = Field(default=None, ge=0)

    @field_validator("fuel_level")
    @classmethod
    def _validate_fuel_level(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if value not in FUEL_LEVELS:
            raise ValueError(f"invalid fuel level: {value!r} (expected one of {', '.join(FUEL_LEVELS)})")
        return value


class Trip(BaseModel):
    """Finished, persisted record of one recording session."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    operator: str
    started_at: datetime
    ended_at: datetime
    start_odometer: int = Field(..., ge=0)
    end_odometer: int = Field(..., ge=0)
    fuel_level: str
    observations: str = ""
    points: tuple[FilteredPoint, ...] = ()
    distance_km: float = Field(..., ge=0)
    plausible_route: bool = True

    @property
    def duration_seconds(self) -> float:
        """Trip duration in seconds."""
        return max(0.0, (self.ended_at - self.started_at).total_seconds())

    @property
    def average_speed_kmh(self) -> float | None:
        """Average speed over the whole trip, None for zero-length trips."""
        hours = self.duration_seconds / 3600.0
        if hours <= 0:
            return None
        return self.distance_km / hours

    def to_document(self) -> dict:
        """Export as a JSON-compatible document for the store."""
        return self.model_dump(mode="json")
