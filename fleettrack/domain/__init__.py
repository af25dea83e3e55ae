"""FleetTrack Domain Layer - Core records and enums."""

from .models import (
    DEFAULT_FUEL_LEVEL,
    FUEL_LEVELS,
    FilteredPoint,
    LocationFix,
    Trip,
    TripMetadata,
    VehicleRecord,
)

__all__ = [
    "DEFAULT_FUEL_LEVEL",
    "FUEL_LEVELS",
    "FilteredPoint",
    "LocationFix",
    "Trip",
    "TripMetadata",
    "VehicleRecord",
]
