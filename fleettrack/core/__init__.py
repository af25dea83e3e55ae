"""FleetTrack Core - vehicle leasing and the trip recording state machine."""

from .lease import LeaseOutcome, LeaseResult, VehicleLeaseManager
from .tracker import (
    InvalidTransition,
    TripFailure,
    TripResult,
    TripSession,
    TripState,
    TripTracker,
)

__all__ = [
    "InvalidTransition",
    "LeaseOutcome",
    "LeaseResult",
    "TripFailure",
    "TripResult",
    "TripSession",
    "TripState",
    "TripTracker",
    "VehicleLeaseManager",
]
