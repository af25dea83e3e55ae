"""GPS infrastructure - fix filtering, distance, route checks and gpsd client."""

from .distance import DistanceAccumulator, great_circle_km
from .gpsd_client import AsyncGPSClient, GPSClientConfig, MockGPSClient
from .route import RoadFollowingHeuristic, RouteAssessment, smooth_path
from .smoothing import SmoothingFilter
from .validator import PointValidator

__all__ = [
    "AsyncGPSClient",
    "DistanceAccumulator",
    "GPSClientConfig",
    "MockGPSClient",
    "PointValidator",
    "RoadFollowingHeuristic",
    "RouteAssessment",
    "SmoothingFilter",
    "great_circle_km",
    "smooth_path",
]
