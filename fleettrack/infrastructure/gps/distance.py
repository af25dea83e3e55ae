"""
Trip Distance Accumulator
=========================

Accumulates the distance of an accepted track segment by segment.
Uses the Haversine formula with a mean Earth radius of 6371 km.

Usage:
    acc = DistanceAccumulator()

    for prev, point in pairwise(track):
        acc.add(prev.latitude, prev.longitude, point.latitude, point.longitude)
    print(f"total: {acc.total_km:.2f}km")
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

EARTH_RADIUS_KM = 6371.0


def great_circle_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using the Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometres
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    # Float rounding near antipodes can leave [0, 1]
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


@dataclass
class DistanceAccumulator:
    """
    Running distance total for one trip.

    Strictly incremental: the total is the sum of the segments added,
    never recomputed from the track.
    """

    total_km: float = 0.0
    segments: int = 0
    _longest_km: float = field(default=0.0, repr=False)

    def add(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """
        Add the segment between two accepted points.

        Returns:
            Segment length in kilometres
        """
        distance = great_circle_km(lat1, lon1, lat2, lon2)
        self.total_km += distance
        self.segments += 1
        self._longest_km = max(self._longest_km, distance)
        return distance

    @property
    def total_meters(self) -> float:
        """Total distance in metres."""
        return self.total_km * 1000.0

    @property
    def longest_segment_km(self) -> float:
        return self._longest_km

    def reset(self) -> None:
        """Reset accumulator to initial state."""
        self.total_km = 0.0
        self.segments = 0
        self._longest_km = 0.0

    def to_dict(self) -> dict:
        """Export accumulator state as dictionary."""
        return {
            "total_km": self.total_km,
            "total_meters": self.total_meters,
            "segments": self.segments,
            "longest_segment_km": self._longest_km,
        }
