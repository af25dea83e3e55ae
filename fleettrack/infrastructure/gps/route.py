"""Route post-processing: display smoothing and straight-line capture detection."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Union

from ...domain.models import FilteredPoint

logger = logging.getLogger(__name__)

Coordinate = tuple[float, float]


def _as_coordinate(point: Union[FilteredPoint, Coordinate]) -> Coordinate:
    if isinstance(point, FilteredPoint):
        return (point.latitude, point.longitude)
    lat, lng = point
    return (float(lat), float(lng))


def smooth_path(points: Sequence[Union[FilteredPoint, Coordinate]]) -> list[Coordinate]:
    """
    Insert a linear midpoint between every consecutive pair of points.

    For drawing only: the result is a throwaway projection and must not
    be used for distance. Original points keep their order.

    Args:
        points: Track points or (lat, lng) tuples

    Returns:
        New list of (lat, lng) tuples
    """
    coords = [_as_coordinate(p) for p in points]
    if len(coords) < 2:
        return coords

    smoothed: list[Coordinate] = [coords[0]]
    for (lat1, lng1), (lat2, lng2) in zip(coords, coords[1:]):
        smoothed.append(((lat1 + lat2) / 2.0, (lng1 + lng2) / 2.0))
        smoothed.append((lat2, lng2))
    return smoothed


@dataclass(frozen=True)
class RouteAssessment:
    """Outcome of the road-following check."""

    plausible: bool
    direction_changes: int
    insufficient_data: bool = False

    @property
    def message(self) -> str:
        if self.insufficient_data:
            return "Not enough points to judge the route shape."
        if self.plausible:
            return f"Route looks road-like ({self.direction_changes} direction changes)."
        return (
            "The captured route is an almost perfectly straight line "
            f"({self.direction_changes} direction changes). GPS may not have been "
            "moving or fixes may be synthetic. Save anyway or discard?"
        )


@dataclass(frozen=True)
class RoadFollowingHeuristic:
    """
    Flags finished tracks whose heading barely varies.

    Real driving turns. A track with fewer than min_direction_changes
    heading swings is likely a bad or incomplete capture.
    """

    min_points: int = 10
    turn_threshold_deg: float = 20.0
    wrap_threshold_deg: float = 340.0
    min_direction_changes: int = 2

    def count_direction_changes(self, points: Sequence[FilteredPoint]) -> int:
        headings = [p.heading for p in points if p.heading is not None]
        changes = 0
        for prev, cur in zip(headings, headings[1:]):
            delta = abs(cur - prev)
            # Deltas near 360 are wraparound across north, not turns
            if self.turn_threshold_deg < delta < self.wrap_threshold_deg:
                changes += 1
        return changes

    def assess(self, points: Sequence[FilteredPoint]) -> RouteAssessment:
        """
        Judge whether a completed track looks like it followed roads.

        Args:
            points: Completed track, oldest first

        Returns:
            RouteAssessment; plausible when data is insufficient
        """
        if len(points) < self.min_points:
            return RouteAssessment(plausible=True, direction_changes=0, insufficient_data=True)

        changes = self.count_direction_changes(points)
        plausible = changes >= self.min_direction_changes
        if not plausible:
            logger.info("Route flagged as straight line: %d direction changes over %d points", changes, len(points))
        return RouteAssessment(plausible=plausible, direction_changes=changes)
