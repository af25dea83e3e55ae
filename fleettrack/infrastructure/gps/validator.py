"""Plausibility checks for incoming location fixes."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ...domain.models import FilteredPoint, LocationFix
from .distance import great_circle_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointValidator:
    """
    Rejects fixes that are too imprecise or physically implausible.

    Rules are applied in order and the first match wins, so the result
    only depends on the candidate and the last accepted point.
    """

    max_accuracy_m: float = 30.0
    max_speed_kmh: float = 150.0
    min_movement_km: float = 0.001
    stationary_after_s: float = 1.0

    def is_valid(self, candidate: LocationFix, history: Sequence[FilteredPoint]) -> bool:
        """
        Check a candidate fix against the accepted track.

        Args:
            candidate: Fix to check (already smoothed when called by the tracker)
            history: Accepted points, oldest first

        Returns:
            True if the fix should be appended to the track
        """
        if not history:
            return True

        if candidate.accuracy is not None and candidate.accuracy > self.max_accuracy_m:
            logger.debug("Fix rejected: accuracy %.1fm > %.1fm", candidate.accuracy, self.max_accuracy_m)
            return False

        last = history[-1]
        dt = (candidate.timestamp - last.timestamp) / 1000.0
        if dt <= 0:
            logger.debug("Fix rejected: non-increasing timestamp (dt=%.3fs)", dt)
            return False

        distance = great_circle_km(last.latitude, last.longitude, candidate.latitude, candidate.longitude)
        speed_kmh = distance / dt * 3600
        if speed_kmh > self.max_speed_kmh:
            logger.debug("Fix rejected: implied speed %.1f km/h", speed_kmh)
            return False

        # Stationary jitter would inflate the point count without adding signal
        if distance < self.min_movement_km and dt > self.stationary_after_s:
            logger.debug("Fix rejected: stationary (%.1fm in %.1fs)", distance * 1000, dt)
            return False

        return True
