"""Simplified Kalman-style smoothing of GPS coordinates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class SmoothingFilter:
    """
    One-dimensional recursive filter applied to latitude and longitude.

    The gain trusts precise fixes (k close to 1) and damps imprecise ones.
    There is no velocity model and no process noise. A low variance
    lightly damps jitter without lagging far behind real motion.

    Usage:
        f = SmoothingFilter()
        lat, lng = f.filter(fix.latitude, fix.longitude, fix.accuracy)
    """

    variance: float = 1.0
    default_accuracy_m: float = 10.0
    last_lat: Optional[float] = None
    last_lng: Optional[float] = None

    def filter(self, lat: float, lng: float, accuracy: Optional[float] = None) -> tuple[float, float]:
        """
        Blend a new measurement into the current estimate.

        Args:
            lat: Measured latitude (degrees)
            lng: Measured longitude (degrees)
            accuracy: Horizontal accuracy in metres, default_accuracy_m if unknown

        Returns:
            Smoothed (latitude, longitude)
        """
        if self.last_lat is None or self.last_lng is None:
            self.last_lat = lat
            self.last_lng = lng
            return lat, lng

        if accuracy is None:
            accuracy = self.default_accuracy_m

        k = self.gain(accuracy)
        self.last_lat = self.last_lat + k * (lat - self.last_lat)
        self.last_lng = self.last_lng + k * (lng - self.last_lng)
        return self.last_lat, self.last_lng

    def gain(self, accuracy: float) -> float:
        return min(1.0, self.variance / (self.variance + accuracy * accuracy))

    @property
    def primed(self) -> bool:
        """True once the filter holds an estimate."""
        return self.last_lat is not None

    def reset(self) -> None:
        """Forget the current estimate."""
        self.last_lat = None
        self.last_lng = None
