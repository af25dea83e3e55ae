"""FleetTrack - GPS trip recording with exclusive vehicle leases."""

__version__ = "0.1.0"
