"""FleetTrack infrastructure - location providers and record stores."""
