"""FleetTrack apps - wiring of config, stores, location providers and the tracker."""
