"""SQLite schema for the shared vehicle/trip store."""

STORE_SCHEMA = """
-- Vehicles: one JSON document per vehicle, lease fields included
CREATE TABLE IF NOT EXISTS vehicles (
    vehicle_id TEXT PRIMARY KEY,
    document TEXT NOT NULL,          -- JSON object
    updated_at TEXT NOT NULL
);

-- Trips: append-only travel log
CREATE TABLE IF NOT EXISTS trips (
    trip_id TEXT PRIMARY KEY,
    vehicle_id TEXT NOT NULL,
    operator TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT NOT NULL,
    distance_km REAL NOT NULL DEFAULT 0,
    document TEXT NOT NULL,          -- full Trip as JSON, points included
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trips_vehicle ON trips(vehicle_id);
CREATE INDEX IF NOT EXISTS idx_trips_started ON trips(started_at);
"""
