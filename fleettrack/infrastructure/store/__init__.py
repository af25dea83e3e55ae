"""Record stores - shared vehicle documents and the trip log."""

from .base import StoreUnavailable, VehicleStore
from .memory import InMemoryVehicleStore
from .schema import STORE_SCHEMA
from .sqlite import SqliteVehicleStore

__all__ = [
    "STORE_SCHEMA",
    "InMemoryVehicleStore",
    "SqliteVehicleStore",
    "StoreUnavailable",
    "VehicleStore",
]
