"""In-process store for development and tests."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any

from pydantic import ValidationError

from ...domain.models import Trip, VehicleRecord
from .base import StoreUnavailable, check_fields, matches_expected

logger = logging.getLogger(__name__)


class InMemoryVehicleStore:
    """
    Dict-backed VehicleStore.

    Setting ``available`` to False makes every operation raise
    StoreUnavailable, which simulates a lost connection.
    """

    def __init__(self) -> None:
        self._vehicles: dict[str, dict[str, Any]] = {}
        self._trips: dict[str, dict[str, Any]] = {}
        self.available = True
        self.writes = 0

    def _check_available(self, operation: str) -> None:
        if not self.available:
            raise StoreUnavailable(operation, "in-memory store switched off")

    async def put_vehicle(self, record: VehicleRecord) -> None:
        """Insert or replace a whole vehicle document."""
        self._vehicles[record.vehicle_id] = record.model_dump()

    def put_raw_vehicle(self, vehicle_id: str, doc: dict[str, Any]) -> None:
        """Store an unvalidated document, e.g. one written by another client."""
        self._vehicles[vehicle_id] = copy.deepcopy(doc)

    def raw_vehicle(self, vehicle_id: str) -> dict[str, Any] | None:
        doc = self._vehicles.get(vehicle_id)
        return copy.deepcopy(doc) if doc is not None else None

    @property
    def trips(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._trips.values()]

    async def read_vehicle(self, vehicle_id: str) -> VehicleRecord | None:
        self._check_available("read_vehicle")
        doc = self._vehicles.get(vehicle_id)
        if doc is None:
            return None
        try:
            return VehicleRecord.model_validate({**doc, "vehicle_id": vehicle_id})
        except ValidationError as exc:
            raise StoreUnavailable("read_vehicle", f"malformed vehicle {vehicle_id}: {exc}") from exc

    async def write_vehicle(self, vehicle_id: str, fields: dict[str, Any]) -> None:
        self._check_available("write_vehicle")
        check_fields(fields)
        doc = self._vehicles.get(vehicle_id)
        if doc is None:
            raise StoreUnavailable("write_vehicle", f"vehicle {vehicle_id} not found")
        doc.update(fields)
        self.writes += 1

    async def compare_and_write_vehicle(
        self,
        vehicle_id: str,
        expected: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        self._check_available("compare_and_write_vehicle")
        check_fields(fields)
        doc = self._vehicles.get(vehicle_id)
        if doc is None:
            return False
        # No await between check and write, so this is atomic on one event loop
        if not matches_expected(doc, expected):
            return False
        doc.update(fields)
        self.writes += 1
        return True

    async def append_trip(self, trip: Trip) -> str:
        self._check_available("append_trip")
        trip_id = uuid.uuid4().hex
        self._trips[trip_id] = trip.to_document()
        logger.debug("Trip %s stored in memory", trip_id)
        return trip_id
