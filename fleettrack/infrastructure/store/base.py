"""Record store contract used by the lease manager and trip tracker."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ...domain.models import Trip, VehicleRecord

# Fields a caller may never overwrite through a partial update
PROTECTED_FIELDS = frozenset({"vehicle_id"})


class StoreUnavailable(Exception):
    """A read or write against the shared store failed; remote state is unknown."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"store unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


@runtime_checkable
class VehicleStore(Protocol):
    """
    Shared document store holding vehicle records and trips.

    Implementations raise StoreUnavailable for every I/O failure and for
    documents that do not validate as VehicleRecord.
    """

    async def read_vehicle(self, vehicle_id: str) -> VehicleRecord | None:
        """Latest visible vehicle record, or None if it does not exist."""
        ...

    async def write_vehicle(self, vehicle_id: str, fields: dict[str, Any]) -> None:
        """Partial update; fields not included are left untouched."""
        ...

    async def compare_and_write_vehicle(
        self,
        vehicle_id: str,
        expected: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        """Atomically apply fields only if every expected field matches."""
        ...

    async def append_trip(self, trip: Trip) -> str:
        """Persist a finished trip and return its id."""
        ...


def check_fields(fields: dict[str, Any]) -> None:
    protected = PROTECTED_FIELDS.intersection(fields)
    if protected:
        raise ValueError(f"cannot overwrite protected fields: {sorted(protected)}")


def matches_expected(doc: dict[str, Any], expected: dict[str, Any]) -> bool:
    """
    Compare a stored document against expected values.

    A key missing from the document compares as the VehicleRecord default,
    so a document with no lease fields counts as free.
    """
    fields = VehicleRecord.model_fields
    for key, value in expected.items():
        if key in doc:
            current = doc[key]
        elif key in fields and not fields[key].is_required():
            current = fields[key].get_default(call_default_factory=True)
        else:
            return False
        if current != value:
            return False
    return True
