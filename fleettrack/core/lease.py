"""
FleetTrack Vehicle Leases
=========================

Best-effort exclusive use of a vehicle, stored as two fields
(``held``, ``holder``) on the shared vehicle record.

The default protocol is read-then-write. Two devices can both read
``held == False`` before either writes and both believe they hold the
lease. With ``atomic=True`` acquisition goes through the store's
conditional write instead, which closes that window.

There is no expiry: a device that dies while holding a lease leaves the
vehicle blocked until force_unlock() is called.

Usage:
    leases = VehicleLeaseManager(store)

    result = await leases.acquire("VAN-01", "ana@example.com")
    if result.outcome is LeaseOutcome.CONFLICT:
        print(result.message)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..domain.models import VehicleRecord
from ..infrastructure.store.base import StoreUnavailable, VehicleStore

logger = logging.getLogger(__name__)


class LeaseOutcome(str, Enum):
    """Result of a lease operation."""

    ACQUIRED = "acquired"
    CONFLICT = "conflict"
    RELEASED = "released"
    NOT_HELD = "not_held"
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class LeaseResult:
    """Explicit outcome of acquire/release; never raised."""

    outcome: LeaseOutcome
    vehicle_id: str
    holder: str | None = None
    record: VehicleRecord | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (LeaseOutcome.ACQUIRED, LeaseOutcome.RELEASED, LeaseOutcome.NOT_HELD)


def _unavailable(vehicle_id: str, exc: StoreUnavailable) -> LeaseResult:
    return LeaseResult(
        outcome=LeaseOutcome.STORE_UNAVAILABLE,
        vehicle_id=vehicle_id,
        message=(
            f"Could not reach the vehicle store ({exc.operation}). "
            "The vehicle may or may not be reserved; select it again to retry."
        ),
    )


class VehicleLeaseManager:
    """
    Acquires and releases vehicle leases against a VehicleStore.

    Every transition re-reads the vehicle record; nothing is cached.
    """

    def __init__(self, store: VehicleStore, atomic: bool = False) -> None:
        self.store = store
        self.atomic = atomic

    async def acquire(self, vehicle_id: str, holder: str) -> LeaseResult:
        """
        Reserve a vehicle for a holder.

        Re-acquiring a lease the holder already has succeeds without a write.

        Returns:
            ACQUIRED, CONFLICT, NOT_FOUND or STORE_UNAVAILABLE
        """
        try:
            record = await self.store.read_vehicle(vehicle_id)
            if record is None:
                logger.warning("Lease acquire: vehicle %s not found", vehicle_id)
                return LeaseResult(
                    outcome=LeaseOutcome.NOT_FOUND,
                    vehicle_id=vehicle_id,
                    message=f"Vehicle {vehicle_id} does not exist.",
                )

            if record.held_by(holder):
                logger.debug("Lease on %s already held by %s", vehicle_id, holder)
                return self._acquired(record, holder)

            if record.held:
                return self._conflict(record)

            fields = {"held": True, "holder": holder}
            if self.atomic:
                won = await self.store.compare_and_write_vehicle(vehicle_id, {"held": False}, fields)
                if not won:
                    # Lost the race or the record vanished; report what is there now
                    current = await self.store.read_vehicle(vehicle_id)
                    if current is not None and current.held_by(holder):
                        return self._acquired(current, holder)
                    if current is None:
                        return LeaseResult(
                            outcome=LeaseOutcome.NOT_FOUND,
                            vehicle_id=vehicle_id,
                            message=f"Vehicle {vehicle_id} does not exist.",
                        )
                    return self._conflict(current)
            else:
                await self.store.write_vehicle(vehicle_id, fields)

        except StoreUnavailable as exc:
            logger.error("Lease acquire on %s failed: %s", vehicle_id, exc)
            return _unavailable(vehicle_id, exc)

        logger.info("Lease on %s acquired by %s", vehicle_id, holder)
        return self._acquired(record.model_copy(update=fields), holder)

    async def release(
        self,
        vehicle_id: str,
        holder: str,
        extra_fields: dict[str, Any] | None = None,
    ) -> LeaseResult:
        """
        Give up a lease held by holder.

        Never clears a lease held by someone else. A missing record counts
        as already released. extra_fields are written in the same update.

        Returns:
            RELEASED, NOT_HELD or STORE_UNAVAILABLE
        """
        fields: dict[str, Any] = {**(extra_fields or {}), "held": False, "holder": None}
        try:
            record = await self.store.read_vehicle(vehicle_id)
            if record is None or not record.held_by(holder):
                current = record.holder if record is not None and record.held else None
                if current is not None:
                    logger.warning("Lease on %s is held by %s, not %s; leaving it", vehicle_id, current, holder)
                return LeaseResult(
                    outcome=LeaseOutcome.NOT_HELD,
                    vehicle_id=vehicle_id,
                    holder=current,
                    record=record,
                )

            if self.atomic:
                released = await self.store.compare_and_write_vehicle(
                    vehicle_id, {"held": True, "holder": holder}, fields
                )
                if not released:
                    return LeaseResult(outcome=LeaseOutcome.NOT_HELD, vehicle_id=vehicle_id)
            else:
                await self.store.write_vehicle(vehicle_id, fields)

        except StoreUnavailable as exc:
            logger.error("Lease release on %s failed: %s", vehicle_id, exc)
            return _unavailable(vehicle_id, exc)

        logger.info("Lease on %s released by %s", vehicle_id, holder)
        return LeaseResult(
            outcome=LeaseOutcome.RELEASED,
            vehicle_id=vehicle_id,
            record=record.model_copy(update=fields),
        )

    async def switch_vehicle(self, old_id: str | None, new_id: str, holder: str) -> LeaseResult:
        """Release old_id (best effort) and acquire new_id."""
        if old_id and old_id != new_id:
            released = await self.release(old_id, holder)
            if released.outcome is LeaseOutcome.STORE_UNAVAILABLE:
                logger.warning("Could not release %s while switching to %s: %s", old_id, new_id, released.message)
        return await self.acquire(new_id, holder)

    async def force_unlock(self, vehicle_id: str, operator: str) -> LeaseResult:
        """
        Administrative clear of a lease, whoever holds it.

        This is the only way out of a lease left behind by a crashed client.
        """
        try:
            record = await self.store.read_vehicle(vehicle_id)
            if record is None:
                return LeaseResult(
                    outcome=LeaseOutcome.NOT_FOUND,
                    vehicle_id=vehicle_id,
                    message=f"Vehicle {vehicle_id} does not exist.",
                )
            if not record.held:
                return LeaseResult(
                    outcome=LeaseOutcome.NOT_HELD,
                    vehicle_id=vehicle_id,
                    record=record,
                    message=f"Vehicle {vehicle_id} is already free.",
                )
            await self.store.write_vehicle(vehicle_id, {"held": False, "holder": None})
        except StoreUnavailable as exc:
            logger.error("Force unlock on %s failed: %s", vehicle_id, exc)
            return _unavailable(vehicle_id, exc)

        logger.warning("Lease on %s held by %s force-unlocked by %s", vehicle_id, record.holder, operator)
        return LeaseResult(
            outcome=LeaseOutcome.RELEASED,
            vehicle_id=vehicle_id,
            holder=record.holder,
            record=record.model_copy(update={"held": False, "holder": None}),
            message=f"Vehicle {vehicle_id} unlocked (was held by {record.holder}).",
        )

    @staticmethod
    def _acquired(record: VehicleRecord, holder: str) -> LeaseResult:
        return LeaseResult(
            outcome=LeaseOutcome.ACQUIRED,
            vehicle_id=record.vehicle_id,
            holder=holder,
            record=record,
        )

    @staticmethod
    def _conflict(record: VehicleRecord) -> LeaseResult:
        logger.warning("Lease conflict on %s: held by %s", record.vehicle_id, record.holder)
        return LeaseResult(
            outcome=LeaseOutcome.CONFLICT,
            vehicle_id=record.vehicle_id,
            holder=record.holder,
            record=record,
            message=f"Vehicle {record.vehicle_id} is already in use by {record.holder or 'another operator'}.",
        )
