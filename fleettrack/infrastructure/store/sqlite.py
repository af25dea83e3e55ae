"""
Async SQLite Vehicle Store
==========================

Shared record store backed by aiosqlite. Vehicle records and trips are
kept as JSON documents so unknown fields survive partial updates.

Usage:
    store = SqliteVehicleStore("data/fleettrack.db")
    await store.init_schema()

    record = await store.read_vehicle("VAN-01")
    await store.write_vehicle("VAN-01", {"held": True, "holder": "ana@example.com"})
    trip_id = await store.append_trip(trip)
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import ValidationError

from ...domain.models import Trip, VehicleRecord
from .base import StoreUnavailable, check_fields, matches_expected
from .schema import STORE_SCHEMA

logger = logging.getLogger(__name__)


class SqliteVehicleStore:
    """
    Async VehicleStore on a local SQLite file.

    Each operation opens its own connection. Updates run inside
    BEGIN IMMEDIATE transactions, so compare_and_write_vehicle is atomic
    across processes sharing the file.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._initialized = False

    async def init_schema(self) -> None:
        """Initialize database schema. Must be called after creation."""
        async with self._guard("init_schema"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self._get_connection() as conn:
                await conn.executescript(STORE_SCHEMA)
        self._initialized = True
        logger.info("Vehicle store initialized: %s", self.db_path)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get async database connection in autocommit mode with row factory."""
        conn = await aiosqlite.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._get_connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (aiosqlite.Error, OSError) as exc:
            logger.error("Store %s failed: %s", operation, exc)
            raise StoreUnavailable(operation, str(exc)) from exc

    async def close(self) -> None:
        """Connections are per-operation; kept for interface symmetry."""
        logger.debug("Vehicle store closed")

    # =========================================================================
    # Vehicles
    # =========================================================================

    @staticmethod
    def _load_document(vehicle_id: str, raw: str) -> dict[str, Any]:
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreUnavailable("read_vehicle", f"corrupt document for {vehicle_id}") from exc
        if not isinstance(doc, dict):
            raise StoreUnavailable("read_vehicle", f"document for {vehicle_id} is not an object")
        return doc

    async def _fetch_document(self, conn: aiosqlite.Connection, vehicle_id: str) -> dict[str, Any] | None:
        cursor = await conn.execute(
            "SELECT document FROM vehicles WHERE vehicle_id = ?",
            (vehicle_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._load_document(vehicle_id, row["document"])

    async def _store_document(self, conn: aiosqlite.Connection, vehicle_id: str, doc: dict[str, Any]) -> None:
        await conn.execute(
            """
            INSERT INTO vehicles (vehicle_id, document, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(vehicle_id) DO UPDATE SET
                document = excluded.document,
                updated_at = excluded.updated_at
            """,
            (vehicle_id, json.dumps(doc), datetime.now(UTC).isoformat()),
        )

    async def put_vehicle(self, record: VehicleRecord) -> None:
        """Insert or replace a whole vehicle document."""
        async with self._guard("put_vehicle"):
            async with self._transaction() as conn:
                await self._store_document(conn, record.vehicle_id, record.model_dump(exclude_none=False))

    async def read_vehicle(self, vehicle_id: str) -> VehicleRecord | None:
        async with self._guard("read_vehicle"):
            async with self._get_connection() as conn:
                doc = await self._fetch_document(conn, vehicle_id)
        if doc is None:
            return None
        try:
            return VehicleRecord.model_validate({**doc, "vehicle_id": vehicle_id})
        except ValidationError as exc:
            raise StoreUnavailable("read_vehicle", f"malformed vehicle {vehicle_id}: {exc}") from exc

    async def write_vehicle(self, vehicle_id: str, fields: dict[str, Any]) -> None:
        check_fields(fields)
        async with self._guard("write_vehicle"):
            async with self._transaction() as conn:
                doc = await self._fetch_document(conn, vehicle_id)
                if doc is None:
                    raise StoreUnavailable("write_vehicle", f"vehicle {vehicle_id} not found")
                doc.update(fields)
                await self._store_document(conn, vehicle_id, doc)

    async def compare_and_write_vehicle(
        self,
        vehicle_id: str,
        expected: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        check_fields(fields)
        async with self._guard("compare_and_write_vehicle"):
            async with self._transaction() as conn:
                doc = await self._fetch_document(conn, vehicle_id)
                if doc is None:
                    return False
                if not matches_expected(doc, expected):
                    return False
                doc.update(fields)
                await self._store_document(conn, vehicle_id, doc)
                return True

    # =========================================================================
    # Trips
    # =========================================================================

    async def append_trip(self, trip: Trip) -> str:
        trip_id = uuid.uuid4().hex
        async with self._guard("append_trip"):
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO trips (
                        trip_id, vehicle_id, operator, started_at, ended_at,
                        distance_km, document, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        trip_id,
                        trip.vehicle_id,
                        trip.operator,
                        trip.started_at.isoformat(),
                        trip.ended_at.isoformat(),
                        trip.distance_km,
                        json.dumps(trip.to_document()),
                        datetime.now(UTC).isoformat(),
                    ),
                )
        logger.info("Trip %s stored for vehicle %s (%.2f km)", trip_id, trip.vehicle_id, trip.distance_km)
        return trip_id

    async def get_trip(self, trip_id: str) -> Trip | None:
        async with self._guard("get_trip"):
            async with self._get_connection() as conn:
                cursor = await conn.execute("SELECT document FROM trips WHERE trip_id = ?", (trip_id,))
                row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return Trip.model_validate_json(row["document"])
        except ValidationError as exc:
            raise StoreUnavailable("get_trip", f"malformed trip {trip_id}: {exc}") from exc

    async def list_trips(self, vehicle_id: str | None = None, limit: int = 100) -> list[dict]:
        """Trip summaries, newest first."""
        query = "SELECT trip_id, vehicle_id, operator, started_at, ended_at, distance_km FROM trips"
        params: tuple[Any, ...] = ()
        if vehicle_id is not None:
            query += " WHERE vehicle_id = ?"
            params = (vehicle_id,)
        query += " ORDER BY started_at DESC LIMIT ?"
        async with self._guard("list_trips"):
            async with self._get_connection() as conn:
                cursor = await conn.execute(query, (*params, limit))
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]
