"""Async gpsd location provider with auto-reconnect and a simulated drive."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import AsyncIterator, Callable, Optional

from ...domain.models import LocationFix

logger = logging.getLogger(__name__)


@dataclass
class GPSClientConfig:
    """GPS daemon connection configuration."""

    host: str = "localhost"
    port: int = 2947
    reconnect_delay: float = 5.0
    timeout: float = 10.0
    max_reconnect_attempts: int = 0  # 0 = infinite


@dataclass
class GPSState:
    """Internal GPS state tracking."""

    connected: bool = False
    fix_count: int = 0
    error_count: int = 0
    last_fix: Optional[datetime] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class AsyncGPSClient:
    """
    Async gpsd client with auto-reconnect.

    Fixes are delivered in arrival order, both to registered callbacks
    and to consumers of stream_fixes().

    Usage:
        client = AsyncGPSClient()

        async for fix in client.stream_fixes():
            tracker.on_fix(fix)
    """

    def __init__(self, config: GPSClientConfig | None = None) -> None:
        self.config = config or GPSClientConfig()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._running = False
        self._fix: Optional[LocationFix] = None
        self._callbacks: list[Callable[[LocationFix], None]] = []
        self._state = GPSState()
        self._reconnect_attempts = 0

    @property
    def last_fix(self) -> Optional[LocationFix]:
        """Get last received fix."""
        return self._fix

    @property
    def is_connected(self) -> bool:
        return self._state.connected

    @property
    def state(self) -> GPSState:
        """Get internal state for diagnostics."""
        return self._state

    def on_fix(self, callback: Callable[[LocationFix], None]) -> None:
        """Register callback for fix updates."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[LocationFix], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _publish(self, fix: LocationFix) -> None:
        self._fix = fix
        self._state.fix_count += 1
        self._state.last_fix = datetime.now(UTC)
        for cb in self._callbacks:
            try:
                cb(fix)
            except Exception as e:
                logger.error("GPS callback error: %s", e)

    async def connect(self) -> bool:
        """
        Connect to gpsd daemon.

        Returns:
            True if connected successfully, False otherwise.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.port),
                timeout=self.config.timeout,
            )

            # Enable JSON streaming mode
            self._writer.write(b'?WATCH={"enable":true,"json":true}\n')
            await self._writer.drain()

            self._state.connected = True
            self._reconnect_attempts = 0
            logger.info("Connected to gpsd at %s:%d", self.config.host, self.config.port)
            return True

        except asyncio.TimeoutError:
            logger.warning("GPS connection timeout to %s:%d", self.config.host, self.config.port)
            self._state.error_count += 1
            return False

        except OSError as e:
            logger.warning("GPS connection failed: %s - is gpsd running?", e)
            self._state.error_count += 1
            return False

    async def disconnect(self) -> None:
        """Disconnect from gpsd gracefully."""
        if self._writer:
            try:
                self._writer.write(b'?WATCH={"enable":false}\n')
                await self._writer.drain()
                self._writer.close()
                await self._writer.wait_closed()
            except OSError as e:
                logger.debug("GPS disconnect error ignored: %s", e)

        self._reader = None
        self._writer = None
        self._state.connected = False

    async def stream_fixes(self) -> AsyncIterator[LocationFix]:
        """
        Async generator that yields fixes as they arrive.

        Handles reconnection automatically. Stops when stop() is called
        or max_reconnect_attempts is reached.
        """
        self._running = True

        while self._running:
            if not self._reader:
                if not await self.connect():
                    self._reconnect_attempts += 1

                    if (
                        self.config.max_reconnect_attempts > 0
                        and self._reconnect_attempts >= self.config.max_reconnect_attempts
                    ):
                        logger.error("GPS max reconnect attempts reached, stopping")
                        break

                    await asyncio.sleep(self.config.reconnect_delay)
                    continue

            try:
                line = await asyncio.wait_for(
                    self._reader.readline(),  # type: ignore[union-attr]
                    timeout=self.config.timeout,
                )

                if not line:
                    raise ConnectionError("GPS connection closed by server")

                data = json.loads(line.decode("utf-8"))

                if data.get("class") == "TPV":
                    fix = self.parse_tpv(data)
                    if fix:
                        self._publish(fix)
                        yield fix

            except asyncio.TimeoutError:
                logger.debug("GPS read timeout, connection still alive")

            except json.JSONDecodeError as e:
                logger.warning("GPS JSON parse error: %s", e)

            except (ConnectionError, OSError) as e:
                logger.warning("GPS stream error: %s, reconnecting...", e)
                self._state.error_count += 1
                await self.disconnect()
                await asyncio.sleep(self.config.reconnect_delay)

    @staticmethod
    def parse_tpv(data: dict) -> Optional[LocationFix]:
        """
        Parse TPV (Time-Position-Velocity) message from gpsd.

        eph (estimated horizontal error, metres) becomes the accuracy and
        track becomes the heading.

        Returns:
            LocationFix if a 2D/3D fix with lat/lon is present, None otherwise
        """
        if "lat" not in data or "lon" not in data:
            return None

        # Mode: 0=unknown, 1=no fix, 2=2D, 3=3D
        if data.get("mode", 0) < 2:
            return None

        try:
            timestamp = _now_ms()
            if data.get("time"):
                parsed = datetime.fromisoformat(str(data["time"]).replace("Z", "+00:00"))
                timestamp = int(parsed.timestamp() * 1000)

            heading = data.get("track")
            return LocationFix(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                timestamp=timestamp,
                accuracy=data.get("eph"),
                speed=data.get("speed"),
                heading=float(heading) % 360 if heading is not None else None,
            )

        except (KeyError, ValueError, TypeError) as e:
            logger.error("TPV parse error: %s - data: %s", e, data)
            return None

    async def get_fix_once(self, timeout: float = 30.0) -> Optional[LocationFix]:
        """
        Wait for a single fix and disconnect.

        Returns:
            LocationFix if obtained within timeout, None otherwise
        """
        try:
            async with asyncio.timeout(timeout):
                async for fix in self.stream_fixes():
                    await self.stop()
                    return fix
        except asyncio.TimeoutError:
            logger.warning("GPS single fix timeout after %.1fs", timeout)
            await self.stop()
            return None

        return None

    async def stop(self) -> None:
        """Stop streaming and disconnect."""
        self._running = False
        await self.disconnect()


class MockGPSClient(AsyncGPSClient):
    """
    Simulated location provider for development and tests.

    Drives in a circle of ~22 m radius at ~35 km/h, turning 25 degrees
    per fix.
    """

    def __init__(
        self,
        start_lat: float = 40.4168,
        start_lon: float = -3.7038,
        interval: float = 1.0,
        accuracy: float = 1.0,
    ) -> None:
        super().__init__()
        self._start_lat = start_lat
        self._start_lon = start_lon
        self._interval = interval
        self._accuracy = accuracy
        self._step = 0

    async def connect(self) -> bool:
        """Mock always connects."""
        self._state.connected = True
        logger.info("Mock GPS connected (simulated)")
        return True

    async def stream_fixes(self) -> AsyncIterator[LocationFix]:
        self._running = True
        started_ms = _now_ms()
        radius = 0.0002

        while self._running:
            angle = math.radians(self._step * 25)
            fix = LocationFix(
                latitude=self._start_lat + radius * math.sin(angle),
                longitude=self._start_lon + radius * math.cos(angle),
                # Synthetic clock keeps fixes one second apart regardless of interval
                timestamp=started_ms + self._step * 1000,
                accuracy=self._accuracy,
                speed=9.7,
                heading=float(-self._step * 25 % 360),
            )
            self._step += 1
            self._publish(fix)
            yield fix
            await asyncio.sleep(self._interval)
