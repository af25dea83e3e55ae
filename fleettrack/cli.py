from __future__ import annotations

import asyncio
import importlib.metadata as md
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .apps.recorder import build_gps_client, build_store, build_tracker, read_fixes_csv, record_trip, replay_trip
from .config import FleetTrackConfig, StoreBackend, configure_logging, load_config, resolve_config_path
from .core.lease import LeaseResult, VehicleLeaseManager
from .core.tracker import TripFailure, TripResult, TripState, TripTracker
from .domain.models import TripMetadata, VehicleRecord
from .infrastructure.store.base import StoreUnavailable
from .infrastructure.store.sqlite import SqliteVehicleStore

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="FleetTrack CLI")
console = Console()

T = TypeVar("T")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to fleettrack.yml")


def _load(config_path: Optional[Path]) -> FleetTrackConfig:
    if config_path is not None and not config_path.expanduser().exists():
        console.print(f"[red]Config not found:[/red] {config_path}")
        raise typer.Exit(code=2)
    resolved = resolve_config_path(config_path)
    if resolved.exists():
        try:
            cfg = load_config(resolved)
        except ValueError as exc:
            console.print(f"[red]Config validation failed:[/red] {exc}")
            raise typer.Exit(code=2) from exc
    else:
        cfg = FleetTrackConfig()
    configure_logging(cfg.logging)
    return cfg


def _holder(cfg: FleetTrackConfig, holder: Optional[str]) -> str:
    identity = (holder or cfg.operator or "").strip()
    if not identity:
        console.print("[red]No operator identity:[/red] pass --holder or set `operator` in the config")
        raise typer.Exit(code=2)
    return identity


def _run_store(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except StoreUnavailable as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        console.print("Check that the store is reachable and writable, then retry.")
        raise typer.Exit(code=1) from exc


def _print_lease(result: LeaseResult) -> None:
    color = "green" if result.ok else "yellow"
    line = f"[{color}]{result.outcome.value}[/{color}] {result.vehicle_id}"
    if result.holder:
        line += f" (holder: {result.holder})"
    console.print(line)
    if result.message:
        console.print(result.message)


def _print_trip_result(result: TripResult) -> None:
    if result.ok:
        console.print(f"[green]{result.message}[/green]")
        if result.trip is not None:
            trip = result.trip
            table = Table(show_header=False)
            table.add_row("trip id", result.trip_id or "-")
            table.add_row("vehicle", trip.vehicle_id)
            table.add_row("operator", trip.operator)
            table.add_row("points", str(len(trip.points)))
            table.add_row("distance", f"{trip.distance_km:.3f} km")
            table.add_row("odometer", f"{trip.start_odometer} -> {trip.end_odometer}")
            table.add_row("fuel", trip.fuel_level)
            table.add_row("observations", trip.observations)
            console.print(table)
    else:
        console.print(f"[red]{result.failure.value if result.failure else 'failed'}:[/red] {result.message}")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


async def _discard_if_stopped(tracker: TripTracker) -> None:
    # A one-shot process must not leave the lease behind
    if tracker.state is TripState.STOPPED:
        cancelled = await tracker.cancel()
        if cancelled.ok:
            console.print("Trip discarded and vehicle released.")
        else:
            _print_trip_result(cancelled)


@app.command()
def version() -> None:
    """Print version information."""
    try:
        dist_version = md.version("fleettrack")
    except md.PackageNotFoundError:
        from . import __version__

        dist_version = __version__
    console.print(f"fleettrack {dist_version}")


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/fleettrack.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except (OSError, ValueError) as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK.")
    console.print(f"- store: {cfg.store.backend.value} ({cfg.store.db_path})")
    console.print(f"- log file: {cfg.log_file or 'console only'}")
    console.print(f"- max accuracy: {cfg.tracking.max_accuracy_m} m, max speed: {cfg.tracking.max_speed_kmh} km/h")
    console.print(f"- atomic leases: {cfg.lease.atomic}")


@app.command(name="seed-vehicle")
def seed_vehicle(
    vehicle_id: str = typer.Argument(...),
    odometer: int = typer.Option(0, "--odometer", min=0),
    fuel: str = typer.Option("1/2", "--fuel"),
    plate: Optional[str] = typer.Option(None, "--plate"),
    model: Optional[str] = typer.Option(None, "--model"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Create or replace a vehicle record in the SQLite store."""
    cfg = _load(config)

    async def _run() -> None:
        store = await build_store(cfg)
        record = VehicleRecord(vehicle_id=vehicle_id, odometer=odometer, fuel_level=fuel, plate=plate, model=model)
        await store.put_vehicle(record)  # type: ignore[attr-defined]

    _run_store(_run())
    console.print(f"Vehicle {vehicle_id} stored (odometer {odometer} km, fuel {fuel})")


@app.command(name="lease-status")
def lease_status(vehicle_id: str = typer.Argument(...), config: Optional[Path] = ConfigOption) -> None:
    """Show who currently holds a vehicle."""
    cfg = _load(config)

    async def _run() -> VehicleRecord | None:
        store = await build_store(cfg)
        return await store.read_vehicle(vehicle_id)

    record = _run_store(_run())
    if record is None:
        console.print(f"[yellow]Vehicle {vehicle_id} not found[/yellow]")
        raise typer.Exit(code=1)
    if record.held:
        console.print(f"{vehicle_id}: in use by {record.holder}")
    else:
        console.print(f"{vehicle_id}: free")
    console.print(f"odometer {record.odometer} km, fuel {record.fuel_level or '-'}")


@app.command()
def acquire(
    vehicle_id: str = typer.Argument(...),
    holder: Optional[str] = typer.Option(None, "--holder"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Reserve a vehicle."""
    cfg = _load(config)
    identity = _holder(cfg, holder)

    async def _run() -> LeaseResult:
        store = await build_store(cfg)
        return await VehicleLeaseManager(store, atomic=cfg.lease.atomic).acquire(vehicle_id, identity)

    result = _run_store(_run())
    _print_lease(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def release(
    vehicle_id: str = typer.Argument(...),
    holder: Optional[str] = typer.Option(None, "--holder"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Give up a vehicle you hold."""
    cfg = _load(config)
    identity = _holder(cfg, holder)

    async def _run() -> LeaseResult:
        store = await build_store(cfg)
        return await VehicleLeaseManager(store, atomic=cfg.lease.atomic).release(vehicle_id, identity)

    result = _run_store(_run())
    _print_lease(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command(name="force-unlock")
def force_unlock(
    vehicle_id: str = typer.Argument(...),
    operator: Optional[str] = typer.Option(None, "--operator"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Clear a lease left behind by a crashed or abandoned session."""
    cfg = _load(config)
    identity = _holder(cfg, operator)

    async def _run() -> LeaseResult:
        store = await build_store(cfg)
        return await VehicleLeaseManager(store).force_unlock(vehicle_id, identity)

    result = _run_store(_run())
    _print_lease(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def replay(
    vehicle_id: str = typer.Argument(...),
    csv_path: Path = typer.Argument(..., exists=True, dir_okay=False),
    holder: Optional[str] = typer.Option(None, "--holder"),
    fuel: Optional[str] = typer.Option(None, "--fuel"),
    observations: str = typer.Option("", "--observations"),
    force: bool = typer.Option(False, "--force", help="Save even if the route looks like a straight line"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Run a recorded CSV of fixes through a trip session and save it."""
    cfg = _load(config)
    identity = _holder(cfg, holder)
    try:
        metadata = TripMetadata(fuel_level=fuel, observations=observations)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc

    async def _run() -> TripResult:
        store = await build_store(cfg)
        tracker = build_tracker(cfg, store, identity)
        result = await replay_trip(tracker, vehicle_id, read_fixes_csv(csv_path), metadata, confirm_implausible=force)
        _print_trip_result(result)
        if result.failure is TripFailure.IMPLAUSIBLE_ROUTE:
            console.print("Re-run with --force to save it anyway.")
        if not result.ok:
            await _discard_if_stopped(tracker)
        return result

    try:
        result = _run_store(_run())
    except ValueError as exc:
        console.print(f"[red]Invalid fix data:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def record(
    vehicle_id: str = typer.Argument(...),
    holder: Optional[str] = typer.Option(None, "--holder"),
    duration: float = typer.Option(60.0, "--duration", min=1.0, help="Recording window in seconds"),
    max_fixes: int = typer.Option(0, "--max-fixes", min=0, help="Stop after N fixes (0 = no limit)"),
    fuel: Optional[str] = typer.Option(None, "--fuel"),
    observations: str = typer.Option("", "--observations"),
    force: bool = typer.Option(False, "--force"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Record a live trip from gpsd (or the simulated drive in mock mode)."""
    cfg = _load(config)
    identity = _holder(cfg, holder)
    try:
        metadata = TripMetadata(fuel_level=fuel, observations=observations)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc

    async def _run() -> TripResult:
        store = await build_store(cfg)
        tracker = build_tracker(cfg, store, identity)
        gps = build_gps_client(cfg)
        result = await record_trip(
            tracker, gps, vehicle_id, metadata, duration, max_fixes=max_fixes, confirm_implausible=force
        )
        _print_trip_result(result)
        if not result.ok:
            await _discard_if_stopped(tracker)
        return result

    result = _run_store(_run())
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def trips(
    vehicle_id: Optional[str] = typer.Option(None, "--vehicle"),
    limit: int = typer.Option(20, "--limit", min=1),
    config: Optional[Path] = ConfigOption,
) -> None:
    """List saved trips, newest first."""
    cfg = _load(config)
    if cfg.store.backend is not StoreBackend.SQLITE:
        console.print("[yellow]Trip listing needs the sqlite store backend[/yellow]")
        raise typer.Exit(code=2)

    async def _run() -> list[dict]:
        store = SqliteVehicleStore(cfg.store.db_path)
        await store.init_schema()
        return await store.list_trips(vehicle_id=vehicle_id, limit=limit)

    rows = _run_store(_run())
    if not rows:
        console.print("No trips recorded.")
        return
    table = Table(title="Trips")
    for column in ("trip id", "vehicle", "operator", "started", "distance"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row["trip_id"][:8],
            row["vehicle_id"],
            row["operator"],
            row["started_at"][:16].replace("T", " "),
            f"{row['distance_km']:.2f} km",
        )
    console.print(table)


# Click command export (entrypoint)
cli = typer.main.get_command(app)

__all__ = ["app", "cli"]

if __name__ == "__main__":
    app()
