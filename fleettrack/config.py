from __future__ import annotations

import logging
import os
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


class StoreBackend(str, Enum):
    SQLITE = "sqlite"
    MEMORY = "memory"


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    base_dir: Path | None = Field(Path("logs"))
    file_name: str = Field("fleettrack.log")
    max_bytes: int = Field(5 * 1024 * 1024, ge=1024)
    backup_count: int = Field(5, ge=0, le=100)

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return value

    @field_validator("base_dir")
    @classmethod
    def _expand_base_dir(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


class TrackingConfig(BaseModel):
    """Fix filtering thresholds, tuned for airport ground vehicles."""

    max_accuracy_m: float = Field(30.0, gt=0)
    max_speed_kmh: float = Field(150.0, gt=0)
    min_movement_km: float = Field(0.001, ge=0)
    stationary_after_s: float = Field(1.0, ge=0)
    filter_variance: float = Field(1.0, gt=0)
    default_accuracy_m: float = Field(10.0, ge=0)
    min_points: int = Field(2, ge=2)


class RouteCheckConfig(BaseModel):
    min_points: int = Field(10, ge=2)
    turn_threshold_deg: float = Field(20.0, gt=0, lt=180)
    wrap_threshold_deg: float = Field(340.0, gt=180, le=360)
    min_direction_changes: int = Field(2, ge=0)


class LeaseConfig(BaseModel):
    atomic: bool = Field(False)  # conditional-write acquisition


class StoreConfig(BaseModel):
    backend: StoreBackend = Field(StoreBackend.SQLITE)
    db_path: Path = Field(Path("data/fleettrack.db"))

    @field_validator("db_path")
    @classmethod
    def _expand_db_path(cls, value: Path) -> Path:
        return value.expanduser()


class GPSConfig(BaseModel):
    """GPS daemon configuration."""

    host: str = Field("localhost")
    port: int = Field(2947, ge=1, le=65535)
    timeout: float = Field(10.0, ge=1.0)
    reconnect_delay: float = Field(5.0, ge=0.1)
    mock_mode: bool = Field(False)  # Use simulated drive
    mock_lat: float = Field(40.4168, ge=-90, le=90)
    mock_lon: float = Field(-3.7038, ge=-180, le=180)
    mock_interval: float = Field(1.0, ge=0.0)


class FleetTrackConfig(BaseModel):
    operator: str | None = Field(None)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    route_check: RouteCheckConfig = Field(default_factory=RouteCheckConfig)
    lease: LeaseConfig = Field(default_factory=LeaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    gps: GPSConfig = Field(default_factory=GPSConfig)

    @field_validator("operator")
    @classmethod
    def _strip_operator(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        return value or None

    @property
    def log_file(self) -> Path | None:
        if self.logging.base_dir is None:
            return None
        return self.logging.base_dir / self.logging.file_name


def load_config(path: Path) -> FleetTrackConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config root must be a mapping, got {type(raw).__name__}")
    # Operator identity may come from the environment on shared devices
    if not raw.get("operator") and os.environ.get("FLEETTRACK_OPERATOR"):
        raw["operator"] = os.environ["FLEETTRACK_OPERATOR"]
    try:
        return FleetTrackConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/fleettrack, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get("FLEETTRACK_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in [Path("/etc/fleettrack/fleettrack.yml"), Path("configs/fleettrack.yml")]:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # Fallback to first candidate even if not exists to surface errors consistently
    return candidates[0] if candidates else Path("configs/fleettrack.yml").resolve()


def configure_logging(cfg: LoggingConfig) -> None:
    """Console logging plus a rotating file under base_dir when set."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.base_dir is not None:
        cfg.base_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                cfg.base_dir / cfg.file_name,
                maxBytes=cfg.max_bytes,
                backupCount=cfg.backup_count,
                encoding="utf-8",
            )
        )
    logging.basicConfig(
        level=getattr(logging, cfg.level),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )
