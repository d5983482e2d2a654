"""
In-memory domain types for a tracking session.

Plain dataclasses, no SQLModel: the session, fusion engine and decoder work on
these and the store (runtracker.db.store) maps them onto table rows.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from runtracker.tracking.geo import GeoPoint


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC copy of `value`; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SensorSource(str, Enum):
    GPS = "GPS"
    HRM = "HRM"
    FOOTPOD = "FOOTPOD"


class ActivityStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


_DATA_FIELDS = (
    "location",
    "elevation_meters",
    "heart_rate",
    "power",
    "cadence",
    "distance_meters",
    "pace_seconds_per_km",
)


@dataclass(frozen=True)
class SensorReading:
    """One timestamped observation. At least one data field must be set."""

    activity_id: str
    timestamp: datetime
    source: SensorSource
    location: Optional[GeoPoint] = None
    elevation_meters: Optional[float] = None
    heart_rate: Optional[int] = None  # bpm
    power: Optional[int] = None  # watts
    cadence: Optional[int] = None  # steps per minute
    distance_meters: Optional[float] = None
    pace_seconds_per_km: Optional[int] = None

    def __post_init__(self):
        if all(getattr(self, name) is None for name in _DATA_FIELDS):
            raise ValueError("SensorReading carries no data")


def _default_name() -> str:
    return f"Run on {utcnow():%Y-%m-%d %H:%M}"


@dataclass
class Activity:
    """
    One run. Owned by the session while tracking; the store receives a copy on
    every checkpoint.

    avg_* fields are running estimates during tracking and only become final
    after calculate_averages() runs on the full reading set at completion.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = field(default_factory=_default_name)
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    status: ActivityStatus = ActivityStatus.NOT_STARTED
    duration_seconds: float = 0.0
    distance_meters: float = 0.0
    elevation_gain_meters: float = 0.0
    elevation_loss_meters: float = 0.0

    avg_heart_rate: Optional[int] = None
    max_heart_rate: Optional[int] = None
    avg_power: Optional[int] = None
    max_power: Optional[int] = None
    avg_cadence: Optional[int] = None
    max_cadence: Optional[int] = None
    avg_pace_seconds_per_km: Optional[int] = None

    route_points: List[GeoPoint] = field(default_factory=list)
    sensor_readings: List[SensorReading] = field(default_factory=list)
    notes: Optional[str] = None

    def calculate_averages(self) -> None:
        """Recompute averages and maxima from sensor_readings (overwrites running estimates)."""
        self.avg_heart_rate, self.max_heart_rate = _avg_and_max(
            r.heart_rate for r in self.sensor_readings
        )
        self.avg_power, self.max_power = _avg_and_max(
            r.power for r in self.sensor_readings
        )
        self.avg_cadence, self.max_cadence = _avg_and_max(
            r.cadence for r in self.sensor_readings
        )

        if self.distance_meters > 0 and self.duration_seconds > 0:
            self.avg_pace_seconds_per_km = round(
                self.duration_seconds / (self.distance_meters / 1000.0)
            )
        else:
            self.avg_pace_seconds_per_km = None


def _avg_and_max(values):
    valid = [v for v in values if v is not None and v > 0]
    if not valid:
        return None, None
    return round(sum(valid) / len(valid)), max(valid)
