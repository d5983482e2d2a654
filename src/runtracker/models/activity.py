"""Persisted shape of activities and their sensor readings."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel

from runtracker.tracking.types import as_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on SQLite which keeps no offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class ActivityRecord(SQLModel, table=True):
    """One row per tracked run. Rewritten on every checkpoint."""

    id: str = Field(primary_key=True)  # uuid4 string, stable for the run's lifetime
    name: str
    start_time_utc: datetime = Field(sa_type=UTCDateTime, index=True)
    end_time_utc: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    status: str = "not_started"  # "not_started", "in_progress", "paused", "completed"
    duration_seconds: float = 0.0
    distance_meters: float = 0.0
    elevation_gain_meters: float = 0.0
    elevation_loss_meters: float = 0.0

    avg_hr: Optional[int] = None
    max_hr: Optional[int] = None
    avg_power: Optional[int] = None
    max_power: Optional[int] = None
    avg_cadence: Optional[int] = None
    max_cadence: Optional[int] = None
    avg_pace_seconds_per_km: Optional[int] = None

    # JSON list of [lat, lon] pairs in recording order
    route_points_json: Optional[str] = None
    notes: Optional[str] = None

    readings: List["SensorReadingRecord"] = Relationship(back_populates="activity")


class SensorReadingRecord(SQLModel, table=True):
    """
    One row per decoded sensor observation.
    A 60-minute run with GPS, HRM and foot-pod produces several thousand rows.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    activity_id: str = Field(foreign_key="activityrecord.id", index=True)
    timestamp: datetime = Field(sa_type=UTCDateTime, index=True)

    lat: Optional[float] = None
    lon: Optional[float] = None
    elevation_meters: Optional[float] = None
    heart_rate: Optional[int] = None  # bpm
    power: Optional[int] = None  # watts
    cadence: Optional[int] = None  # steps per minute
    distance_meters: Optional[float] = None
    pace_seconds_per_km: Optional[int] = None
    source: str  # "GPS", "HRM", "FOOTPOD"

    activity: Optional[ActivityRecord] = Relationship(back_populates="readings")
