"""
ActivityStore — the persistence service behind a tracking session.

Contract used by the session:
  insert(activity), update(activity), batch_insert(readings),
  query(activity_id) -> readings, delete(activity_id)

Also serves history lookups (get, list_activities, route_points) for the API.

All methods are synchronous; the session calls them through the default
thread-pool executor so a slow write never blocks the event loop. Every call
opens its own Session, so the store is safe to share across those threads.

Mapping between the in-memory dataclasses (runtracker.tracking.types) and
the table rows (runtracker.models.activity) lives here and nowhere else.
"""
import json
from typing import List, Optional

from sqlmodel import Session, select

from runtracker.models.activity import ActivityRecord, SensorReadingRecord
from runtracker.tracking.geo import GeoPoint
from runtracker.tracking.types import (
    Activity,
    ActivityStatus,
    SensorReading,
    SensorSource,
)


class ActivityNotFoundError(LookupError):
    """update() was called for an activity that was never inserted."""


# ─── Mapping ──────────────────────────────────────────────────────────────────

def _activity_fields(activity: Activity) -> dict:
    return {
        "id": activity.id,
        "name": activity.name,
        "start_time_utc": activity.start_time,
        "end_time_utc": activity.end_time,
        "status": ActivityStatus(activity.status).value,
        "duration_seconds": activity.duration_seconds,
        "distance_meters": activity.distance_meters,
        "elevation_gain_meters": activity.elevation_gain_meters,
        "elevation_loss_meters": activity.elevation_loss_meters,
        "avg_hr": activity.avg_heart_rate,
        "max_hr": activity.max_heart_rate,
        "avg_power": activity.avg_power,
        "max_power": activity.max_power,
        "avg_cadence": activity.avg_cadence,
        "max_cadence": activity.max_cadence,
        "avg_pace_seconds_per_km": activity.avg_pace_seconds_per_km,
        "route_points_json": json.dumps([[p.lat, p.lon] for p in activity.route_points]),
        "notes": activity.notes,
    }


def activity_from_record(record: ActivityRecord) -> Activity:
    """Rebuild an in-memory Activity (without readings) from its row."""
    points = json.loads(record.route_points_json) if record.route_points_json else []
    return Activity(
        id=record.id,
        name=record.name,
        start_time=record.start_time_utc,
        end_time=record.end_time_utc,
        status=ActivityStatus(record.status),
        duration_seconds=record.duration_seconds,
        distance_meters=record.distance_meters,
        elevation_gain_meters=record.elevation_gain_meters,
        elevation_loss_meters=record.elevation_loss_meters,
        avg_heart_rate=record.avg_hr,
        max_heart_rate=record.max_hr,
        avg_power=record.avg_power,
        max_power=record.max_power,
        avg_cadence=record.avg_cadence,
        max_cadence=record.max_cadence,
        avg_pace_seconds_per_km=record.avg_pace_seconds_per_km,
        route_points=[GeoPoint(lat, lon) for lat, lon in points],
        notes=record.notes,
    )


def reading_to_record(reading: SensorReading) -> SensorReadingRecord:
    return SensorReadingRecord(
        activity_id=reading.activity_id,
        timestamp=reading.timestamp,
        lat=reading.location.lat if reading.location else None,
        lon=reading.location.lon if reading.location else None,
        elevation_meters=reading.elevation_meters,
        heart_rate=reading.heart_rate,
        power=reading.power,
        cadence=reading.cadence,
        distance_meters=reading.distance_meters,
        pace_seconds_per_km=reading.pace_seconds_per_km,
        source=SensorSource(reading.source).value,
    )


def reading_from_record(record: SensorReadingRecord) -> SensorReading:
    location = None
    if record.lat is not None and record.lon is not None:
        location = GeoPoint(record.lat, record.lon)
    return SensorReading(
        activity_id=record.activity_id,
        timestamp=record.timestamp,
        source=SensorSource(record.source),
        location=location,
        elevation_meters=record.elevation_meters,
        heart_rate=record.heart_rate,
        power=record.power,
        cadence=record.cadence,
        distance_meters=record.distance_meters,
        pace_seconds_per_km=record.pace_seconds_per_km,
    )


# ─── Store ────────────────────────────────────────────────────────────────────

class ActivityStore:
    """SQLModel-backed persistence for activities and their readings."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    def insert(self, activity: Activity) -> None:
        with Session(self.engine) as s:
            s.add(ActivityRecord(**_activity_fields(activity)))
            s.commit()

    def update(self, activity: Activity) -> None:
        """
        Overwrite the stored row with the activity's current values.

        Raises:
            ActivityNotFoundError: if the activity was never inserted.
        """
        with Session(self.engine) as s:
            record = s.get(ActivityRecord, activity.id)
            if record is None:
                raise ActivityNotFoundError(activity.id)
            for k, v in _activity_fields(activity).items():
                setattr(record, k, v)
            s.add(record)
            s.commit()

    def batch_insert(self, readings: List[SensorReading]) -> None:
        """Insert all readings in one transaction (all or nothing)."""
        if not readings:
            return
        with Session(self.engine) as s:
            s.add_all([reading_to_record(r) for r in readings])
            s.commit()

    def query(self, activity_id: str) -> List[SensorReading]:
        """All readings of an activity in timestamp order."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(SensorReadingRecord)
                .where(SensorReadingRecord.activity_id == activity_id)
                .order_by(SensorReadingRecord.timestamp, SensorReadingRecord.id)
            ).all()
            return [reading_from_record(r) for r in rows]

    def delete(self, activity_id: str) -> None:
        """Delete an activity and its readings. Missing ids are ignored."""
        with Session(self.engine) as s:
            readings = s.exec(
                select(SensorReadingRecord).where(
                    SensorReadingRecord.activity_id == activity_id
                )
            ).all()
            for r in readings:
                s.delete(r)
            s.flush()

            record = s.get(ActivityRecord, activity_id)
            if record is not None:
                s.delete(record)
            s.commit()

    def get(self, activity_id: str) -> Optional[Activity]:
        with Session(self.engine) as s:
            record = s.get(ActivityRecord, activity_id)
            return activity_from_record(record) if record else None

    def list_activities(self, limit: int = 20, offset: int = 0) -> List[Activity]:
        """Activities newest first."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(ActivityRecord)
                .order_by(ActivityRecord.start_time_utc.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return [activity_from_record(r) for r in rows]

    def route_points(self, activity_id: str) -> List[SensorReading]:
        """Readings of an activity that carry a GPS position, in order."""
        return [r for r in self.query(activity_id) if r.location is not None]
