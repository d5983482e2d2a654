"""Activity history routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from runtracker.db.engine import get_session
from runtracker.models.activity import ActivityRecord, SensorReadingRecord

router = APIRouter()


class RoutePoint(BaseModel):
    lat: float
    lon: float
    timestamp: datetime
    elevation_meters: Optional[float]


def _get_or_404(session: Session, activity_id: str) -> ActivityRecord:
    activity = session.get(ActivityRecord, activity_id)
    if not activity:
        raise HTTPException(status_code=404, detail="Activity not found")
    return activity


@router.get("/", response_model=List[ActivityRecord])
def list_activities(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """List recent activities, newest first."""
    query = select(ActivityRecord)
    if status:
        query = query.where(ActivityRecord.status == status)
    activities = session.exec(
        query.order_by(ActivityRecord.start_time_utc.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return activities


@router.get("/{activity_id}", response_model=ActivityRecord)
def get_activity(activity_id: str, session: Session = Depends(get_session)):
    """Fetch a single activity by id."""
    return _get_or_404(session, activity_id)


@router.get("/{activity_id}/readings", response_model=List[SensorReadingRecord])
def get_readings(
    activity_id: str,
    source: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """All sensor readings of an activity in time order, optionally one source."""
    _get_or_404(session, activity_id)
    query = select(SensorReadingRecord).where(SensorReadingRecord.activity_id == activity_id)
    if source:
        query = query.where(SensorReadingRecord.source == source.upper())
    return session.exec(
        query.order_by(SensorReadingRecord.timestamp, SensorReadingRecord.id)
    ).all()


@router.get("/{activity_id}/route", response_model=List[RoutePoint])
def get_route(activity_id: str, session: Session = Depends(get_session)):
    """GPS track of an activity."""
    _get_or_404(session, activity_id)
    rows = session.exec(
        select(SensorReadingRecord)
        .where(SensorReadingRecord.activity_id == activity_id)
        .where(SensorReadingRecord.lat.is_not(None))
        .order_by(SensorReadingRecord.timestamp, SensorReadingRecord.id)
    ).all()
    return [
        RoutePoint(
            lat=r.lat,
            lon=r.lon,
            timestamp=r.timestamp,
            elevation_meters=r.elevation_meters,
        )
        for r in rows
    ]
