"""Tracking session control routes."""
import dataclasses
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from runtracker.tracking.session import ActivitySession

router = APIRouter()


class SessionStatusResponse(BaseModel):
    state: str
    activity_id: Optional[str] = None
    status: Optional[str] = None
    duration_seconds: float = 0.0
    distance_meters: float = 0.0
    elevation_gain_meters: float = 0.0
    elevation_loss_meters: float = 0.0
    heart_rate: Optional[int] = None
    power: Optional[int] = None
    cadence: Optional[int] = None
    pace_seconds_per_km: Optional[int] = None
    speed_mps: Optional[float] = None
    avg_heart_rate: Optional[int] = None
    avg_power: Optional[int] = None
    avg_cadence: Optional[int] = None
    avg_pace_seconds_per_km: Optional[int] = None
    max_heart_rate: Optional[int] = None
    max_power: Optional[int] = None
    max_cadence: Optional[int] = None
    fallback_mode: bool = False
    gps_error_count: int = 0
    sensors: Dict[str, bool] = {}
    calories_per_hour: Optional[float] = None
    gps_cep50_m: Optional[float] = None
    gps_cep95_m: Optional[float] = None
    pending_readings: int = 0


class CompletedActivityResponse(BaseModel):
    id: str
    name: str
    start_time: datetime
    end_time: Optional[datetime]
    status: str
    duration_seconds: float
    distance_meters: float
    elevation_gain_meters: float
    elevation_loss_meters: float
    avg_heart_rate: Optional[int]
    max_heart_rate: Optional[int]
    avg_power: Optional[int]
    max_power: Optional[int]
    avg_cadence: Optional[int]
    max_cadence: Optional[int]
    avg_pace_seconds_per_km: Optional[int]
    readings: int


def get_tracker(request: Request) -> ActivitySession:
    """FastAPI dependency returning the app's tracking session."""
    return request.app.state.tracker


def _status(tracker: ActivitySession) -> SessionStatusResponse:
    metrics = dataclasses.asdict(tracker.snapshot())
    metrics["state"] = tracker.state.value
    if metrics["status"] is not None:
        metrics["status"] = metrics["status"].value
    return SessionStatusResponse(**metrics)


def _rejected(tracker: ActivitySession, command: str) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail=f"Cannot {command} in state {tracker.state.value}",
    )


@router.get("", response_model=SessionStatusResponse)
def session_status(tracker: ActivitySession = Depends(get_tracker)):
    """Live metrics of the current session."""
    return _status(tracker)


@router.post("/prepare", response_model=SessionStatusResponse)
async def prepare(tracker: ActivitySession = Depends(get_tracker)):
    """Connect sensors and create a new activity."""
    if not await tracker.prepare():
        raise _rejected(tracker, "prepare")
    return _status(tracker)


@router.post("/start", response_model=SessionStatusResponse)
async def start(tracker: ActivitySession = Depends(get_tracker)):
    """Start tracking, preparing first when needed."""
    if not await tracker.start():
        raise _rejected(tracker, "start")
    return _status(tracker)


@router.post("/pause", response_model=SessionStatusResponse)
async def pause(tracker: ActivitySession = Depends(get_tracker)):
    if not await tracker.pause():
        raise _rejected(tracker, "pause")
    return _status(tracker)


@router.post("/resume", response_model=SessionStatusResponse)
async def resume(tracker: ActivitySession = Depends(get_tracker)):
    if not await tracker.resume():
        raise _rejected(tracker, "resume")
    return _status(tracker)


@router.post("/end", response_model=CompletedActivityResponse)
async def end(tracker: ActivitySession = Depends(get_tracker)):
    """Finish the run and return the completed activity with final averages."""
    activity = await tracker.end()
    if activity is None:
        raise _rejected(tracker, "end")
    return CompletedActivityResponse(
        id=activity.id,
        name=activity.name,
        start_time=activity.start_time,
        end_time=activity.end_time,
        status=activity.status.value,
        duration_seconds=activity.duration_seconds,
        distance_meters=activity.distance_meters,
        elevation_gain_meters=activity.elevation_gain_meters,
        elevation_loss_meters=activity.elevation_loss_meters,
        avg_heart_rate=activity.avg_heart_rate,
        max_heart_rate=activity.max_heart_rate,
        avg_power=activity.avg_power,
        max_power=activity.max_power,
        avg_cadence=activity.avg_cadence,
        max_cadence=activity.max_cadence,
        avg_pace_seconds_per_km=activity.avg_pace_seconds_per_km,
        readings=len(activity.sensor_readings),
    )


@router.post("/discard", response_model=SessionStatusResponse)
async def discard(tracker: ActivitySession = Depends(get_tracker)):
    """Stop tracking and delete the activity. Irreversible."""
    if not await tracker.discard():
        raise _rejected(tracker, "discard")
    return _status(tracker)
