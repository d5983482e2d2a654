"""
Replay a recorded sensor log through a tracking session.

Usage:
    python -m runtracker replay run.jsonl
    python -m runtracker.scripts.replay run.jsonl --database sqlite:///replay.db

One JSON object per line, in time order. "t" is an ISO-8601 UTC timestamp:

    {"t": "...", "type": "gps", "lat": 51.5, "lon": -0.1, "altitude": 12.0,
     "speed": 3.1, "accuracy": 4.0}
    {"t": "...", "type": "heart_rate", "data": "00 96"}     # also rsc, cps,
                                                            # footpod_vendor
    {"t": "...", "type": "accel", "ax": 0.1, "ay": 9.8, "az": 0.3}
    {"t": "...", "type": "baro", "pressure_pa": 101200.0}
    {"t": "...", "type": "steps", "steps": 1234}
    {"t": "...", "type": "pause"}  /  {"t": "...", "type": "resume"}

The session runs on a clock driven by the log, and metrics/checkpoint ticks
are issued at their configured intervals of log time, so a replay computes
exactly what the live session would have.
"""
import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from runtracker.tracking.events import (
    AccelerometerSample,
    BarometerSample,
    CheckpointTick,
    GpsFix,
    MetricsTick,
    SensorKind,
    SensorPayload,
    StepCountSample,
)
from runtracker.tracking.types import Activity, as_utc

logger = logging.getLogger(__name__)

COMMANDS = ("pause", "resume")


class LogFormatError(ValueError):
    """A log line that cannot be turned into an event."""


@dataclass
class ReplayClock:
    now: datetime

    def __call__(self) -> datetime:
        return self.now


def parse_record(record: dict) -> Tuple[datetime, object]:
    """
    Returns:
        (timestamp, event) where event is a tracking event or a command name.

    Raises:
        LogFormatError: unknown type, missing field or bad timestamp.
    """
    try:
        ts = as_utc(datetime.fromisoformat(record["t"].replace("Z", "+00:00")))
        kind = record["type"]

        if kind in COMMANDS:
            return ts, kind
        if kind == "gps":
            return ts, GpsFix(
                lat=float(record["lat"]),
                lon=float(record["lon"]),
                timestamp=ts,
                altitude=record.get("altitude"),
                speed=record.get("speed"),
                accuracy=record.get("accuracy"),
            )
        if kind == "accel":
            return ts, AccelerometerSample(
                float(record["ax"]), float(record["ay"]), float(record["az"]), ts
            )
        if kind == "baro":
            return ts, BarometerSample(float(record["pressure_pa"]), ts)
        if kind == "steps":
            return ts, StepCountSample(int(record["steps"]), ts)
        return ts, SensorPayload(
            kind=SensorKind(kind), data=bytes.fromhex(record["data"]), timestamp=ts
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise LogFormatError(f"bad record {record!r}: {exc}") from exc


def parse_log(lines: Iterable[str]) -> List[Tuple[datetime, object]]:
    records = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            raise LogFormatError(f"line {number}: {exc}") from exc
        records.append(parse_record(record))
    return records


async def replay(
    lines: Iterable[str],
    engine=None,
    settings=None,
) -> Optional[Activity]:
    """
    Run a whole log through a fresh session and end it.

    Returns:
        The completed Activity (None for an empty log).
    """
    from runtracker.config import get_settings
    from runtracker.factory import build_session
    from runtracker.scheduler.jobs import NullTimers
    from runtracker.sensors.ble import NullSensorHub

    records = parse_log(lines)
    if not records:
        logger.warning("Empty sensor log, nothing to replay")
        return None

    settings = settings or get_settings()
    tick = timedelta(seconds=settings.metrics_tick_seconds)
    checkpoint = timedelta(seconds=settings.checkpoint_interval_seconds)

    clock = ReplayClock(records[0][0])
    session = build_session(
        settings=settings,
        engine=engine,
        hub=NullSensorHub(),
        clock=clock,
        timers=NullTimers(),
    )

    async with session:
        if not await session.start():
            logger.error("Session did not start (state %s)", session.state.value)
            return None

        next_tick = clock.now + tick
        next_checkpoint = clock.now + checkpoint
        for ts, item in records:
            while min(next_tick, next_checkpoint) <= ts:
                if next_tick <= next_checkpoint:
                    clock.now = next_tick
                    await session.handle(MetricsTick())
                    next_tick += tick
                else:
                    clock.now = next_checkpoint
                    await session.handle(CheckpointTick())
                    next_checkpoint += checkpoint

            clock.now = max(clock.now, ts)
            if item == "pause":
                await session.pause()
            elif item == "resume":
                await session.resume()
            else:
                await session.handle(item)

        activity = await session.end()

    logger.info("Replayed %d records", len(records))
    return activity


def _summary(activity: Activity) -> dict:
    return {
        "id": activity.id,
        "duration_seconds": round(activity.duration_seconds, 1),
        "distance_meters": round(activity.distance_meters, 1),
        "elevation_gain_meters": round(activity.elevation_gain_meters, 1),
        "elevation_loss_meters": round(activity.elevation_loss_meters, 1),
        "avg_heart_rate": activity.avg_heart_rate,
        "max_heart_rate": activity.max_heart_rate,
        "avg_power": activity.avg_power,
        "max_power": activity.max_power,
        "avg_cadence": activity.avg_cadence,
        "avg_pace_seconds_per_km": activity.avg_pace_seconds_per_km,
        "readings": len(activity.sensor_readings),
    }


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Replay a recorded sensor log")
    parser.add_argument("log", help="JSON-lines sensor log")
    parser.add_argument(
        "--database",
        help="Database URL for the replayed activity (default: DATABASE_URL setting)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    engine = None
    if args.database:
        from sqlmodel import SQLModel, create_engine
        from runtracker.models.activity import ActivityRecord, SensorReadingRecord  # noqa

        engine = create_engine(args.database, connect_args={"check_same_thread": False})
        SQLModel.metadata.create_all(engine)

    with open(args.log, encoding="utf-8") as f:
        activity = asyncio.run(replay(f.readlines(), engine=engine))

    if activity is not None:
        print(json.dumps(_summary(activity), indent=2))


if __name__ == "__main__":
    main()
