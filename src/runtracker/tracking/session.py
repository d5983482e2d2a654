"""
ActivitySession — lifecycle of one run and the single consumer of sensor events.

States:
  idle → preparing → idle (activity created) → active ⇄ paused → completed
  error: preparation failed (hub raised or the activity insert failed)

Producers (BLE hub callbacks, the location stream task, APScheduler ticks)
call publish(); one consumer task drains the queue. Commands and event
handlers share one asyncio.Lock, so a 1 Hz duration update can never
interleave with a GPS distance update.

Persistence never blocks a handler: store calls run in the default executor
and checkpoint/buffer writes are background tasks whose failures are logged
and retried on the next interval. end() waits for all of them before
computing final averages.
"""
import asyncio
import dataclasses
import functools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Protocol, Set

from runtracker.analysis.gps_accuracy import circular_error_probable
from runtracker.models.profile import UserProfile
from runtracker.scheduler.jobs import TrackerTimers
from runtracker.sensors.ble import NullSensorHub, SensorHub
from runtracker.sensors.location import LocationProvider
from runtracker.tracking.decoder import DecodeError, SensorDecoder, decode_heart_rate
from runtracker.tracking.events import (
    AccelerometerSample,
    BarometerSample,
    CheckpointTick,
    ConnectionChanged,
    GpsFix,
    MetricsTick,
    SensorKind,
    SensorPayload,
    StepCountSample,
)
from runtracker.tracking.buffer import ReadingBuffer
from runtracker.tracking.fusion import DeltaReport, SensorFusionEngine
from runtracker.tracking.geo import GeoPoint
from runtracker.tracking.power import PowerCalculator
from runtracker.tracking.types import (
    Activity,
    ActivityStatus,
    SensorReading,
    SensorSource,
    utcnow,
)

logger = logging.getLogger(__name__)

GPS_ACCURACY_WINDOW = 600  # last ~10 min of fixes at 1 Hz


class SessionState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


_TRACKING = (SessionState.ACTIVE, SessionState.PAUSED)
_PREPARABLE = (SessionState.IDLE, SessionState.ERROR, SessionState.COMPLETED)


class WakeLock(Protocol):
    def acquire(self) -> None:
        ...

    def release(self) -> None:
        ...


class NullWakeLock:
    """Host without a screen/CPU wake lock."""

    def acquire(self) -> None:
        logger.debug("Wake lock acquired")

    def release(self) -> None:
        logger.debug("Wake lock released")


@dataclass
class SessionMetrics:
    """Live view of a session for the API and the replay script."""

    state: SessionState
    activity_id: Optional[str] = None
    status: Optional[ActivityStatus] = None
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
    sensors: Dict[str, bool] = field(default_factory=dict)
    calories_per_hour: Optional[float] = None
    gps_cep50_m: Optional[float] = None
    gps_cep95_m: Optional[float] = None
    pending_readings: int = 0


def _running_average(current: Optional[int], new: Optional[int]) -> Optional[int]:
    if new is None or new <= 0:
        return current
    if current is None:
        return new
    return (current * 4 + new) // 5


def _running_max(current: Optional[int], new: Optional[int]) -> Optional[int]:
    if new is None or new <= 0:
        return current
    return new if current is None else max(current, new)


def _sensor_name(kind: SensorKind) -> str:
    return "hrm" if kind is SensorKind.HEART_RATE else "footpod"


class ActivitySession:
    """Owns the in-progress Activity and every collaborator that feeds it."""

    def __init__(
        self,
        store,
        profile: Optional[UserProfile] = None,
        *,
        fusion: Optional[SensorFusionEngine] = None,
        power: Optional[PowerCalculator] = None,
        decoder: Optional[SensorDecoder] = None,
        hub: Optional[SensorHub] = None,
        location: Optional[LocationProvider] = None,
        wake_lock: Optional[WakeLock] = None,
        timers=None,
        clock: Callable[[], datetime] = utcnow,
        buffer_size: int = 10,
        gps_distance_filter_m: float = 5.0,
        footpod_power_stale_seconds: float = 5.0,
        tick_seconds: float = 1.0,
        checkpoint_seconds: float = 5.0,
    ):
        """
        Args:
            store: persistence service (ActivityStore or compatible).
            profile: runner profile for the power model.
            timers: object with start()/stop(); defaults to TrackerTimers
                publishing MetricsTick/CheckpointTick onto this session.
            clock: returns aware UTC now; injected for replay and tests.
        """
        self.store = store
        self.fusion = fusion or SensorFusionEngine()
        self.power = power or PowerCalculator(profile or UserProfile())
        self.decoder = decoder or SensorDecoder()
        self.hub = hub or NullSensorHub()
        self.location = location
        self.wake_lock = wake_lock or NullWakeLock()
        self.timers = timers if timers is not None else TrackerTimers(
            self.publish, tick_seconds, checkpoint_seconds
        )
        self.gps_distance_filter_m = gps_distance_filter_m
        self.footpod_power_stale_seconds = footpod_power_stale_seconds
        self._clock = clock

        self.buffer = ReadingBuffer(self._write_readings, max_size=buffer_size)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._store_lock = asyncio.Lock()
        self._consumer: Optional[asyncio.Task] = None
        self._location_task: Optional[asyncio.Task] = None
        self._writes: Set[asyncio.Task] = set()

        self._state = SessionState.IDLE
        self._activity: Optional[Activity] = None
        self._start_requested = False
        self._wake_lock_held = False
        self._sensors: Dict[str, bool] = {}
        self._gps_accuracy: Deque[float] = deque(maxlen=GPS_ACCURACY_WINDOW)
        self._reset_run_state()

        self._handlers = {
            GpsFix: self._on_gps_fix,
            SensorPayload: self._on_payload,
            AccelerometerSample: self._on_accelerometer,
            BarometerSample: self._on_barometer,
            StepCountSample: self._on_step_count,
            ConnectionChanged: self._on_connection_changed,
            MetricsTick: self._on_metrics_tick,
            CheckpointTick: self._on_checkpoint_tick,
        }

    def _reset_run_state(self) -> None:
        self._last_tick: Optional[datetime] = None
        self._last_checkpoint_duration: Optional[float] = None
        self._last_heart_rate: Optional[int] = None
        self._last_power: Optional[int] = None
        self._last_cadence: Optional[int] = None
        self._last_pace: Optional[int] = None
        self._last_footpod_power_at: Optional[datetime] = None

    # ─── Properties ───────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def activity(self) -> Optional[Activity]:
        return self._activity

    @property
    def is_tracking(self) -> bool:
        return self._state in _TRACKING

    # ─── Event plumbing ───────────────────────────────────────────────────────

    def publish(self, event) -> None:
        """Enqueue an event. Safe to call from any coroutine or callback on the loop."""
        self._queue.put_nowait(event)

    async def open(self) -> None:
        """Start the consumer task."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def close(self) -> None:
        """Release tracking resources and sensors, then write out pending readings."""
        async with self._lock:
            self._release_tracking_resources()
        await self.hub.disconnect()

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        await self.buffer.join()
        await self.buffer.flush()
        await self._join_writes()

    async def __aenter__(self) -> "ActivitySession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def drain(self) -> None:
        """Wait until every published event has been handled (needs open())."""
        await self._queue.join()

    async def handle(self, event) -> None:
        """Handle one event immediately, bypassing the queue."""
        async with self._lock:
            self._dispatch(event)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                async with self._lock:
                    self._dispatch(event)
            except Exception:
                logger.exception("Error handling %s", type(event).__name__)
            finally:
                self._queue.task_done()

    def _dispatch(self, event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("No handler for event %r", event)
            return
        handler(event)

    # ─── Commands ─────────────────────────────────────────────────────────────

    async def prepare(self) -> bool:
        """
        Connect sensors and create a not-started activity.

        Returns:
            True when an activity is ready; False when ignored or failed.
        """
        async with self._lock:
            if self._state not in _PREPARABLE:
                logger.info("prepare() ignored in state %s", self._state.value)
                return False
            self._state = SessionState.PREPARING

        # Outside the lock: events keep flowing and start() can latch meanwhile
        try:
            sensors = await self.hub.connect(self.publish)
            activity = Activity(start_time=self._clock())
            await self._call_store(self.store.insert, activity)
        except Exception:
            logger.exception("Preparing activity failed")
            async with self._lock:
                self._state = SessionState.ERROR
                if self._start_requested:
                    logger.warning("Latched start dropped: preparation failed")
                    self._start_requested = False
            return False

        async with self._lock:
            stale = self._activity
            if stale is not None and stale.status is ActivityStatus.NOT_STARTED:
                self._spawn_write(self._delete_stale(stale.id))
            self._sensors.update(sensors)
            self.fusion.reset()
            self.decoder.reset()
            self.buffer.clear()
            self._gps_accuracy.clear()
            self._reset_run_state()
            self._activity = activity
            self._state = SessionState.IDLE
            logger.info("Prepared activity %s (sensors: %s)", activity.id, sensors or "none")

            if self._start_requested:
                self._start_requested = False
                logger.info("Running start() latched during preparation")
                self._begin_tracking()
        return True

    async def start(self) -> bool:
        """
        Begin tracking. Prepares first when no activity exists; while preparing
        the request is latched and runs once preparation completes.
        """
        if self._state is SessionState.PREPARING:
            self._start_requested = True
            logger.info("start() latched until preparation completes")
            return True

        if self._activity is None and self._state in _PREPARABLE:
            if not await self.prepare():
                return False

        async with self._lock:
            if self._state is SessionState.ACTIVE:
                return True
            if self._state is not SessionState.IDLE or self._activity is None:
                logger.info("start() ignored in state %s", self._state.value)
                return False
            self._begin_tracking()
        return True

    async def pause(self) -> bool:
        async with self._lock:
            if self._state is not SessionState.ACTIVE or self._activity is None:
                logger.info("pause() ignored in state %s", self._state.value)
                return False
            self._refresh_metrics(self._clock())
            self._state = SessionState.PAUSED
            self._activity.status = ActivityStatus.PAUSED
            self._schedule_checkpoint()
            logger.info("Paused activity %s", self._activity.id)
        return True

    async def resume(self) -> bool:
        async with self._lock:
            if self._state is not SessionState.PAUSED or self._activity is None:
                logger.info("resume() ignored in state %s", self._state.value)
                return False
            self._state = SessionState.ACTIVE
            self._activity.status = ActivityStatus.IN_PROGRESS
            # Paused time never counts towards duration
            self._last_tick = self._clock()
            self._schedule_checkpoint()
            logger.info("Resumed activity %s", self._activity.id)
        return True

    async def end(self) -> Optional[Activity]:
        """
        Finish the run: flush readings, compute final averages from the full
        reading set and persist.

        Returns:
            The completed Activity, or None when nothing was being tracked.
        """
        async with self._lock:
            if self._state not in _TRACKING or self._activity is None:
                logger.info("end() ignored in state %s", self._state.value)
                return None

            activity = self._activity
            now = self._clock()
            if self._state is SessionState.ACTIVE:
                self._refresh_metrics(now)
            self._release_tracking_resources()
            self._state = SessionState.COMPLETED
            activity.end_time = now
            activity.status = ActivityStatus.COMPLETED

            await self.buffer.join()
            await self.buffer.flush()
            await self._join_writes()

            try:
                readings = await self._call_store(self.store.query, activity.id)
            except Exception:
                logger.exception("Could not reload readings of %s", activity.id)
                readings = []
            # Readings whose batch write kept failing still count
            activity.sensor_readings = list(readings) + self.buffer.pending
            activity.calculate_averages()

            try:
                await self._call_store(self.store.update, activity)
            except Exception:
                logger.exception("Could not persist completed activity %s", activity.id)

            self.buffer.clear()
            self._activity = None
            self._reset_run_state()
            logger.info(
                "Completed activity %s: %.0f m in %.0f s (%d readings)",
                activity.id,
                activity.distance_meters,
                activity.duration_seconds,
                len(activity.sensor_readings),
            )
            return activity

    async def discard(self) -> bool:
        """Stop tracking and delete the activity and its readings. Irreversible."""
        async with self._lock:
            if self._state not in _TRACKING or self._activity is None:
                logger.info("discard() ignored in state %s", self._state.value)
                return False

            activity = self._activity
            self._release_tracking_resources()
            self.buffer.clear()
            # An in-flight flush may still insert readings; delete after it lands
            await self.buffer.join()
            await self._join_writes()
            try:
                await self._call_store(self.store.delete, activity.id)
            except Exception:
                logger.exception("Could not delete discarded activity %s", activity.id)

            self.buffer.clear()
            self.fusion.reset()
            self.decoder.reset()
            self._activity = None
            self._reset_run_state()
            self._state = SessionState.IDLE
            logger.info("Discarded activity %s", activity.id)
        return True

    def snapshot(self) -> SessionMetrics:
        a = self._activity
        metrics = SessionMetrics(
            state=self._state,
            heart_rate=self._last_heart_rate,
            power=self._last_power,
            cadence=self._last_cadence,
            pace_seconds_per_km=self._last_pace,
            speed_mps=self.fusion.filtered_speed,
            fallback_mode=self.fusion.fallback_mode,
            gps_error_count=self.fusion.gps_error_count,
            sensors=dict(self._sensors),
            pending_readings=len(self.buffer),
        )
        if a is not None:
            metrics.activity_id = a.id
            metrics.status = a.status
            metrics.duration_seconds = a.duration_seconds
            metrics.distance_meters = a.distance_meters
            metrics.elevation_gain_meters = a.elevation_gain_meters
            metrics.elevation_loss_meters = a.elevation_loss_meters
            metrics.avg_heart_rate = a.avg_heart_rate
            metrics.avg_power = a.avg_power
            metrics.avg_cadence = a.avg_cadence
            metrics.avg_pace_seconds_per_km = a.avg_pace_seconds_per_km
            metrics.max_heart_rate = a.max_heart_rate
            metrics.max_power = a.max_power
            metrics.max_cadence = a.max_cadence
        if self._last_power:
            metrics.calories_per_hour = round(self.power.calculate_calories(self._last_power), 1)
        cep = circular_error_probable(self._gps_accuracy)
        if cep is not None:
            metrics.gps_cep50_m = cep.cep50_m
            metrics.gps_cep95_m = cep.cep95_m
        return metrics

    # ─── Tracking resources ───────────────────────────────────────────────────

    def _begin_tracking(self) -> None:
        a = self._activity
        a.status = ActivityStatus.IN_PROGRESS
        self._state = SessionState.ACTIVE
        self._last_tick = self._clock()

        if not self._wake_lock_held:
            self.wake_lock.acquire()
            self._wake_lock_held = True
        self.timers.start()
        if self.location is not None and self._location_task is None:
            self._location_task = asyncio.create_task(self._pump_locations())

        self._schedule_checkpoint()
        logger.info("Started activity %s", a.id)

    def _release_tracking_resources(self) -> None:
        """Stop the location stream and timers, release the wake lock. Idempotent."""
        self.timers.stop()
        task, self._location_task = self._location_task, None
        if task is not None:
            task.cancel()
        if self._wake_lock_held:
            self.wake_lock.release()
            self._wake_lock_held = False

    async def _pump_locations(self) -> None:
        try:
            async for fix in self.location.positions(self.gps_distance_filter_m):
                self.publish(fix)
        except Exception:
            logger.exception("Location stream failed")
            self.publish(ConnectionChanged(sensor="gps", connected=False))

    # ─── Event handlers (run under the lock) ──────────────────────────────────

    def _on_gps_fix(self, fix: GpsFix) -> None:
        self._sensors["gps"] = True
        if fix.accuracy is not None:
            self._gps_accuracy.append(fix.accuracy)
        if self._state is not SessionState.ACTIVE or self._activity is None:
            return

        report = self.fusion.update_with_gps(
            fix.lat, fix.lon, fix.altitude, fix.speed, fix.timestamp
        )
        point = GeoPoint(fix.lat, fix.lon)
        self._activity.route_points.append(point)

        power = self._estimate_power(report)
        if report.pace_seconds_per_km is not None:
            self._last_pace = report.pace_seconds_per_km

        self.buffer.add(
            SensorReading(
                activity_id=self._activity.id,
                timestamp=fix.timestamp,
                source=SensorSource.GPS,
                location=point,
                elevation_meters=fix.altitude,
                power=power,
                pace_seconds_per_km=report.pace_seconds_per_km,
            )
        )
        self._copy_fusion_totals()

    def _on_payload(self, payload: SensorPayload) -> None:
        self._sensors[_sensor_name(payload.kind)] = True
        active = self._state is SessionState.ACTIVE and self._activity is not None
        try:
            if not active:
                # Show live heart rate before the run starts
                if payload.kind is SensorKind.HEART_RATE:
                    self._last_heart_rate = decode_heart_rate(payload.data)
                return
            reading = self.decoder.decode(
                payload.data, payload.kind, self._activity.id, payload.timestamp
            )
        except DecodeError as exc:
            logger.debug("Discarding %s payload: %s", payload.kind.value, exc)
            return

        self._remember(reading)
        self.buffer.add(reading)
        if reading.source is SensorSource.FOOTPOD:
            self.fusion.update_with_footpod(
                reading.distance_meters, reading.pace_seconds_per_km, reading.timestamp
            )
            self._copy_fusion_totals()

    def _on_accelerometer(self, sample: AccelerometerSample) -> None:
        if self._state is SessionState.ACTIVE:
            self.fusion.update_with_accelerometer(sample.ax, sample.ay, sample.az, sample.timestamp)
            self._copy_fusion_totals()

    def _on_barometer(self, sample: BarometerSample) -> None:
        if self._state is SessionState.ACTIVE:
            self.fusion.update_with_barometer(sample.pressure_pa, sample.timestamp)
            self._copy_fusion_totals()

    def _on_step_count(self, sample: StepCountSample) -> None:
        if self._state is SessionState.ACTIVE:
            self.fusion.update_with_step_counter(sample.steps, sample.timestamp)
            self._copy_fusion_totals()

    def _on_connection_changed(self, event: ConnectionChanged) -> None:
        previous = self._sensors.get(event.sensor)
        self._sensors[event.sensor] = event.connected
        if previous and not event.connected:
            logger.warning("%s disconnected, tracking continues without it", event.sensor)

    def _on_metrics_tick(self, _event: MetricsTick) -> None:
        self._refresh_metrics(self._clock())

    def _on_checkpoint_tick(self, _event: CheckpointTick) -> None:
        a = self._activity
        if a is None or self._state not in _TRACKING:
            return
        last = self._last_checkpoint_duration
        if last is not None and a.duration_seconds <= last:
            return
        self._schedule_checkpoint()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _refresh_metrics(self, now: datetime) -> None:
        a = self._activity
        if self._state is not SessionState.ACTIVE or a is None:
            return

        if self._last_tick is not None:
            elapsed = (now - self._last_tick).total_seconds()
            if elapsed > 0:
                a.duration_seconds += elapsed
        self._last_tick = now
        self._copy_fusion_totals()

        a.avg_heart_rate = _running_average(a.avg_heart_rate, self._last_heart_rate)
        a.avg_power = _running_average(a.avg_power, self._last_power)
        a.avg_cadence = _running_average(a.avg_cadence, self._last_cadence)
        a.avg_pace_seconds_per_km = _running_average(a.avg_pace_seconds_per_km, self._last_pace)
        a.max_heart_rate = _running_max(a.max_heart_rate, self._last_heart_rate)
        a.max_power = _running_max(a.max_power, self._last_power)
        a.max_cadence = _running_max(a.max_cadence, self._last_cadence)

    def _copy_fusion_totals(self) -> None:
        a = self._activity
        if a is None:
            return
        # Distance never shrinks mid-run, even when a foot-pod total takes over
        a.distance_meters = max(a.distance_meters, self.fusion.total_distance)
        a.elevation_gain_meters = self.fusion.elevation_gain
        a.elevation_loss_meters = self.fusion.elevation_loss

    def _remember(self, reading: SensorReading) -> None:
        if reading.heart_rate is not None:
            self._last_heart_rate = reading.heart_rate
        if reading.power is not None:
            self._last_power = reading.power
            self._last_footpod_power_at = self._clock()
        if reading.cadence is not None:
            self._last_cadence = reading.cadence
        if reading.pace_seconds_per_km is not None:
            self._last_pace = reading.pace_seconds_per_km

    def _estimate_power(self, report: DeltaReport) -> Optional[int]:
        """Power from the GPS model, unless a foot-pod is reporting measured power."""
        if self._last_footpod_power_at is not None:
            age = (self._clock() - self._last_footpod_power_at).total_seconds()
            if age < self.footpod_power_stale_seconds:
                return None

        speed = self.fusion.filtered_speed
        if speed is None or not report.interval_seconds or report.interval_seconds <= 0:
            return None

        basic = self.power.calculate_power(
            speed, report.elevation_delta_m, report.interval_seconds
        )
        adjusted = self.power.apply_sensor_fusion(
            basic, cadence=self._last_cadence, heart_rate=self._last_heart_rate
        )
        watts = round(adjusted)
        if watts <= 0:
            return None
        self._last_power = watts
        return watts

    def _schedule_checkpoint(self) -> None:
        a = self._activity
        snapshot = dataclasses.replace(
            a, route_points=list(a.route_points), sensor_readings=[]
        )
        self._spawn_write(self._write_checkpoint(snapshot))

    async def _write_checkpoint(self, snapshot: Activity) -> None:
        try:
            await self._call_store(self.store.update, snapshot)
        except Exception:
            logger.warning(
                "Checkpoint of %s failed, retrying next interval",
                snapshot.id,
                exc_info=True,
            )
            return
        last = self._last_checkpoint_duration
        if self._activity is not None and self._activity.id == snapshot.id:
            if last is None or snapshot.duration_seconds > last:
                self._last_checkpoint_duration = snapshot.duration_seconds

    async def _delete_stale(self, activity_id: str) -> None:
        try:
            await self._call_store(self.store.delete, activity_id)
        except Exception:
            logger.warning("Could not delete unstarted activity %s", activity_id, exc_info=True)

    async def _write_readings(self, batch: List[SensorReading]) -> None:
        await self._call_store(self.store.batch_insert, batch)

    def _spawn_write(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _join_writes(self) -> None:
        while self._writes:
            tasks = list(self._writes)
            await asyncio.gather(*tasks)
            self._writes.difference_update(tasks)

    async def _call_store(self, fn, *args):
        # One store call at a time, in submission order
        async with self._store_lock:
            loop = asyncio.get_event_loop()
            return await loop.run_in_executor(None, functools.partial(fn, *args))
