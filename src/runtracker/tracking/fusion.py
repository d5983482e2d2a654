"""
Sensor fusion: one authoritative distance/elevation/speed/pace estimate from
several disagreeing, noisy and intermittently failing sources.

Source priority:
  - distance: foot-pod total when present, else GPS haversine accumulation,
    else (fallback mode) accelerometer / step-counter stride model
  - pace: foot-pod pace when present, else 1000 / filtered speed
  - elevation and route: GPS altitude and barometer, never the foot-pod

Fallback mode: after `max_consecutive_jumps` GPS fixes in a row jump more than
`jump_threshold_m`, GPS distance is distrusted for the rest of the session
(until reset()) and the accelerometer / step counter take over distance.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from runtracker.tracking.geo import GeoPoint, haversine_m

logger = logging.getLogger(__name__)

ALPHA_LOW_PASS = 0.1
ELEVATION_NOISE_M = 0.5
STRIDE_LENGTH_M = 0.7
STEP_THRESHOLD_MPS2 = 12.0
DEFAULT_STEP_SPEED_MPS = 1.5
BAROMETER_WEIGHT = 0.85

# Barometric formula constants
SEA_LEVEL_PRESSURE_PA = 101325.0
STANDARD_TEMPERATURE_K = 288.15
GAS_CONSTANT = 8.31432
STANDARD_GRAVITY = 9.80665
AIR_MOLAR_MASS = 0.0289644


def low_pass(current: Optional[float], new: float, alpha: float) -> float:
    """Exponential smoothing; the first sample seeds the filter."""
    if current is None:
        return new
    return current * (1 - alpha) + new * alpha


def pressure_to_elevation(pressure_pa: float) -> float:
    """h = -(R·T)/(M·g) · ln(P/P0)"""
    return (
        -(STANDARD_TEMPERATURE_K * GAS_CONSTANT)
        / (AIR_MOLAR_MASS * STANDARD_GRAVITY)
        * math.log(pressure_pa / SEA_LEVEL_PRESSURE_PA)
    )


@dataclass
class DeltaReport:
    """What a single fusion update changed."""

    position_updated: bool = False
    distance_changed: bool = False
    elevation_changed: bool = False
    speed_updated: bool = False
    gps_jump: bool = False
    fallback_mode: bool = False
    distance_meters: float = 0.0
    elevation_gain_meters: float = 0.0
    elevation_loss_meters: float = 0.0
    speed_mps: Optional[float] = None
    vertical_speed_mps: Optional[float] = None
    pace_seconds_per_km: Optional[int] = None
    # Filtered elevation change since the previous sample (unthresholded)
    elevation_delta_m: float = 0.0
    # Seconds since the previous fix of the same source, None on the first
    interval_seconds: Optional[float] = None


@dataclass
class FusionState:
    last_position: Optional[GeoPoint] = None
    last_position_time: Optional[datetime] = None
    last_elevation: Optional[float] = None
    filtered_elevation: Optional[float] = None
    filtered_speed: Optional[float] = None
    filtered_vertical_speed: Optional[float] = None

    accumulated_distance: float = 0.0
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0

    gps_error_count: int = 0
    fallback_mode: bool = False

    last_step_count: Optional[int] = None
    last_step_count_time: Optional[datetime] = None
    accel_above_threshold: bool = False
    last_accel_step_time: Optional[datetime] = None

    footpod_distance: Optional[float] = None
    footpod_pace: Optional[int] = None


class SensorFusionEngine:
    """Per-session fusion state machine. Not thread-safe: the session serializes calls."""

    def __init__(
        self,
        jump_threshold_m: float = 50.0,
        max_consecutive_jumps: int = 5,
        alpha: float = ALPHA_LOW_PASS,
    ):
        self.jump_threshold_m = jump_threshold_m
        self.max_consecutive_jumps = max_consecutive_jumps
        self.alpha = alpha
        self.state = FusionState()

    def reset(self) -> None:
        self.state = FusionState()

    # ─── Getters ──────────────────────────────────────────────────────────────

    @property
    def total_distance(self) -> float:
        if self.state.footpod_distance is not None:
            return self.state.footpod_distance
        return self.state.accumulated_distance

    @property
    def elevation_gain(self) -> float:
        return self.state.elevation_gain

    @property
    def elevation_loss(self) -> float:
        return self.state.elevation_loss

    @property
    def filtered_speed(self) -> Optional[float]:
        return self.state.filtered_speed

    @property
    def vertical_speed(self) -> Optional[float]:
        return self.state.filtered_vertical_speed

    @property
    def filtered_elevation(self) -> Optional[float]:
        return self.state.filtered_elevation

    @property
    def pace_sec_per_km(self) -> Optional[int]:
        if self.state.footpod_pace is not None:
            return self.state.footpod_pace
        speed = self.state.filtered_speed
        if speed is not None and speed > 0:
            return round(1000.0 / speed)
        return None

    @property
    def fallback_mode(self) -> bool:
        return self.state.fallback_mode

    @property
    def gps_error_count(self) -> int:
        return self.state.gps_error_count

    # ─── Updates ──────────────────────────────────────────────────────────────

    def update_with_gps(
        self,
        lat: float,
        lon: float,
        elevation: Optional[float],
        speed: Optional[float],
        timestamp: datetime,
    ) -> DeltaReport:
        st = self.state
        report = DeltaReport()
        position = GeoPoint(lat, lon)

        if st.last_position_time is not None:
            report.interval_seconds = (timestamp - st.last_position_time).total_seconds()

        if st.last_position is not None:
            delta = haversine_m(st.last_position, position)
            if delta > self.jump_threshold_m:
                st.gps_error_count += 1
                report.gps_jump = True
                logger.info("GPS jump rejected: %.1f m (%d in a row)", delta, st.gps_error_count)
                if st.gps_error_count >= self.max_consecutive_jumps and not st.fallback_mode:
                    st.fallback_mode = True
                    logger.warning(
                        "%d consecutive GPS jumps, switching to fallback mode",
                        st.gps_error_count,
                    )
            else:
                st.gps_error_count = 0
                if not st.fallback_mode:
                    st.accumulated_distance += delta
                    report.distance_changed = delta > 0

        if elevation is not None:
            self._update_elevation(elevation, self.alpha, report)

        if speed is not None and speed >= 0:
            st.filtered_speed = low_pass(st.filtered_speed, speed, self.alpha)
            report.speed_updated = True

        st.last_position = position
        st.last_position_time = timestamp
        report.position_updated = True
        return self._finish(report)

    def update_with_accelerometer(
        self, ax: float, ay: float, az: float, timestamp: datetime
    ) -> DeltaReport:
        """Threshold step detector; only drives distance in fallback mode."""
        st = self.state
        report = DeltaReport()
        if not st.fallback_mode:
            return self._finish(report)

        magnitude = math.sqrt(ax * ax + ay * ay + az * az)
        above = magnitude > STEP_THRESHOLD_MPS2
        is_step = above and not st.accel_above_threshold
        st.accel_above_threshold = above
        if not is_step:
            return self._finish(report)

        st.accumulated_distance += STRIDE_LENGTH_M
        report.distance_changed = True

        speed = DEFAULT_STEP_SPEED_MPS
        if st.last_accel_step_time is not None:
            interval = (timestamp - st.last_accel_step_time).total_seconds()
            report.interval_seconds = interval
            if interval > 0:
                speed = STRIDE_LENGTH_M / interval
        st.last_accel_step_time = timestamp

        st.filtered_speed = low_pass(st.filtered_speed, speed, self.alpha)
        report.speed_updated = True
        return self._finish(report)

    def update_with_barometer(self, pressure_pa: float, timestamp: datetime) -> DeltaReport:
        report = DeltaReport()
        if pressure_pa <= 0:
            logger.debug("Ignoring non-positive pressure %.1f Pa", pressure_pa)
            return self._finish(report)
        elevation = pressure_to_elevation(pressure_pa)
        self._update_elevation(elevation, self.alpha * BAROMETER_WEIGHT, report)
        return self._finish(report)

    def update_with_step_counter(self, steps: int, timestamp: datetime) -> DeltaReport:
        """Stride-length distance from cumulative step counts; fallback mode only."""
        st = self.state
        report = DeltaReport()
        if not st.fallback_mode:
            return self._finish(report)

        if st.last_step_count is not None:
            step_diff = steps - st.last_step_count
            if step_diff > 0:
                distance = step_diff * STRIDE_LENGTH_M
                st.accumulated_distance += distance
                report.distance_changed = True

                if st.last_step_count_time is not None:
                    elapsed = (timestamp - st.last_step_count_time).total_seconds()
                    report.interval_seconds = elapsed
                    if elapsed > 0:
                        st.filtered_speed = low_pass(
                            st.filtered_speed, distance / elapsed, self.alpha
                        )
                        report.speed_updated = True

        st.last_step_count = steps
        st.last_step_count_time = timestamp
        return self._finish(report)

    def update_with_footpod(
        self,
        distance: Optional[float],
        pace: Optional[int],
        timestamp: datetime,
    ) -> DeltaReport:
        """Foot-pod distance/pace override the accumulated estimates."""
        st = self.state
        report = DeltaReport()
        if distance is not None:
            report.distance_changed = distance != st.footpod_distance
            st.footpod_distance = distance
        if pace is not None:
            st.footpod_pace = pace
        return self._finish(report)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _update_elevation(self, elevation: float, alpha: float, report: DeltaReport) -> None:
        st = self.state
        st.filtered_elevation = low_pass(st.filtered_elevation, elevation, alpha)

        if st.last_elevation is not None:
            change = st.filtered_elevation - st.last_elevation
            report.elevation_delta_m = change

            if abs(change) > ELEVATION_NOISE_M:
                report.elevation_changed = True
                if change > 0:
                    st.elevation_gain += change
                else:
                    st.elevation_loss += -change

                if report.interval_seconds is not None and report.interval_seconds > 0:
                    st.filtered_vertical_speed = low_pass(
                        st.filtered_vertical_speed,
                        change / report.interval_seconds,
                        alpha,
                    )

        st.last_elevation = st.filtered_elevation

    def _finish(self, report: DeltaReport) -> DeltaReport:
        st = self.state
        report.fallback_mode = st.fallback_mode
        report.distance_meters = self.total_distance
        report.elevation_gain_meters = st.elevation_gain
        report.elevation_loss_meters = st.elevation_loss
        report.speed_mps = st.filtered_speed
        report.vertical_speed_mps = st.filtered_vertical_speed
        report.pace_seconds_per_km = self.pace_sec_per_km
        return report
