"""
Typed events published onto the session's queue.

Every producer (BLE notifications, the location stream, scheduler ticks)
publishes one of these; the session's single consumer task handles them in
arrival order.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SensorKind(str, Enum):
    HEART_RATE = "heart_rate"  # 0x2A37 Heart Rate Measurement
    RUNNING_SPEED_CADENCE = "rsc"  # 0x2A53 RSC Measurement
    CYCLING_POWER = "cps"  # 0x2A63 Cycling Power Measurement (Stryd over BLE)
    FOOTPOD_VENDOR = "footpod_vendor"  # any other foot-pod characteristic


@dataclass(frozen=True)
class GpsFix:
    lat: float
    lon: float
    timestamp: datetime
    altitude: Optional[float] = None  # metres
    speed: Optional[float] = None  # m/s; negative = unknown
    accuracy: Optional[float] = None  # horizontal accuracy radius, metres


@dataclass(frozen=True)
class SensorPayload:
    kind: SensorKind
    data: bytes
    timestamp: datetime


@dataclass(frozen=True)
class AccelerometerSample:
    ax: float
    ay: float
    az: float
    timestamp: datetime


@dataclass(frozen=True)
class BarometerSample:
    pressure_pa: float
    timestamp: datetime


@dataclass(frozen=True)
class StepCountSample:
    steps: int
    timestamp: datetime


@dataclass(frozen=True)
class ConnectionChanged:
    sensor: str  # "gps", "hrm", "footpod"
    connected: bool


@dataclass(frozen=True)
class MetricsTick:
    """1 Hz: advance duration and refresh running statistics."""


@dataclass(frozen=True)
class CheckpointTick:
    """Every few seconds: persist a snapshot of the activity."""
