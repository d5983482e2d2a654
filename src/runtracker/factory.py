"""Composition root: wires one ActivitySession from Settings."""
from typing import Optional

from runtracker.config import Settings, get_settings
from runtracker.db.engine import get_engine
from runtracker.db.store import ActivityStore
from runtracker.models.profile import UserProfile
from runtracker.sensors.ble import BleSensorHub, NullSensorHub
from runtracker.tracking.fusion import SensorFusionEngine
from runtracker.tracking.power import PowerCalculator
from runtracker.tracking.session import ActivitySession


def build_session(
    settings: Optional[Settings] = None,
    engine=None,
    hub=None,
    location=None,
    **overrides,
) -> ActivitySession:
    """
    Build a session with the configured sensors, profile and store.

    Args:
        settings: defaults to get_settings().
        engine: SQLAlchemy engine; defaults to the module-level engine.
        hub: SensorHub; defaults to BleSensorHub when any sensor address is
            configured, else NullSensorHub.
        location: LocationProvider (None = no GPS stream).
        **overrides: passed through to ActivitySession (clock, timers, ...).
    """
    settings = settings or get_settings()
    engine = engine if engine is not None else get_engine()

    if hub is None:
        if settings.hrm_address or settings.footpod_address:
            hub = BleSensorHub(settings.hrm_address, settings.footpod_address)
        else:
            hub = NullSensorHub()

    profile = UserProfile.from_settings(settings)
    kwargs = dict(
        fusion=SensorFusionEngine(
            jump_threshold_m=settings.gps_jump_threshold_m,
            max_consecutive_jumps=settings.gps_max_consecutive_jumps,
        ),
        power=PowerCalculator(profile),
        hub=hub,
        location=location,
        buffer_size=settings.reading_buffer_size,
        gps_distance_filter_m=settings.gps_distance_filter_m,
        footpod_power_stale_seconds=settings.footpod_power_stale_seconds,
        tick_seconds=settings.metrics_tick_seconds,
        checkpoint_seconds=settings.checkpoint_interval_seconds,
    )
    kwargs.update(overrides)
    return ActivitySession(ActivityStore(engine), profile, **kwargs)
