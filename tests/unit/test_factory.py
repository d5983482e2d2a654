"""Tests for settings and session composition."""
from unittest.mock import MagicMock

from runtracker.config import Settings
from runtracker.factory import build_session
from runtracker.scheduler.jobs import NullTimers, TrackerTimers
from runtracker.sensors.ble import BleSensorHub, NullSensorHub


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestSettings:
    def test_defaults(self):
        settings = _settings()
        assert settings.reading_buffer_size == 10
        assert settings.metrics_tick_seconds == 1.0
        assert settings.checkpoint_interval_seconds == 5.0
        assert settings.gps_jump_threshold_m == 50.0
        assert settings.gps_max_consecutive_jumps == 5

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("GPS_JUMP_THRESHOLD_M", "75")
        assert _settings().gps_jump_threshold_m == 75.0


class TestBuildSession:
    def test_without_sensors_uses_null_hub(self):
        session = build_session(settings=_settings(), engine=MagicMock())
        assert isinstance(session.hub, NullSensorHub)
        assert isinstance(session.timers, TrackerTimers)

    def test_configured_sensors_use_ble_hub(self):
        session = build_session(
            settings=_settings(hrm_address="AA:BB", footpod_address="CC:DD"),
            engine=MagicMock(),
        )
        assert isinstance(session.hub, BleSensorHub)
        assert session.hub.hrm_address == "AA:BB"
        assert session.hub.footpod_address == "CC:DD"

    def test_settings_flow_into_collaborators(self):
        settings = _settings(
            gps_jump_threshold_m=80.0,
            reading_buffer_size=25,
            profile_weight_kg=60.0,
            checkpoint_interval_seconds=10.0,
        )
        session = build_session(settings=settings, engine=MagicMock())
        assert session.fusion.jump_threshold_m == 80.0
        assert session.buffer.max_size == 25
        assert session.power.profile.weight_kg == 60.0
        assert session.timers.checkpoint_seconds == 10.0

    def test_overrides_passed_through(self):
        timers = NullTimers()
        session = build_session(settings=_settings(), engine=MagicMock(), timers=timers)
        assert session.timers is timers
