"""Tests for the sensor fusion engine."""
import pytest

from conftest import at
from runtracker.tracking.fusion import (
    STRIDE_LENGTH_M,
    SensorFusionEngine,
    low_pass,
    pressure_to_elevation,
)
from runtracker.tracking.geo import GeoPoint, haversine_m

LAT, LON = 51.5000, -0.1200
STEP = 0.0001  # ≈ 11 m of latitude
JUMP = 0.001  # ≈ 111 m of latitude


def _enter_fallback(engine: SensorFusionEngine) -> None:
    engine.update_with_gps(LAT, LON, None, None, at(0))
    for i in range(1, engine.max_consecutive_jumps + 1):
        engine.update_with_gps(LAT + i * JUMP, LON, None, None, at(i))
    assert engine.fallback_mode


@pytest.fixture(name="engine")
def engine_fixture():
    return SensorFusionEngine()


class TestHelpers:
    def test_low_pass_seeds_with_first_sample(self):
        assert low_pass(None, 5.0, 0.1) == 5.0

    def test_low_pass_blends(self):
        assert low_pass(10.0, 20.0, 0.1) == pytest.approx(11.0)

    def test_sea_level_pressure_is_zero_elevation(self):
        assert pressure_to_elevation(101325.0) == pytest.approx(0.0)

    def test_lower_pressure_is_higher(self):
        assert pressure_to_elevation(100000.0) > 100


class TestGpsDistance:
    def test_first_fix_adds_no_distance(self, engine):
        report = engine.update_with_gps(LAT, LON, None, None, at(0))
        assert engine.total_distance == 0.0
        assert report.position_updated
        assert report.interval_seconds is None

    def test_accumulates_haversine(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        report = engine.update_with_gps(LAT + STEP, LON, None, None, at(4))
        expected = haversine_m(GeoPoint(LAT, LON), GeoPoint(LAT + STEP, LON))
        assert engine.total_distance == pytest.approx(expected)
        assert report.distance_changed
        assert report.interval_seconds == 4.0

    def test_jump_excluded_and_counted(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        report = engine.update_with_gps(LAT + JUMP, LON, None, None, at(1))
        assert report.gps_jump
        assert engine.total_distance == 0.0
        assert engine.gps_error_count == 1

    def test_accepted_fix_resets_error_count(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        engine.update_with_gps(LAT + JUMP, LON, None, None, at(1))
        engine.update_with_gps(LAT + JUMP + STEP, LON, None, None, at(2))
        assert engine.gps_error_count == 0
        assert engine.total_distance > 0

    def test_fallback_after_consecutive_jumps(self, engine):
        _enter_fallback(engine)
        assert engine.gps_error_count == 5

    def test_four_jumps_do_not_trigger_fallback(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        for i in range(1, 5):
            engine.update_with_gps(LAT + i * JUMP, LON, None, None, at(i))
        assert not engine.fallback_mode

    def test_fallback_ignores_gps_distance_until_reset(self, engine):
        _enter_fallback(engine)
        last_lat = LAT + 5 * JUMP
        engine.update_with_gps(last_lat + STEP, LON, None, None, at(10))
        assert engine.fallback_mode
        assert engine.total_distance == 0.0

        engine.reset()
        assert not engine.fallback_mode
        assert engine.gps_error_count == 0

    def test_speed_filtered_and_pace_derived(self, engine):
        engine.update_with_gps(LAT, LON, None, 4.0, at(0))
        assert engine.filtered_speed == 4.0
        assert engine.pace_sec_per_km == 250

    def test_negative_speed_ignored(self, engine):
        report = engine.update_with_gps(LAT, LON, None, -1.0, at(0))
        assert not report.speed_updated
        assert engine.filtered_speed is None
        assert engine.pace_sec_per_km is None


class TestElevation:
    def test_small_changes_never_counted(self, engine):
        engine.update_with_gps(LAT, LON, 100.0, None, at(0))
        engine.update_with_gps(LAT + STEP, LON, 104.0, None, at(1))
        # filtered: 100 → 100.4, a 0.4 m step
        assert engine.elevation_gain == 0.0
        assert engine.elevation_loss == 0.0

    def test_gain_counted_above_threshold(self, engine):
        engine.update_with_gps(LAT, LON, 100.0, None, at(0))
        engine.update_with_gps(LAT + STEP, LON, 104.0, None, at(1))
        engine.update_with_gps(LAT + 2 * STEP, LON, 110.0, None, at(2))
        assert engine.elevation_gain == pytest.approx(0.96)

    def test_loss_counted(self, engine):
        engine.update_with_gps(LAT, LON, 100.0, None, at(0))
        engine.update_with_gps(LAT + STEP, LON, 80.0, None, at(1))
        assert engine.elevation_loss == pytest.approx(2.0)
        assert engine.elevation_gain == 0.0

    def test_gain_and_loss_never_decrease(self, engine):
        gains, losses = [], []
        for i, h in enumerate([100, 120, 90, 130, 80, 100, 100, 140]):
            engine.update_with_gps(LAT + i * STEP, LON, float(h), None, at(i))
            gains.append(engine.elevation_gain)
            losses.append(engine.elevation_loss)
        assert gains == sorted(gains)
        assert losses == sorted(losses)

    def test_missing_elevation_skipped(self, engine):
        report = engine.update_with_gps(LAT, LON, None, None, at(0))
        assert engine.filtered_elevation is None
        assert not report.elevation_changed

    def test_barometer_updates_elevation(self, engine):
        engine.update_with_barometer(101325.0, at(0))
        assert engine.filtered_elevation == pytest.approx(0.0)

    def test_barometer_ignores_non_positive_pressure(self, engine):
        engine.update_with_barometer(0.0, at(0))
        assert engine.filtered_elevation is None


class TestFallbackSources:
    def test_accelerometer_ignored_outside_fallback(self, engine):
        engine.update_with_accelerometer(0.0, 20.0, 0.0, at(0))
        assert engine.total_distance == 0.0

    def test_accelerometer_counts_rising_edges(self, engine):
        _enter_fallback(engine)
        engine.update_with_accelerometer(0.0, 20.0, 0.0, at(10))
        engine.update_with_accelerometer(0.0, 20.0, 0.0, at(10.2))  # still above
        engine.update_with_accelerometer(0.0, 9.8, 0.0, at(10.4))
        engine.update_with_accelerometer(0.0, 20.0, 0.0, at(10.6))
        assert engine.total_distance == pytest.approx(2 * STRIDE_LENGTH_M)
        assert engine.filtered_speed is not None

    def test_step_counter_first_sample_is_baseline(self, engine):
        _enter_fallback(engine)
        engine.update_with_step_counter(1000, at(10))
        assert engine.total_distance == 0.0
        engine.update_with_step_counter(1010, at(15))
        assert engine.total_distance == pytest.approx(10 * STRIDE_LENGTH_M)
        assert engine.filtered_speed == pytest.approx(10 * STRIDE_LENGTH_M / 5)

    def test_step_counter_ignored_outside_fallback(self, engine):
        engine.update_with_step_counter(1000, at(0))
        engine.update_with_step_counter(1100, at(10))
        assert engine.total_distance == 0.0


class TestFootpodOverride:
    def test_footpod_distance_overrides_gps(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        engine.update_with_gps(LAT + STEP, LON, None, None, at(1))
        engine.update_with_footpod(250.0, 300, at(1))
        assert engine.total_distance == 250.0
        assert engine.pace_sec_per_km == 300

    def test_footpod_pace_alone_keeps_gps_distance(self, engine):
        engine.update_with_gps(LAT, LON, None, None, at(0))
        engine.update_with_gps(LAT + STEP, LON, None, 2.0, at(1))
        engine.update_with_footpod(None, 310, at(1))
        assert engine.total_distance > 0
        assert engine.pace_sec_per_km == 310
