"""Tests for in-memory activity types."""
import pytest

from conftest import T0, at
from runtracker.tracking.geo import GeoPoint, haversine_m
from runtracker.tracking.types import Activity, ActivityStatus, SensorReading, SensorSource


def _hr(bpm, seconds=0):
    return SensorReading("a", at(seconds), SensorSource.HRM, heart_rate=bpm)


class TestSensorReading:
    def test_requires_some_data(self):
        with pytest.raises(ValueError):
            SensorReading("a", T0, SensorSource.GPS)

    def test_location_only_is_valid(self):
        reading = SensorReading("a", T0, SensorSource.GPS, location=GeoPoint(51.5, -0.1))
        assert reading.location.lat == 51.5


class TestActivity:
    def test_defaults(self):
        activity = Activity()
        assert activity.status is ActivityStatus.NOT_STARTED
        assert activity.duration_seconds == 0.0
        assert activity.name.startswith("Run on ")

    def test_ids_are_unique(self):
        assert Activity().id != Activity().id

    def test_averages_from_readings(self):
        activity = Activity(sensor_readings=[_hr(140), _hr(150, 1), _hr(161, 2)])
        activity.calculate_averages()
        assert activity.avg_heart_rate == 150
        assert activity.max_heart_rate == 161

    def test_kinds_without_readings_are_none(self):
        activity = Activity(avg_power=300, max_power=400, sensor_readings=[_hr(140)])
        activity.calculate_averages()
        assert activity.avg_power is None
        assert activity.max_power is None
        assert activity.avg_cadence is None

    def test_zero_values_ignored(self):
        readings = [
            SensorReading("a", T0, SensorSource.FOOTPOD, power=0, cadence=170),
            SensorReading("a", T0, SensorSource.FOOTPOD, power=250, cadence=172),
        ]
        activity = Activity(sensor_readings=readings)
        activity.calculate_averages()
        assert activity.avg_power == 250
        assert activity.avg_cadence == 171

    def test_average_pace_from_duration_and_distance(self):
        activity = Activity(duration_seconds=1500.0, distance_meters=5000.0)
        activity.calculate_averages()
        assert activity.avg_pace_seconds_per_km == 300

    def test_no_distance_no_pace(self):
        activity = Activity(duration_seconds=60.0)
        activity.calculate_averages()
        assert activity.avg_pace_seconds_per_km is None


class TestHaversine:
    def test_zero_for_same_point(self):
        p = GeoPoint(51.5, -0.1)
        assert haversine_m(p, p) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_m(GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0)) == pytest.approx(111195, rel=1e-3)

    def test_symmetric(self):
        a, b = GeoPoint(51.5, -0.1), GeoPoint(48.85, 2.35)
        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))
