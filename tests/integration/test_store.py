"""Integration tests for ActivityStore against in-memory SQLite."""
from datetime import timedelta, timezone

import pytest
from sqlmodel import select

from conftest import T0, at
from runtracker.db.store import ActivityNotFoundError
from runtracker.models.activity import ActivityRecord, SensorReadingRecord
from runtracker.tracking.geo import GeoPoint
from runtracker.tracking.types import Activity, ActivityStatus, SensorReading, SensorSource


def _activity(**kwargs) -> Activity:
    return Activity(name="Morning Run", start_time=T0, **kwargs)


def _gps(activity_id, seconds, lat=51.5):
    return SensorReading(
        activity_id, at(seconds), SensorSource.GPS, location=GeoPoint(lat, -0.12), elevation_meters=12.0
    )


class TestActivityStore:
    def test_insert_and_get(self, store):
        activity = _activity()
        store.insert(activity)

        loaded = store.get(activity.id)
        assert loaded.id == activity.id
        assert loaded.name == "Morning Run"
        assert loaded.status is ActivityStatus.NOT_STARTED
        assert loaded.start_time == T0

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_update_overwrites(self, store):
        activity = _activity()
        store.insert(activity)
        activity.status = ActivityStatus.IN_PROGRESS
        activity.distance_meters = 1234.5
        activity.route_points = [GeoPoint(51.5, -0.12), GeoPoint(51.501, -0.12)]
        store.update(activity)

        loaded = store.get(activity.id)
        assert loaded.status is ActivityStatus.IN_PROGRESS
        assert loaded.distance_meters == 1234.5
        assert loaded.route_points == activity.route_points

    def test_update_missing_raises(self, store):
        with pytest.raises(ActivityNotFoundError):
            store.update(_activity())

    def test_batch_insert_and_query_in_order(self, store):
        activity = _activity()
        store.insert(activity)
        readings = [
            _gps(activity.id, 2),
            SensorReading(activity.id, at(1), SensorSource.HRM, heart_rate=150),
            SensorReading(activity.id, at(3), SensorSource.FOOTPOD, power=250, cadence=172),
        ]
        store.batch_insert(readings)

        loaded = store.query(activity.id)
        assert [r.timestamp for r in loaded] == [at(1), at(2), at(3)]
        assert loaded[0].heart_rate == 150
        assert loaded[1].location == GeoPoint(51.5, -0.12)
        assert loaded[2].source is SensorSource.FOOTPOD

    def test_batch_insert_empty_is_noop(self, store, test_session):
        store.batch_insert([])
        assert test_session.exec(select(SensorReadingRecord)).all() == []

    def test_delete_removes_activity_and_readings(self, store, test_session):
        activity = _activity()
        store.insert(activity)
        store.batch_insert([_gps(activity.id, 1), _gps(activity.id, 2)])

        store.delete(activity.id)

        assert store.get(activity.id) is None
        assert test_session.exec(select(SensorReadingRecord)).all() == []
        assert test_session.exec(select(ActivityRecord)).all() == []

    def test_delete_missing_is_ignored(self, store):
        store.delete("nope")

    def test_list_newest_first(self, store):
        for day in (1, 3, 2):
            store.insert(Activity(name=f"Run {day}", start_time=T0.replace(day=day)))
        names = [a.name for a in store.list_activities()]
        assert names == ["Run 3", "Run 2", "Run 1"]
        assert len(store.list_activities(limit=2)) == 2

    def test_route_points_only_gps(self, store):
        activity = _activity()
        store.insert(activity)
        store.batch_insert([
            _gps(activity.id, 1),
            SensorReading(activity.id, at(2), SensorSource.HRM, heart_rate=140),
            _gps(activity.id, 3, lat=51.501),
        ])
        route = store.route_points(activity.id)
        assert [r.location.lat for r in route] == [51.5, 51.501]


class TestTimestamps:
    def test_times_come_back_as_aware_utc(self, store):
        activity = _activity()
        store.insert(activity)
        activity.end_time = at(1800)
        store.update(activity)
        store.batch_insert([_gps(activity.id, 5)])

        loaded = store.get(activity.id)
        reading = store.query(activity.id)[0]
        for ts in (loaded.start_time, loaded.end_time, reading.timestamp):
            assert ts.tzinfo is not None
            assert ts.utcoffset() == timedelta(0)
        assert loaded.end_time == at(1800)
        assert reading.timestamp == at(5)

    def test_other_offsets_are_stored_as_utc(self, store, test_session):
        plus_two = timezone(timedelta(hours=2))
        activity = Activity(name="Abroad", start_time=T0.astimezone(plus_two))
        store.insert(activity)

        row = test_session.get(ActivityRecord, activity.id)
        assert row.start_time_utc == T0
        assert row.start_time_utc.utcoffset() == timedelta(0)
