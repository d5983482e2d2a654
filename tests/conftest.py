"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from runtracker.models.activity import ActivityRecord, SensorReadingRecord  # noqa: F401
from runtracker.db.store import ActivityStore
from runtracker.models.profile import UserProfile

T0 = datetime(2025, 3, 1, 7, 30, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Timestamp `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    """Settable clock for sessions under test."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> ActivityStore:
    return ActivityStore(engine)


@pytest.fixture(name="profile")
def profile_fixture() -> UserProfile:
    return UserProfile(weight_kg=70.0, height_cm=175.0, age=30, biological_sex="male")


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()
