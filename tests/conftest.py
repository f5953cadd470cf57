"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flightwatch.db.engine import session_scope
from flightwatch.db.models import Base
from flightwatch.models import AirportStop, FlightSnapshot, FlightStatus


@pytest.fixture
def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory for components that open their own transactions."""
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Yield a SQLAlchemy session per test, rolled back after."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_flight():
    """Build a FlightSnapshot with sensible defaults; keyword args override."""

    def _make(**overrides) -> FlightSnapshot:
        values = dict(
            id="UA1234-20260301",
            airline_code="UA",
            flight_number="1234",
            origin=AirportStop(code="SFO", terminal="3", gate="F12"),
            destination=AirportStop(code="ORD", terminal="1", gate="B10"),
            scheduled_departure=datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc),
            scheduled_arrival=datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc),
            status=FlightStatus.SCHEDULED,
            delay_minutes=0,
            aircraft_type="B738",
        )
        values.update(overrides)
        return FlightSnapshot(**values)

    return _make


@pytest.fixture
def sample_flight(make_flight):
    return make_flight()


@pytest.fixture
def connecting_flight(make_flight):
    """Outgoing leg from ORD, 90 minutes after the sample flight lands, same gate."""
    return make_flight(
        id="UA567-20260301",
        flight_number="567",
        origin=AirportStop(code="ORD", terminal="1", gate="B10"),
        destination=AirportStop(code="LGA", terminal="B", gate="40"),
        scheduled_departure=datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc),
        scheduled_arrival=datetime(2026, 3, 1, 18, 45, tzinfo=timezone.utc),
    )


@pytest.fixture
def seed(session_factory):
    """Run a callable against a committed session, e.g. ``seed(upsert_flight, f)``."""

    def _seed(fn, *args, **kwargs):
        with session_scope(session_factory) as session:
            return fn(session, *args, **kwargs)

    return _seed
