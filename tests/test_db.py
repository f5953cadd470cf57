"""Tests for the engine helpers and ORM constraints."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

import flightwatch.db.engine as engine_mod
from flightwatch.db.engine import get_engine, init_db, reset_engine, session_scope
from flightwatch.db.models import DeviceTokenRow, FlightChangeRow, FlightRow, TrackingRow
from flightwatch.storage.flights import upsert_flight


@pytest.fixture
def fresh_engine(tmp_path, monkeypatch):
    """Singleton engine pointed at a throwaway SQLite file."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    reset_engine()
    yield
    reset_engine()


class TestEngine:
    def test_dev_default_is_sqlite_file(self, fresh_engine, tmp_path):
        engine = get_engine()
        assert engine.url.drivername == "sqlite"
        assert engine.url.database == f"{tmp_path}/flightwatch.db"
        assert get_engine() is engine

    def test_production_requires_url(self, fresh_engine, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_engine()

    def test_init_db_creates_tables(self, fresh_engine):
        engine = get_engine()
        init_db(engine)
        tables = set(inspect(engine).get_table_names())
        assert {
            "flights", "flight_tracking", "connections",
            "flight_changes", "notifications", "device_tokens",
        } <= tables

    def test_session_scope_commits_on_default_factory(self, fresh_engine, sample_flight):
        init_db(get_engine())
        with session_scope() as session:
            upsert_flight(session, sample_flight)
        with session_scope() as session:
            assert session.get(FlightRow, sample_flight.id) is not None

    def test_reset_unbinds_sessions(self, fresh_engine):
        get_engine()
        reset_engine()
        assert engine_mod._engine is None
        assert engine_mod.SessionLocal.kw.get("bind") is None


class TestSessionScope:
    def test_rolls_back_on_error(self, session_factory, sample_flight):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                upsert_flight(session, sample_flight)
                raise RuntimeError("abort")

        with session_scope(session_factory) as session:
            assert session.get(FlightRow, sample_flight.id) is None


class TestConstraints:
    def test_tracking_requires_flight(self, db_session):
        db_session.add(TrackingRow(user_id="u1", flight_id="missing"))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_tracking_unique_per_user(self, db_session, sample_flight):
        upsert_flight(db_session, sample_flight)
        db_session.add(TrackingRow(user_id="u1", flight_id=sample_flight.id))
        db_session.add(TrackingRow(user_id="u1", flight_id=sample_flight.id))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_natural_key_unique(self, db_session, sample_flight):
        upsert_flight(db_session, sample_flight)
        db_session.add(FlightRow(
            id="other-id",
            airline_code=sample_flight.airline_code,
            flight_number=sample_flight.flight_number,
            scheduled_departure=sample_flight.scheduled_departure,
            scheduled_arrival=sample_flight.scheduled_arrival,
            origin_code="SFO",
            destination_code="ORD",
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_deleting_flight_removes_trackers(self, db_session, sample_flight):
        upsert_flight(db_session, sample_flight)
        flight = db_session.get(FlightRow, sample_flight.id)
        flight.trackers.append(TrackingRow(user_id="u1"))
        db_session.flush()

        db_session.delete(flight)
        db_session.flush()
        assert db_session.query(TrackingRow).count() == 0

    def test_change_row_defaults(self, db_session, sample_flight):
        upsert_flight(db_session, sample_flight)
        row = FlightChangeRow(flight_id=sample_flight.id, type="GATE_CHANGE")
        db_session.add(row)
        db_session.flush()

        assert row.source == "provider"
        assert row.old_value_json == "{}"
        assert row.detected_at is not None

    def test_device_token_unique_per_user(self, db_session):
        db_session.add(DeviceTokenRow(user_id="u1", token="t"))
        db_session.add(DeviceTokenRow(user_id="u1", token="t"))
        with pytest.raises(IntegrityError):
            db_session.flush()
