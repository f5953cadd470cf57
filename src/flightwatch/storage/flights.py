"""Flight snapshot, tracking and change-audit storage."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from flightwatch.db.models import FlightChangeRow, FlightRow, TrackingRow
from flightwatch.errors import NotFoundError
from flightwatch.models import (
    AirportStop,
    ChangeRecord,
    ChangeType,
    FlightSnapshot,
    FlightStatus,
    TrackingRelationship,
)

ON_TIME_THRESHOLD_MINUTES = 15
MIN_HISTORY_SAMPLES = 5


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize to an aware UTC datetime (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Conversion helpers ---


def _apply_snapshot(row: FlightRow, snapshot: FlightSnapshot) -> None:
    row.airline_code = snapshot.airline_code
    row.flight_number = snapshot.flight_number
    row.scheduled_departure = as_utc(snapshot.scheduled_departure)
    row.scheduled_arrival = as_utc(snapshot.scheduled_arrival)
    row.estimated_departure = as_utc(snapshot.estimated_departure)
    row.estimated_arrival = as_utc(snapshot.estimated_arrival)
    row.actual_departure = as_utc(snapshot.actual_departure)
    row.actual_arrival = as_utc(snapshot.actual_arrival)
    row.origin_code = snapshot.origin.code
    row.origin_terminal = snapshot.origin.terminal
    row.origin_gate = snapshot.origin.gate
    row.destination_code = snapshot.destination.code
    row.destination_terminal = snapshot.destination.terminal
    row.destination_gate = snapshot.destination.gate
    row.status = snapshot.status.value
    row.delay_minutes = snapshot.delay_minutes or 0
    row.aircraft_type = snapshot.aircraft_type
    row.last_fetched_at = datetime.now(timezone.utc)


def _row_to_snapshot(row: FlightRow) -> FlightSnapshot:
    return FlightSnapshot(
        id=row.id,
        airline_code=row.airline_code,
        flight_number=row.flight_number,
        origin=AirportStop(
            code=row.origin_code, terminal=row.origin_terminal, gate=row.origin_gate
        ),
        destination=AirportStop(
            code=row.destination_code,
            terminal=row.destination_terminal,
            gate=row.destination_gate,
        ),
        scheduled_departure=as_utc(row.scheduled_departure),
        scheduled_arrival=as_utc(row.scheduled_arrival),
        estimated_departure=as_utc(row.estimated_departure),
        estimated_arrival=as_utc(row.estimated_arrival),
        actual_departure=as_utc(row.actual_departure),
        actual_arrival=as_utc(row.actual_arrival),
        status=FlightStatus(row.status),
        delay_minutes=row.delay_minutes,
        aircraft_type=row.aircraft_type,
    )


def _row_to_tracking(row: TrackingRow) -> TrackingRelationship:
    return TrackingRelationship(
        user_id=row.user_id,
        flight_id=row.flight_id,
        enabled=row.notification_enabled,
        gate_change_alerts=row.gate_change_alerts,
        delay_alerts=row.delay_alerts,
        boarding_alerts=row.boarding_alerts,
        connection_risk_alerts=row.connection_risk_alerts,
        tracked_at=as_utc(row.tracked_at),
    )


# --- Flight snapshots ---


def upsert_flight(session: Session, snapshot: FlightSnapshot) -> None:
    """Insert or update a snapshot keyed by its natural key.

    When the scheduled departure itself moved, the natural key no longer
    matches; the row is then found by its opaque id and re-keyed.
    """
    stmt = select(FlightRow).where(
        FlightRow.airline_code == snapshot.airline_code,
        FlightRow.flight_number == snapshot.flight_number,
        FlightRow.scheduled_departure == as_utc(snapshot.scheduled_departure),
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        row = session.get(FlightRow, snapshot.id)
    if row is None:
        row = FlightRow(id=snapshot.id)
        session.add(row)
    _apply_snapshot(row, snapshot)
    session.flush()


def get_flight(session: Session, flight_id: str) -> FlightSnapshot | None:
    """Load a flight by opaque id, or None if it was never stored."""
    row = session.get(FlightRow, flight_id)
    return _row_to_snapshot(row) if row is not None else None


def load_flight(session: Session, flight_id: str) -> FlightSnapshot:
    """Load a flight by opaque id. Raises NotFoundError if not found."""
    snapshot = get_flight(session, flight_id)
    if snapshot is None:
        raise NotFoundError("Flight", flight_id)
    return snapshot


def historical_on_time_rate(
    session: Session,
    airline_code: str,
    flight_number: str,
    before: datetime | None = None,
) -> float | None:
    """Share of past landed instances of a flight number that arrived on time.

    On time means less than 15 minutes late. Returns None with fewer than
    five landed instances on record, rather than guessing.
    """
    stmt = select(FlightRow.delay_minutes).where(
        FlightRow.airline_code == airline_code,
        FlightRow.flight_number == flight_number,
        FlightRow.status == FlightStatus.LANDED.value,
    )
    if before is not None:
        stmt = stmt.where(FlightRow.scheduled_departure < as_utc(before))
    delays = session.execute(stmt).scalars().all()
    if len(delays) < MIN_HISTORY_SAMPLES:
        return None
    on_time = sum(1 for d in delays if (d or 0) < ON_TIME_THRESHOLD_MINUTES)
    return on_time / len(delays)


# --- Tracking relationships ---


def track_flight(session: Session, tracking: TrackingRelationship) -> None:
    """Insert or update a user's tracking of a stored flight."""
    if session.get(FlightRow, tracking.flight_id) is None:
        raise NotFoundError("Flight", tracking.flight_id)

    stmt = select(TrackingRow).where(
        TrackingRow.user_id == tracking.user_id,
        TrackingRow.flight_id == tracking.flight_id,
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        row = TrackingRow(
            user_id=tracking.user_id,
            flight_id=tracking.flight_id,
            tracked_at=tracking.tracked_at,
        )
        session.add(row)
    row.notification_enabled = tracking.enabled
    row.gate_change_alerts = tracking.gate_change_alerts
    row.delay_alerts = tracking.delay_alerts
    row.boarding_alerts = tracking.boarding_alerts
    row.connection_risk_alerts = tracking.connection_risk_alerts
    session.flush()


def untrack_flight(session: Session, user_id: str, flight_id: str) -> None:
    """Remove a tracking relationship. Raises NotFoundError if absent."""
    stmt = select(TrackingRow).where(
        TrackingRow.user_id == user_id, TrackingRow.flight_id == flight_id
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Tracking", (user_id, flight_id))
    session.delete(row)
    session.flush()


def get_tracking(
    session: Session, user_id: str, flight_id: str
) -> TrackingRelationship | None:
    stmt = select(TrackingRow).where(
        TrackingRow.user_id == user_id, TrackingRow.flight_id == flight_id
    )
    row = session.execute(stmt).scalar_one_or_none()
    return _row_to_tracking(row) if row is not None else None


def list_alert_enabled_tracking(session: Session) -> list[TrackingRelationship]:
    """All tracking relationships with notifications enabled, oldest first."""
    stmt = (
        select(TrackingRow)
        .where(TrackingRow.notification_enabled.is_(True))
        .order_by(TrackingRow.tracked_at, TrackingRow.id)
    )
    rows = session.execute(stmt).scalars().all()
    return [_row_to_tracking(r) for r in rows]


# --- Change audit trail ---


def append_change(
    session: Session,
    change: ChangeRecord,
    detected_at: datetime | None = None,
    source: str = "provider",
) -> None:
    """Append one change record to the audit trail."""
    session.add(FlightChangeRow(
        flight_id=change.flight_id,
        type=change.type.value,
        field=change.field,
        old_value_json=json.dumps(change.old_value),
        new_value_json=json.dumps(change.new_value),
        description=change.description,
        source=source,
        detected_at=detected_at or datetime.now(timezone.utc),
    ))
    session.flush()


def list_recent_changes(
    session: Session, flight_id: str, limit: int = 10
) -> list[ChangeRecord]:
    """Most recent audit entries for a flight, newest first."""
    stmt = (
        select(FlightChangeRow)
        .where(FlightChangeRow.flight_id == flight_id)
        .order_by(FlightChangeRow.detected_at.desc(), FlightChangeRow.id.desc())
        .limit(limit)
    )
    rows = session.execute(stmt).scalars().all()
    return [
        ChangeRecord(
            flight_id=r.flight_id,
            type=ChangeType(r.type),
            field=r.field,
            old_value=json.loads(r.old_value_json),
            new_value=json.loads(r.new_value_json),
            description=r.description,
            detected_at=as_utc(r.detected_at),
        )
        for r in rows
    ]
