"""Connection storage: two-leg itineraries and their latest risk."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from flightwatch.db.models import ConnectionRow, FlightRow
from flightwatch.errors import NotFoundError
from flightwatch.models import (
    Connection,
    ConnectionRisk,
    FlightSnapshot,
    RiskFactor,
    RiskLevel,
)
from flightwatch.storage.flights import as_utc


def _row_to_connection(row: ConnectionRow) -> Connection:
    risk = None
    if row.risk_level is not None:
        risk = ConnectionRisk(
            level=RiskLevel(row.risk_level),
            buffer_minutes=row.buffer_minutes or 0.0,
            raw_buffer_minutes=row.raw_buffer_minutes or 0.0,
            gate_change_minutes=row.gate_change_minutes or 0.0,
            factors=[RiskFactor(**f) for f in json.loads(row.risk_factors_json)],
            confidence=row.confidence if row.confidence is not None else 0.0,
            calculated_at=as_utc(row.calculated_at) or as_utc(row.updated_at),
        )
    return Connection(
        id=row.id,
        user_id=row.user_id,
        incoming_flight_id=row.incoming_flight_id,
        outgoing_flight_id=row.outgoing_flight_id,
        risk=risk,
    )


def create_connection(
    session: Session, user_id: str, incoming_flight_id: str, outgoing_flight_id: str
) -> Connection:
    """Link two stored flights as a user's connection (idempotent).

    Raises:
        NotFoundError: If either leg is not stored.
        ValueError: If both legs are the same flight.
    """
    if incoming_flight_id == outgoing_flight_id:
        raise ValueError("A connection needs two different flights")
    for flight_id in (incoming_flight_id, outgoing_flight_id):
        if session.get(FlightRow, flight_id) is None:
            raise NotFoundError("Flight", flight_id)

    stmt = select(ConnectionRow).where(
        ConnectionRow.user_id == user_id,
        ConnectionRow.incoming_flight_id == incoming_flight_id,
        ConnectionRow.outgoing_flight_id == outgoing_flight_id,
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        row = ConnectionRow(
            user_id=user_id,
            incoming_flight_id=incoming_flight_id,
            outgoing_flight_id=outgoing_flight_id,
        )
        session.add(row)
        session.flush()
    return _row_to_connection(row)


def load_connection(session: Session, connection_id: int) -> Connection:
    """Load a connection by id. Raises NotFoundError if not found."""
    row = session.get(ConnectionRow, connection_id)
    if row is None:
        raise NotFoundError("Connection", connection_id)
    return _row_to_connection(row)


def find_connections_by_either_leg(session: Session, flight_id: str) -> list[Connection]:
    """All connections in which ``flight_id`` is the incoming or outgoing leg."""
    stmt = (
        select(ConnectionRow)
        .where(or_(
            ConnectionRow.incoming_flight_id == flight_id,
            ConnectionRow.outgoing_flight_id == flight_id,
        ))
        .order_by(ConnectionRow.id)
    )
    rows = session.execute(stmt).scalars().all()
    return [_row_to_connection(r) for r in rows]


def update_connection_risk(
    session: Session,
    connection_id: int,
    risk: ConnectionRisk,
    incoming: FlightSnapshot | None = None,
    outgoing: FlightSnapshot | None = None,
) -> None:
    """Overwrite the stored risk of a connection with a fresh assessment.

    When the legs are passed, the gates and terminal change used for the
    assessment are stored alongside it.
    """
    row = session.get(ConnectionRow, connection_id)
    if row is None:
        raise NotFoundError("Connection", connection_id)

    row.risk_level = risk.level.value
    row.buffer_minutes = risk.buffer_minutes
    row.raw_buffer_minutes = risk.raw_buffer_minutes
    row.gate_change_minutes = risk.gate_change_minutes
    row.risk_factors_json = json.dumps([f.model_dump(mode="json") for f in risk.factors])
    row.confidence = risk.confidence
    row.calculated_at = risk.calculated_at
    if incoming is not None and outgoing is not None:
        row.incoming_gate = incoming.destination.gate
        row.outgoing_gate = outgoing.origin.gate
        row.terminal_change = incoming.destination.terminal != outgoing.origin.terminal
    row.updated_at = datetime.now(timezone.utc)
    session.flush()
