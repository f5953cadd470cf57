"""SQLAlchemy ORM models for all persistent tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class FlightRow(Base):
    __tablename__ = "flights"
    __table_args__ = (
        UniqueConstraint(
            "airline_code", "flight_number", "scheduled_departure",
            name="uq_flights_natural_key",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    airline_code: Mapped[str] = mapped_column(String(8))
    flight_number: Mapped[str] = mapped_column(String(16))
    scheduled_departure: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    scheduled_arrival: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    estimated_departure: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    estimated_arrival: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    actual_departure: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    actual_arrival: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    origin_code: Mapped[str] = mapped_column(String(8))
    origin_terminal: Mapped[str | None] = mapped_column(String(16), nullable=True)
    origin_gate: Mapped[str | None] = mapped_column(String(16), nullable=True)
    destination_code: Mapped[str] = mapped_column(String(8))
    destination_terminal: Mapped[str | None] = mapped_column(String(16), nullable=True)
    destination_gate: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="SCHEDULED")
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0)
    aircraft_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    last_fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    trackers: Mapped[list[TrackingRow]] = relationship(
        back_populates="flight", cascade="all, delete-orphan"
    )
    changes: Mapped[list[FlightChangeRow]] = relationship(back_populates="flight")


class TrackingRow(Base):
    __tablename__ = "flight_tracking"
    __table_args__ = (UniqueConstraint("user_id", "flight_id", name="uq_tracking_user_flight"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    flight_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("flights.id", ondelete="CASCADE"), index=True
    )
    notification_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    gate_change_alerts: Mapped[bool] = mapped_column(Boolean, default=True)
    delay_alerts: Mapped[bool] = mapped_column(Boolean, default=True)
    boarding_alerts: Mapped[bool] = mapped_column(Boolean, default=True)
    connection_risk_alerts: Mapped[bool] = mapped_column(Boolean, default=True)
    tracked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    flight: Mapped[FlightRow] = relationship(back_populates="trackers")


class ConnectionRow(Base):
    __tablename__ = "connections"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "incoming_flight_id", "outgoing_flight_id",
            name="uq_connections_user_legs",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    incoming_flight_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("flights.id", ondelete="CASCADE"), index=True
    )
    outgoing_flight_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("flights.id", ondelete="CASCADE"), index=True
    )
    risk_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    buffer_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    raw_buffer_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    gate_change_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk_factors_json: Mapped[str] = mapped_column(Text, default="[]")
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    incoming_gate: Mapped[str | None] = mapped_column(String(16), nullable=True)
    outgoing_gate: Mapped[str | None] = mapped_column(String(16), nullable=True)
    terminal_change: Mapped[bool] = mapped_column(Boolean, default=False)
    calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class FlightChangeRow(Base):
    """Append-only audit trail of detected changes."""

    __tablename__ = "flight_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flight_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("flights.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[str] = mapped_column(String(32))
    field: Mapped[str] = mapped_column(String(64), default="")
    old_value_json: Mapped[str] = mapped_column(Text, default="{}")
    new_value_json: Mapped[str] = mapped_column(Text, default="{}")
    description: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(32), default="provider")
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, index=True
    )

    flight: Mapped[FlightRow] = relationship(back_populates="changes")


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), default="", index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    flight_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(256))
    body: Mapped[str] = mapped_column(Text, default="")
    data_json: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(16), default="PENDING")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class DeviceTokenRow(Base):
    __tablename__ = "device_tokens"
    __table_args__ = (UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    token: Mapped[str] = mapped_column(String(256))
    platform: Mapped[str] = mapped_column(String(16), default="ios")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
