"""Initial schema: flights, tracking, connections, change audit, notifications, devices.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "flights",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("airline_code", sa.String(8), nullable=False),
        sa.Column("flight_number", sa.String(16), nullable=False),
        sa.Column("scheduled_departure", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_arrival", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_departure", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_arrival", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_departure", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_arrival", sa.DateTime(timezone=True), nullable=True),
        sa.Column("origin_code", sa.String(8), nullable=False),
        sa.Column("origin_terminal", sa.String(16), nullable=True),
        sa.Column("origin_gate", sa.String(16), nullable=True),
        sa.Column("destination_code", sa.String(8), nullable=False),
        sa.Column("destination_terminal", sa.String(16), nullable=True),
        sa.Column("destination_gate", sa.String(16), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="SCHEDULED"),
        sa.Column("delay_minutes", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("aircraft_type", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "airline_code", "flight_number", "scheduled_departure",
            name="uq_flights_natural_key",
        ),
    )

    op.create_table(
        "flight_tracking",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column(
            "flight_id",
            sa.String(64),
            sa.ForeignKey("flights.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("notification_enabled", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("gate_change_alerts", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("delay_alerts", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("boarding_alerts", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column(
            "connection_risk_alerts", sa.Boolean, nullable=False, server_default=sa.text("1")
        ),
        sa.Column("tracked_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "flight_id", name="uq_tracking_user_flight"),
    )

    op.create_table(
        "connections",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column(
            "incoming_flight_id",
            sa.String(64),
            sa.ForeignKey("flights.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "outgoing_flight_id",
            sa.String(64),
            sa.ForeignKey("flights.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("risk_level", sa.String(16), nullable=True),
        sa.Column("buffer_minutes", sa.Float, nullable=True),
        sa.Column("raw_buffer_minutes", sa.Float, nullable=True),
        sa.Column("gate_change_minutes", sa.Float, nullable=True),
        sa.Column("risk_factors_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("incoming_gate", sa.String(16), nullable=True),
        sa.Column("outgoing_gate", sa.String(16), nullable=True),
        sa.Column("terminal_change", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id", "incoming_flight_id", "outgoing_flight_id",
            name="uq_connections_user_legs",
        ),
    )

    op.create_table(
        "flight_changes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "flight_id",
            sa.String(64),
            sa.ForeignKey("flights.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("field", sa.String(64), nullable=False, server_default=""),
        sa.Column("old_value_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("new_value_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("source", sa.String(32), nullable=False, server_default="provider"),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(64), nullable=False, server_default="", index=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("flight_id", sa.String(64), nullable=False, index=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("body", sa.Text, nullable=False, server_default=""),
        sa.Column("data_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
    )

    op.create_table(
        "device_tokens",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("token", sa.String(256), nullable=False),
        sa.Column("platform", sa.String(16), nullable=False, server_default="ios"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),
    )


def downgrade() -> None:
    op.drop_table("device_tokens")
    op.drop_table("notifications")
    op.drop_table("flight_changes")
    op.drop_table("connections")
    op.drop_table("flight_tracking")
    op.drop_table("flights")
