"""Tests for change detection between flight snapshots."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from flightwatch.changes import detect_changes
from flightwatch.models import AirportStop, ChangeType, FlightStatus


class TestDetectChanges:
    def test_identical_snapshots(self, sample_flight):
        assert detect_changes(sample_flight, sample_flight.model_copy()) == []

    def test_departure_gate_only(self, sample_flight):
        new = sample_flight.model_copy(
            update={"origin": AirportStop(code="SFO", terminal="3", gate="F20")}
        )
        changes = detect_changes(sample_flight, new)

        assert len(changes) == 1
        change = changes[0]
        assert change.type == ChangeType.GATE_CHANGE
        assert change.field == "departure_gate"
        assert change.old_value["gate"] == "F12"
        assert change.new_value["gate"] == "F20"
        assert change.description == "Departure gate changed from F12 to F20"
        assert change.flight_id == sample_flight.id

    def test_arrival_gate_assigned(self, sample_flight):
        old = sample_flight.model_copy(
            update={"destination": AirportStop(code="ORD", terminal="1")}
        )
        changes = detect_changes(old, sample_flight)

        assert [c.field for c in changes] == ["arrival_gate"]
        assert changes[0].description == "Arrival gate changed from none to B10"

    def test_delay_below_threshold(self, sample_flight):
        new = sample_flight.model_copy(update={"delay_minutes": 4})
        assert detect_changes(sample_flight, new) == []

    def test_delay_at_threshold(self, sample_flight):
        new = sample_flight.model_copy(update={"delay_minutes": 5})
        changes = detect_changes(sample_flight, new)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.DELAY_UPDATE
        assert changes[0].old_value == {"delay_minutes": 0}
        assert changes[0].new_value == {"delay_minutes": 5}

    def test_delay_decrease_counts(self, sample_flight):
        old = sample_flight.model_copy(update={"delay_minutes": 45})
        new = sample_flight.model_copy(update={"delay_minutes": 10})
        changes = detect_changes(old, new)
        assert [c.type for c in changes] == [ChangeType.DELAY_UPDATE]

    def test_scheduled_departure_change(self, sample_flight):
        later = sample_flight.scheduled_departure + timedelta(minutes=40)
        new = sample_flight.model_copy(update={"scheduled_departure": later})
        changes = detect_changes(sample_flight, new)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.TIME_CHANGE
        assert changes[0].field == "scheduled_departure"
        assert changes[0].new_value == {"scheduled_departure": later.isoformat()}

    def test_cancellation_emits_status_and_cancellation(self, sample_flight):
        new = sample_flight.model_copy(update={"status": FlightStatus.CANCELED})
        changes = detect_changes(sample_flight, new)

        assert [c.type for c in changes] == [
            ChangeType.STATUS_CHANGE,
            ChangeType.CANCELLATION,
        ]

    def test_already_canceled_no_second_cancellation(self, sample_flight):
        old = sample_flight.model_copy(update={"status": FlightStatus.CANCELED})
        assert detect_changes(old, old.model_copy()) == []

    def test_fixed_ordering(self, sample_flight):
        new = sample_flight.model_copy(update={
            "origin": AirportStop(code="SFO", terminal="3", gate="F1"),
            "destination": AirportStop(code="ORD", terminal="1", gate="B2"),
            "scheduled_departure": sample_flight.scheduled_departure + timedelta(hours=1),
            "scheduled_arrival": sample_flight.scheduled_arrival + timedelta(hours=1),
            "status": FlightStatus.CANCELED,
            "delay_minutes": 60,
        })
        changes = detect_changes(sample_flight, new)

        assert [(c.type, c.field) for c in changes] == [
            (ChangeType.GATE_CHANGE, "departure_gate"),
            (ChangeType.GATE_CHANGE, "arrival_gate"),
            (ChangeType.TIME_CHANGE, "scheduled_departure"),
            (ChangeType.TIME_CHANGE, "scheduled_arrival"),
            (ChangeType.STATUS_CHANGE, "status"),
            (ChangeType.DELAY_UPDATE, "delay_minutes"),
            (ChangeType.CANCELLATION, "status"),
        ]

    def test_overnight_flight_not_validated(self, make_flight):
        # arrival before departure in wall-clock terms is still just data
        old = make_flight(
            scheduled_departure=datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc),
            scheduled_arrival=datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc),
        )
        assert detect_changes(old, old.model_copy()) == []
