"""Change detection between two snapshots of the same flight."""

from __future__ import annotations

from datetime import datetime

from flightwatch.models import ChangeRecord, ChangeType, FlightSnapshot, FlightStatus

# Delay swings smaller than this are provider noise, not news.
DELAY_THRESHOLD_MINUTES = 5


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def detect_changes(old: FlightSnapshot, new: FlightSnapshot) -> list[ChangeRecord]:
    """Diff ``old`` against ``new`` and return typed change records.

    Ordering is fixed: departure gate, arrival gate, scheduled departure,
    scheduled arrival, status, delay, cancellation. A move into CANCELED
    yields both a STATUS_CHANGE and a CANCELLATION record; consumers treat
    the latter as the stronger signal.
    """
    flight_id = new.id
    changes: list[ChangeRecord] = []

    old_dep_gate, new_dep_gate = old.origin.gate, new.origin.gate
    if old_dep_gate != new_dep_gate:
        changes.append(ChangeRecord(
            flight_id=flight_id,
            type=ChangeType.GATE_CHANGE,
            field="departure_gate",
            old_value={"gate": old_dep_gate, "terminal": old.origin.terminal},
            new_value={"gate": new_dep_gate, "terminal": new.origin.terminal},
            description=(
                f"Departure gate changed from {old_dep_gate or 'none'} "
                f"to {new_dep_gate or 'none'}"
            ),
        ))

    old_arr_gate, new_arr_gate = old.destination.gate, new.destination.gate
    if old_arr_gate != new_arr_gate:
        changes.append(ChangeRecord(
            flight_id=flight_id,
            type=ChangeType.GATE_CHANGE,
            field="arrival_gate",
            old_value={"gate": old_arr_gate, "terminal": old.destination.terminal},
            new_value={"gate": new_arr_gate, "terminal": new.destination.terminal},
            description=(
                f"Arrival gate changed from {old_arr_gate or 'none'} "
                f"to {new_arr_gate or 'none'}"
            ),
        ))

    for field, label in (
        ("scheduled_departure", "departure"),
        ("scheduled_arrival", "arrival"),
    ):
        old_time = getattr(old, field)
        new_time = getattr(new, field)
        if new_time is not None and old_time != new_time:
            changes.append(ChangeRecord(
                flight_id=flight_id,
                type=ChangeType.TIME_CHANGE,
                field=field,
                old_value={field: _iso(old_time)},
                new_value={field: _iso(new_time)},
                description=(
                    f"Scheduled {label} changed from {_iso(old_time)} to {_iso(new_time)}"
                ),
            ))

    if old.status != new.status:
        changes.append(ChangeRecord(
            flight_id=flight_id,
            type=ChangeType.STATUS_CHANGE,
            field="status",
            old_value={"status": old.status.value},
            new_value={"status": new.status.value},
            description=f"Flight status changed from {old.status.value} to {new.status.value}",
        ))

    old_delay = old.delay_minutes or 0
    new_delay = new.delay_minutes or 0
    if abs(old_delay - new_delay) >= DELAY_THRESHOLD_MINUTES:
        changes.append(ChangeRecord(
            flight_id=flight_id,
            type=ChangeType.DELAY_UPDATE,
            field="delay_minutes",
            old_value={"delay_minutes": old_delay},
            new_value={"delay_minutes": new_delay},
            description=f"Delay changed from {old_delay} to {new_delay} minutes",
        ))

    if new.status == FlightStatus.CANCELED and old.status != FlightStatus.CANCELED:
        changes.append(ChangeRecord(
            flight_id=flight_id,
            type=ChangeType.CANCELLATION,
            field="status",
            old_value={"status": old.status.value},
            new_value={"status": FlightStatus.CANCELED.value},
            description="Flight has been canceled",
        ))

    return changes
