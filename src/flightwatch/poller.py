"""Flight poller: fetch, diff, persist, rescore connections, enqueue alerts."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session, sessionmaker

from flightwatch.changes import detect_changes
from flightwatch.db.engine import session_scope
from flightwatch.errors import QueueFullError
from flightwatch.fetch.provider import FlightDataProvider
from flightwatch.models import (
    BoardingData,
    CancellationData,
    ChangeRecord,
    ChangeType,
    Connection,
    ConnectionRisk,
    ConnectionRiskData,
    DelayData,
    FlightSnapshot,
    FlightStatus,
    GateChangeData,
    NotificationJob,
    NotificationPriority,
    NotificationType,
    RiskLevel,
    TrackingRelationship,
    utcnow,
)
from flightwatch.notify.queue import NotificationQueue
from flightwatch.risk import calculate_risk
from flightwatch.scheduling import RepeatingTimer
from flightwatch.storage.connections import (
    find_connections_by_either_leg,
    update_connection_risk,
)
from flightwatch.storage.flights import (
    append_change,
    get_flight,
    get_tracking,
    historical_on_time_rate,
    list_alert_enabled_tracking,
    load_flight,
    upsert_flight,
)

logger = logging.getLogger(__name__)

HIGH_PRIORITY_DELAY_MINUTES = 30


@dataclass
class PollResult:
    total_flights: int = 0
    updated_flights: int = 0
    changes_detected: int = 0
    errors: int = 0
    notifications_enqueued: int = 0


# --- Change -> notification mapping ---


def _delay_priority(delay_minutes: int) -> NotificationPriority:
    if delay_minutes > HIGH_PRIORITY_DELAY_MINUTES:
        return NotificationPriority.HIGH
    return NotificationPriority.NORMAL


def build_job_for_change(
    change: ChangeRecord,
    flight: FlightSnapshot,
    tracking: TrackingRelationship,
) -> NotificationJob | None:
    """Turn one change into a job for one tracker, or None if it is not wanted.

    Cancellations ignore the per-alert flags; everything else needs the
    matching opt-in. Status changes only notify on entering BOARDING.
    """
    if not tracking.enabled:
        return None
    ident = flight.ident
    ref = {"airline_code": flight.airline_code, "flight_number": flight.flight_number}
    base = {"user_id": tracking.user_id, "flight_id": flight.id}

    if change.type == ChangeType.GATE_CHANGE:
        if not tracking.gate_change_alerts:
            return None
        side = "arrival" if change.field == "arrival_gate" else "departure"
        old_gate = change.old_value.get("gate")
        new_gate = change.new_value.get("gate")
        return NotificationJob(
            **base,
            type=NotificationType.GATE_CHANGE,
            title=f"{side.capitalize()} Gate Changed",
            body=(
                f"Your flight {ident} {side} gate has changed from "
                f"{old_gate or 'TBD'} to {new_gate or 'TBD'}."
            ),
            data=GateChangeData(
                **ref, side=side, old_gate=old_gate, new_gate=new_gate,
                terminal=change.new_value.get("terminal"),
            ),
            priority=NotificationPriority.NORMAL,
        )

    if change.type == ChangeType.DELAY_UPDATE:
        if not tracking.delay_alerts:
            return None
        delay = int(change.new_value.get("delay_minutes") or 0)
        return NotificationJob(
            **base,
            type=NotificationType.DELAY,
            title="Delay Updated",
            body=f"Your flight {ident} delay is now {delay} minutes.",
            data=DelayData(**ref, delay_minutes=delay),
            priority=_delay_priority(delay),
        )

    if change.type == ChangeType.TIME_CHANGE:
        if not tracking.delay_alerts:
            return None
        departure = change.field == "scheduled_departure"
        return NotificationJob(
            **base,
            type=NotificationType.DELAY,
            title="Schedule Change",
            body=f"Your flight {ident} schedule has been updated.",
            data=DelayData(
                **ref,
                delay_minutes=flight.delay_minutes,
                schedule_change=True,
                old_departure=change.old_value.get(change.field) if departure else None,
                new_departure=change.new_value.get(change.field) if departure else None,
            ),
            priority=_delay_priority(flight.delay_minutes),
        )

    if change.type == ChangeType.STATUS_CHANGE:
        if change.new_value.get("status") != FlightStatus.BOARDING.value:
            return None
        if not tracking.boarding_alerts:
            return None
        gate = flight.origin.gate
        return NotificationJob(
            **base,
            type=NotificationType.BOARDING,
            title="Boarding Started",
            body=(
                f"Your flight {ident} is now boarding"
                + (f" at gate {gate}." if gate else ".")
            ),
            data=BoardingData(**ref, gate=gate),
            priority=NotificationPriority.HIGH,
        )

    if change.type == ChangeType.CANCELLATION:
        return NotificationJob(
            **base,
            type=NotificationType.FLIGHT_CANCELED,
            title="Flight Canceled",
            body=f"Your flight {ident} has been canceled. Please check for rebooking options.",
            data=CancellationData(**ref),
            priority=NotificationPriority.HIGH,
        )

    return None


def build_connection_risk_job(
    connection: Connection,
    incoming: FlightSnapshot,
    outgoing: FlightSnapshot,
    previous: RiskLevel | None,
    risk: ConnectionRisk,
) -> NotificationJob:
    """Job telling a connection's owner that its risk level moved."""
    worse = previous is None or risk.level.severity > previous.severity
    if risk.level in (RiskLevel.HIGH_RISK, RiskLevel.CRITICAL):
        priority = NotificationPriority.HIGH
    else:
        priority = NotificationPriority.NORMAL
    level_text = risk.level.value.replace("_", " ").lower()
    return NotificationJob(
        user_id=connection.user_id,
        flight_id=incoming.id,
        type=NotificationType.CONNECTION_RISK,
        title="Connection at Risk" if worse else "Connection Status Updated",
        body=(
            f"Your connection from {incoming.ident} to {outgoing.ident} is now "
            f"{level_text} ({risk.buffer_minutes:.0f} min to make it)."
        ),
        data=ConnectionRiskData(
            airline_code=outgoing.airline_code,
            flight_number=outgoing.flight_number,
            incoming_flight_id=incoming.id,
            outgoing_flight_id=outgoing.id,
            previous_level=previous,
            current_level=risk.level,
            buffer_minutes=risk.buffer_minutes,
        ),
        priority=priority,
    )


def _level_changed(previous: RiskLevel | None, current: RiskLevel) -> bool:
    # A first assessment only counts as news when it is not ON_TRACK.
    if previous is None:
        return current != RiskLevel.ON_TRACK
    return previous != current


# --- Poller ---


class FlightPoller:
    """Periodically refreshes every tracked flight from the provider.

    Each flight is handled in its own transaction; notification jobs are
    only enqueued once that transaction has committed.
    """

    def __init__(
        self,
        provider: FlightDataProvider,
        queue: NotificationQueue,
        session_factory: sessionmaker[Session] | None = None,
        interval: float = 60.0,
    ):
        self.provider = provider
        self.queue = queue
        self.session_factory = session_factory
        self.interval = interval
        self._timer: RepeatingTimer | None = None
        self.last_result: PollResult | None = None
        self._cycle_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Begin polling: one cycle now, then every ``interval`` seconds."""
        if self._timer is not None:
            logger.warning("Flight poller already running, ignoring start")
            return
        self._timer = RepeatingTimer(self.interval, self.poll_once, name="flight-poller")
        self._timer.start()
        logger.info("Flight poller started (every %gs)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        """Stop scheduling cycles and wait up to ``timeout`` for one in progress."""
        if self._timer is None:
            logger.warning("Flight poller not running, ignoring stop")
            return
        self._timer.stop()
        self._timer.join(timeout)
        if self._timer.is_alive:
            logger.warning("Poll cycle still running after %ss", timeout)
        self._timer = None
        logger.info("Flight poller stopped")

    def poll_once(self) -> PollResult:
        """Run one full cycle. Never raises.

        Cycles are serialized: a call made while another cycle runs waits
        for it to finish.
        """
        with self._cycle_lock:
            start = time.monotonic()
            result = PollResult()
            try:
                self._poll(result)
            except Exception:
                logger.exception("Poll cycle failed")
            self.last_result = result
        logger.info(
            "Poll completed in %.0f ms: %s", (time.monotonic() - start) * 1000, asdict(result)
        )
        return result

    def _poll(self, result: PollResult) -> None:
        with session_scope(self.session_factory) as session:
            tracking = list_alert_enabled_tracking(session)

        by_flight: dict[str, list[TrackingRelationship]] = {}
        for t in tracking:
            by_flight.setdefault(t.flight_id, []).append(t)
        result.total_flights = len(by_flight)
        logger.info("Polling %d tracked flight(s)", len(by_flight))

        for flight_id, trackers in by_flight.items():
            try:
                outcome = self._process_flight(flight_id, trackers)
            except Exception:
                result.errors += 1
                logger.warning("Error processing flight %s", flight_id, exc_info=True)
                continue
            if outcome is None:
                result.errors += 1
                continue

            changes, jobs = outcome
            if changes:
                result.updated_flights += 1
                result.changes_detected += len(changes)
            for job in jobs:
                try:
                    self.queue.enqueue(job)
                except QueueFullError as exc:
                    logger.error("Dropping %s for user %s: %s", job.type.value, job.user_id, exc)
                    continue
                result.notifications_enqueued += 1

    def _process_flight(
        self, flight_id: str, trackers: list[TrackingRelationship]
    ) -> tuple[list[ChangeRecord], list[NotificationJob]] | None:
        """Refresh one flight. Returns None when the provider does not know it."""
        fresh = self.provider.fetch_flight(flight_id)
        if fresh is None:
            logger.warning("Flight %s not found at provider, skipping", flight_id)
            return None

        with session_scope(self.session_factory) as session:
            stored = get_flight(session, flight_id)
            if stored is None:
                upsert_flight(session, fresh)
                return [], []

            changes = detect_changes(stored, fresh)
            if not changes:
                return [], []

            upsert_flight(session, fresh)
            detected_at = utcnow()
            for change in changes:
                append_change(session, change, detected_at=detected_at)
                change.detected_at = detected_at
                logger.info("Flight %s: %s", fresh.ident, change.description)

            jobs = []
            for tracking in trackers:
                for change in changes:
                    job = build_job_for_change(change, fresh, tracking)
                    if job is not None:
                        jobs.append(job)
            jobs.extend(self._recompute_connections(session, fresh.id))

        return changes, jobs

    def _recompute_connections(self, session: Session, flight_id: str) -> list[NotificationJob]:
        connections = find_connections_by_either_leg(session, flight_id)
        if connections:
            logger.info("Rescoring %d connection(s) for flight %s", len(connections), flight_id)

        jobs = []
        for connection in connections:
            try:
                incoming = load_flight(session, connection.incoming_flight_id)
                outgoing = load_flight(session, connection.outgoing_flight_id)
                on_time_rate = historical_on_time_rate(
                    session, incoming.airline_code, incoming.flight_number,
                    before=incoming.scheduled_departure,
                )
                risk = calculate_risk(incoming, outgoing, on_time_rate)
                update_connection_risk(session, connection.id, risk, incoming, outgoing)
            except Exception:
                logger.warning(
                    "Failed to rescore connection %s", connection.id, exc_info=True
                )
                continue

            previous = connection.risk.level if connection.risk is not None else None
            logger.info(
                "Connection %s risk %s -> %s (buffer %.1f min)",
                connection.id, previous.value if previous else None,
                risk.level.value, risk.buffer_minutes,
            )
            if not _level_changed(previous, risk.level):
                continue
            if not self._wants_connection_alerts(session, connection):
                continue
            jobs.append(build_connection_risk_job(connection, incoming, outgoing, previous, risk))
        return jobs

    @staticmethod
    def _wants_connection_alerts(session: Session, connection: Connection) -> bool:
        for leg in (connection.incoming_flight_id, connection.outgoing_flight_id):
            tracking = get_tracking(session, connection.user_id, leg)
            if tracking is not None and tracking.enabled and tracking.connection_risk_alerts:
                return True
        return False
