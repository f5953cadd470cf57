"""In-process notification queue with bounded concurrent delivery.

Jobs wait in two FIFO tiers: high priority, and everything else. Each
dispatch tick moves as many jobs as there are free delivery slots onto a
thread pool; a job's outcome is persisted on its NotificationRecord as
SENT, FAILED or NO_DEVICES.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor

from sqlalchemy.orm import Session, sessionmaker

from flightwatch.db.engine import session_scope
from flightwatch.errors import PayloadTooLargeError, QueueFullError
from flightwatch.models import (
    DeliveryStatus,
    NotificationJob,
    NotificationPriority,
    NotificationType,
)
from flightwatch.notify.gateway import PushGateway, mask_token
from flightwatch.notify.payload import build_payload, validate_payload
from flightwatch.scheduling import RepeatingTimer
from flightwatch.storage.notifications import (
    create_notification,
    list_device_tokens,
    update_delivery_status,
)

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[NotificationJob], None]

NO_DEVICES_REASON = "No device tokens registered"


class NotificationQueue:
    """Prioritized job queue drained by a periodic dispatch tick."""

    def __init__(
        self,
        gateway: PushGateway,
        session_factory: sessionmaker[Session] | None = None,
        max_concurrency: int = 5,
        dispatch_interval: float = 2.0,
        max_queue_size: int = 10_000,
        platforms: Iterable[str] = ("ios",),
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.gateway = gateway
        self.session_factory = session_factory
        self.max_concurrency = max_concurrency
        self.dispatch_interval = dispatch_interval
        self.max_queue_size = max_queue_size
        self.platforms = list(platforms)

        self._high: deque[NotificationJob] = deque()
        self._normal: deque[NotificationJob] = deque()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._concurrent = 0
        self._executor: ThreadPoolExecutor | None = None
        self._timer: RepeatingTimer | None = None
        self._stopped = False
        self._handlers: dict[NotificationType, NotificationHandler] = {}
        self._register_default_handlers()

    # --- Producer side ---

    def enqueue(self, job: NotificationJob) -> str:
        """Queue a job and return its id. Never blocks.

        High-priority jobs go behind earlier high-priority jobs but ahead of
        all normal and low ones.

        Raises:
            QueueFullError: If ``max_queue_size`` jobs are already waiting.
        """
        with self._lock:
            if len(self._high) + len(self._normal) >= self.max_queue_size:
                raise QueueFullError(self.max_queue_size)
            if job.priority == NotificationPriority.HIGH:
                self._high.append(job)
            else:
                self._normal.append(job)
            size = len(self._high) + len(self._normal)

        logger.info(
            "Enqueued %s %s for user %s (queue size %d)",
            job.type.value, job.id, job.user_id, size,
        )
        return job.id

    def register_handler(self, type: NotificationType, handler: NotificationHandler) -> None:
        self._handlers[type] = handler
        logger.debug("Handler registered for %s", type.value)

    def clear(self) -> int:
        """Drop every waiting job; in-flight deliveries are unaffected."""
        with self._lock:
            dropped = len(self._high) + len(self._normal)
            self._high.clear()
            self._normal.clear()
        if dropped:
            logger.warning("Cleared %d waiting notification(s)", dropped)
        return dropped

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._timer is not None:
            logger.warning("Notification queue already running")
            return
        with self._lock:
            self._stopped = False
        self._timer = RepeatingTimer(
            self.dispatch_interval, self.dispatch_tick, name="notification-dispatch"
        )
        self._timer.start()
        logger.info(
            "Notification queue started (every %gs, max %d concurrent)",
            self.dispatch_interval, self.max_concurrency,
        )

    def stop(self) -> None:
        """Stop dispatching. In-flight deliveries run to completion.

        Once this returns no further job leaves the queue until ``start()``,
        including from a timer tick that was already under way.
        """
        if self._timer is None:
            logger.warning("Notification queue is not running")
            return
        self._timer.stop()
        self._timer = None
        with self._lock:
            self._stopped = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
        logger.info("Notification queue stopped")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no delivery is in flight. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._concurrent == 0, timeout)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "queue_size": len(self._high) + len(self._normal),
                "is_processing": self._timer is not None,
                "concurrent_jobs": self._concurrent,
            }

    # --- Dispatch ---

    def dispatch_tick(self) -> int:
        """Hand up to the free number of slots of waiting jobs to the pool.

        A queue that was never started can be drained by calling this
        directly; a stopped one dispatches nothing. Returns the number of
        jobs dispatched.
        """
        with self._lock:
            if self._stopped:
                return 0
            slots = self.max_concurrency - self._concurrent
            batch: list[NotificationJob] = []
            while slots > 0 and (self._high or self._normal):
                batch.append(self._high.popleft() if self._high else self._normal.popleft())
                slots -= 1
            self._concurrent += len(batch)
            if batch and self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_concurrency, thread_name_prefix="notify"
                )
            executor = self._executor

        dispatched = 0
        rejected: list[NotificationJob] = []
        for job in batch:
            try:
                future = executor.submit(self._process_job, job)
            except RuntimeError:
                # pool shut down by a concurrent stop()
                rejected.append(job)
                continue
            future.add_done_callback(self._job_done)
            dispatched += 1

        if rejected:
            with self._idle:
                for job in reversed(rejected):
                    tier = self._high if job.priority == NotificationPriority.HIGH else self._normal
                    tier.appendleft(job)
                self._concurrent -= len(rejected)
                self._idle.notify_all()
        return dispatched

    def _job_done(self, _future: Future) -> None:
        with self._idle:
            self._concurrent -= 1
            self._idle.notify_all()

    def _process_job(self, job: NotificationJob) -> None:
        start = time.monotonic()
        handler = self._handlers.get(job.type)
        try:
            if handler is None:
                logger.warning("No handler for %s, using default delivery", job.type.value)
                self.deliver(job)
            else:
                handler(job)
        except Exception:
            logger.exception("Failed to process notification %s", job.id)
            return
        logger.debug(
            "Processed notification %s in %.0f ms", job.id, (time.monotonic() - start) * 1000
        )

    # --- Delivery ---

    def deliver(self, job: NotificationJob) -> DeliveryStatus:
        """Persist, send to every eligible device, and record the outcome."""
        payload = build_payload(job)

        with session_scope(self.session_factory) as session:
            notification_id = create_notification(session, job)
            tokens = [
                d.token for d in list_device_tokens(session, job.user_id, self.platforms)
            ]

        if not tokens:
            logger.info(
                "No %s devices for user %s; notification %s not sent",
                "/".join(self.platforms), job.user_id, job.id,
            )
            return self._record(
                notification_id, DeliveryStatus.NO_DEVICES, NO_DEVICES_REASON
            )

        try:
            validate_payload(payload)
        except (ValueError, PayloadTooLargeError) as exc:
            logger.error("Notification %s not sendable: %s", job.id, exc)
            return self._record(notification_id, DeliveryStatus.FAILED, str(exc))

        failure_reason = None
        for token in tokens:
            try:
                result = self.gateway.send(token, payload, priority=job.priority)
            except Exception as exc:
                logger.warning(
                    "Gateway raised for %s: %s", mask_token(token), exc, exc_info=True
                )
                failure_reason = f"Gateway error: {exc}"
                continue
            if not result.success:
                failure_reason = result.error or "Unknown gateway error"
                logger.warning(
                    "Push of %s to %s failed: %s", job.id, mask_token(token), failure_reason
                )

        if failure_reason is None:
            status = DeliveryStatus.SENT
        else:
            status = DeliveryStatus.FAILED
        logger.info(
            "Notification %s %s (%d device(s))", job.id, status.value, len(tokens)
        )
        return self._record(notification_id, status, failure_reason)

    def _record(
        self,
        notification_id: int,
        status: DeliveryStatus,
        failure_reason: str | None = None,
    ) -> DeliveryStatus:
        with session_scope(self.session_factory) as session:
            update_delivery_status(session, notification_id, status, failure_reason)
        return status

    def _register_default_handlers(self) -> None:
        def gate_change(job: NotificationJob) -> None:
            status = self.deliver(job)
            logger.info(
                "Gate change %s handled: %s -> %s (%s)", job.id,
                getattr(job.data, "old_gate", None), getattr(job.data, "new_gate", None),
                status.value,
            )

        def delay(job: NotificationJob) -> None:
            status = self.deliver(job)
            logger.info(
                "Delay %s handled: %s min (%s)", job.id,
                getattr(job.data, "delay_minutes", None), status.value,
            )

        def boarding(job: NotificationJob) -> None:
            status = self.deliver(job)
            logger.info("Boarding %s handled (%s)", job.id, status.value)

        def canceled(job: NotificationJob) -> None:
            status = self.deliver(job)
            logger.info("Cancellation %s handled (%s)", job.id, status.value)

        def connection_risk(job: NotificationJob) -> None:
            status = self.deliver(job)
            logger.info(
                "Connection risk %s handled: %s -> %s (%s)", job.id,
                getattr(job.data, "previous_level", None),
                getattr(job.data, "current_level", None),
                status.value,
            )

        self.register_handler(NotificationType.GATE_CHANGE, gate_change)
        self.register_handler(NotificationType.DELAY, delay)
        self.register_handler(NotificationType.BOARDING, boarding)
        self.register_handler(NotificationType.FLIGHT_CANCELED, canceled)
        self.register_handler(NotificationType.CONNECTION_RISK, connection_risk)
