"""Tests for the notification queue."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from flightwatch.db.engine import session_scope
from flightwatch.errors import QueueFullError
from flightwatch.models import (
    DelayData,
    DeliveryStatus,
    NotificationJob,
    NotificationPriority,
    NotificationType,
)
from flightwatch.notify.gateway import LoggingPushGateway, SendResult
from flightwatch.notify.queue import NotificationQueue
from flightwatch.storage.notifications import list_notifications, register_device_token


def _job(priority=NotificationPriority.NORMAL, user_id="u1", **overrides) -> NotificationJob:
    values = dict(
        user_id=user_id,
        flight_id="UA1234-20260301",
        type=NotificationType.DELAY,
        title="Delay Updated",
        body="Your flight UA1234 delay is now 40 minutes.",
        data=DelayData(airline_code="UA", flight_number="1234", delay_minutes=40),
        priority=priority,
    )
    values.update(overrides)
    return NotificationJob(**values)


@pytest.fixture
def gateway():
    return LoggingPushGateway()


@pytest.fixture
def queue(gateway, session_factory):
    q = NotificationQueue(gateway, session_factory=session_factory, max_concurrency=2)
    yield q
    if q.is_running:
        q.stop()
    q.wait_idle(5)


def _records(session_factory, user_id="u1"):
    with session_scope(session_factory) as session:
        return list_notifications(session, user_id)


class TestOrdering:
    def test_high_priority_jumps_normal_but_not_high(self, queue):
        order = []
        queue.register_handler(NotificationType.DELAY, lambda job: order.append(job.title))
        queue.max_concurrency = 1

        queue.enqueue(_job(title="n1"))
        queue.enqueue(_job(title="n2"))
        queue.enqueue(_job(NotificationPriority.HIGH, title="h1"))
        queue.enqueue(_job(NotificationPriority.LOW, title="l1"))
        queue.enqueue(_job(NotificationPriority.HIGH, title="h2"))

        while queue.get_stats()["queue_size"]:
            queue.dispatch_tick()
            assert queue.wait_idle(5)

        assert order == ["h1", "h2", "n1", "n2", "l1"]

    def test_enqueue_returns_job_id(self, queue):
        job = _job()
        assert queue.enqueue(job) == job.id
        assert job.id.startswith("notif_")


class TestBounds:
    def test_queue_full_rejects(self, gateway, session_factory):
        queue = NotificationQueue(gateway, session_factory=session_factory, max_queue_size=2)
        queue.enqueue(_job())
        queue.enqueue(_job())
        with pytest.raises(QueueFullError):
            queue.enqueue(_job(NotificationPriority.HIGH))
        assert queue.get_stats()["queue_size"] == 2

    def test_concurrency_ceiling(self, queue):
        release = threading.Event()
        started = threading.Semaphore(0)

        def blocking(job):
            started.release()
            release.wait(5)

        queue.register_handler(NotificationType.DELAY, blocking)
        for _ in range(5):
            queue.enqueue(_job())

        assert queue.dispatch_tick() == 2
        assert started.acquire(timeout=5) and started.acquire(timeout=5)
        assert queue.get_stats() == {
            "queue_size": 3, "is_processing": False, "concurrent_jobs": 2,
        }
        assert queue.dispatch_tick() == 0

        release.set()
        assert queue.wait_idle(5)
        assert queue.get_stats()["concurrent_jobs"] == 0
        assert queue.dispatch_tick() == 2

    def test_clear_drops_waiting_jobs(self, queue):
        queue.enqueue(_job())
        queue.enqueue(_job(NotificationPriority.HIGH))
        assert queue.clear() == 2
        assert queue.get_stats()["queue_size"] == 0


class TestDelivery:
    def test_sent_to_all_devices(self, queue, gateway, seed, session_factory):
        seed(register_device_token, "u1", "token-a")
        seed(register_device_token, "u1", "token-b")

        status = queue.deliver(_job())

        assert status == DeliveryStatus.SENT
        assert [token for token, _ in gateway.sent] == ["token-a", "token-b"]
        records = _records(session_factory)
        assert len(records) == 1
        assert records[0].status == DeliveryStatus.SENT
        assert records[0].sent_at is not None

    def test_non_ios_devices_skipped(self, queue, gateway, seed, session_factory):
        seed(register_device_token, "u1", "android-token", platform="android")

        assert queue.deliver(_job()) == DeliveryStatus.NO_DEVICES
        assert not gateway.sent
        assert _records(session_factory)[0].status == DeliveryStatus.NO_DEVICES

    def test_no_devices(self, queue, session_factory):
        assert queue.deliver(_job()) == DeliveryStatus.NO_DEVICES

        record = _records(session_factory)[0]
        assert record.status == DeliveryStatus.NO_DEVICES
        assert record.failure_reason == "No device tokens registered"
        assert record.failed_at is not None
        assert record.sent_at is None

    def test_partial_failure_is_failed(self, seed, session_factory):
        gateway = MagicMock()
        gateway.send.side_effect = [
            SendResult(success=True),
            SendResult(success=False, error="Unregistered"),
        ]
        queue = NotificationQueue(gateway, session_factory=session_factory)
        seed(register_device_token, "u1", "token-a")
        seed(register_device_token, "u1", "token-b")

        assert queue.deliver(_job()) == DeliveryStatus.FAILED
        record = _records(session_factory)[0]
        assert record.status == DeliveryStatus.FAILED
        assert record.failure_reason == "Unregistered"
        assert gateway.send.call_count == 2

    def test_gateway_exception_is_failed(self, seed, session_factory):
        gateway = MagicMock()
        gateway.send.side_effect = RuntimeError("socket closed")
        queue = NotificationQueue(gateway, session_factory=session_factory)
        seed(register_device_token, "u1", "token-a")

        assert queue.deliver(_job()) == DeliveryStatus.FAILED
        assert "socket closed" in _records(session_factory)[0].failure_reason

    def test_oversized_payload_fails_fast(self, seed, session_factory):
        gateway = MagicMock()
        queue = NotificationQueue(gateway, session_factory=session_factory)
        seed(register_device_token, "u1", "token-a")

        assert queue.deliver(_job(body="x" * 5000)) == DeliveryStatus.FAILED
        gateway.send.assert_not_called()
        assert "exceeds maximum" in _records(session_factory)[0].failure_reason

    def test_priority_passed_to_gateway(self, seed, session_factory):
        gateway = MagicMock()
        gateway.send.return_value = SendResult(success=True)
        queue = NotificationQueue(gateway, session_factory=session_factory)
        seed(register_device_token, "u1", "token-a")

        queue.deliver(_job(NotificationPriority.HIGH))
        assert gateway.send.call_args.kwargs["priority"] == NotificationPriority.HIGH


class TestHandlers:
    def test_default_handler_for_unregistered_type(self, queue, gateway, seed, session_factory):
        seed(register_device_token, "u1", "token-a")
        queue.enqueue(_job(type=NotificationType.FLIGHT_UPDATE, data=None))

        queue.dispatch_tick()
        assert queue.wait_idle(5)

        assert _records(session_factory)[0].status == DeliveryStatus.SENT
        assert len(gateway.sent) == 1

    def test_handler_exception_does_not_leak_slot(self, queue):
        queue.register_handler(NotificationType.DELAY, MagicMock(side_effect=RuntimeError("boom")))
        queue.enqueue(_job())

        queue.dispatch_tick()
        assert queue.wait_idle(5)
        assert queue.get_stats()["concurrent_jobs"] == 0


class TestLifecycle:
    def test_start_stop(self, queue):
        queue.start()
        assert queue.get_stats()["is_processing"] is True
        queue.start()  # no-op
        queue.stop()
        assert queue.get_stats()["is_processing"] is False
        queue.stop()  # no-op

    def test_no_dispatch_after_stop(self, gateway, session_factory):
        queue = NotificationQueue(
            gateway, session_factory=session_factory, dispatch_interval=3600,
        )
        queue.start()
        queue.stop()
        queue.enqueue(_job())

        # a timer tick that was already running when stop() returned
        assert queue.dispatch_tick() == 0
        assert queue.get_stats() == {
            "queue_size": 1, "is_processing": False, "concurrent_jobs": 0,
        }
        assert queue._executor is None
        assert not gateway.sent

    def test_restart_resumes_dispatch(self, gateway, seed, session_factory):
        seed(register_device_token, "u1", "token-a")
        queue = NotificationQueue(
            gateway, session_factory=session_factory, dispatch_interval=3600,
        )
        queue.start()
        queue.stop()
        queue.enqueue(_job())
        queue.start()
        try:
            for _ in range(100):
                if gateway.sent:
                    break
                time.sleep(0.05)
        finally:
            queue.stop()
        assert queue.wait_idle(5)
        assert len(gateway.sent) == 1

    def test_running_loop_drains(self, gateway, seed, session_factory):
        seed(register_device_token, "u1", "token-a")
        queue = NotificationQueue(
            gateway, session_factory=session_factory, max_concurrency=1, dispatch_interval=0.05,
        )
        queue.enqueue(_job())
        queue.start()
        try:
            for _ in range(100):
                if gateway.sent:
                    break
                time.sleep(0.05)
        finally:
            queue.stop()
        assert queue.wait_idle(5)
        assert len(gateway.sent) == 1
