"""Push gateways: the black box that delivers a payload to one device."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import requests

from flightwatch.errors import PayloadTooLargeError
from flightwatch.models import NotificationPriority
from flightwatch.notify.payload import payload_size, validate_payload

logger = logging.getLogger(__name__)

# APNs priorities: 10 delivers immediately, 5 at the device's convenience.
_APNS_PRIORITY = {
    NotificationPriority.HIGH: 10,
    NotificationPriority.NORMAL: 10,
    NotificationPriority.LOW: 5,
}


@dataclass
class SendResult:
    success: bool
    error: str | None = None
    payload_size: int = 0


def mask_token(token: str) -> str:
    """Shorten a device token for logging."""
    if len(token) <= 16:
        return f"{token[:8]}..."
    return f"{token[:8]}...{token[-8:]}"


@runtime_checkable
class PushGateway(Protocol):
    """Delivers one payload to one device token."""

    def send(
        self,
        device_token: str,
        payload: dict[str, Any],
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> SendResult:
        ...


class HttpPushGateway:
    """POSTs each delivery as JSON to a push relay service."""

    def __init__(self, url: str, timeout: float = 10, api_key: str | None = None):
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    def send(
        self,
        device_token: str,
        payload: dict[str, Any],
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> SendResult:
        body = {
            "device_token": device_token,
            "payload": payload,
            "priority": _APNS_PRIORITY[priority],
            "push_type": "alert",
        }
        try:
            resp = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Push to %s failed: %s", mask_token(device_token), exc)
            return SendResult(success=False, error=f"Gateway request failed: {exc}")

        if not resp.ok:
            reason = resp.text[:200] or resp.reason
            logger.warning(
                "Push to %s rejected: %d %s", mask_token(device_token), resp.status_code, reason
            )
            return SendResult(success=False, error=f"Gateway error {resp.status_code}: {reason}")
        return SendResult(success=True, payload_size=payload_size(payload))


class LoggingPushGateway:
    """Dry-run gateway: validates and logs each payload without sending it.

    Only the last ``history`` accepted pushes are kept in ``sent``.
    """

    def __init__(self, history: int = 100):
        self.sent: deque[tuple[str, dict[str, Any]]] = deque(maxlen=history)

    def send(
        self,
        device_token: str,
        payload: dict[str, Any],
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> SendResult:
        try:
            size = validate_payload(payload)
        except (ValueError, PayloadTooLargeError) as exc:
            logger.error("[dry-run] Invalid payload for %s: %s", mask_token(device_token), exc)
            return SendResult(success=False, error=str(exc))

        alert = payload["aps"]["alert"]
        logger.info(
            "[dry-run] Would push %r to %s (%d bytes, priority %s)",
            alert.get("title"), mask_token(device_token), size, priority.value,
        )
        self.sent.append((device_token, payload))
        return SendResult(success=True, payload_size=size)
