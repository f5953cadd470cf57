"""Push payload construction and validation.

Payloads follow the APNs layout: an ``aps`` dictionary with the alert,
sound, category and thread id, plus custom keys at the top level for the
client app.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from flightwatch.errors import PayloadTooLargeError
from flightwatch.models import ConnectionRiskData, NotificationJob, NotificationType

MAX_PAYLOAD_BYTES = 4096


class PushCategory(str, Enum):
    """Client-side notification categories (action button sets)."""

    GATE_CHANGE = "GATE_CHANGE"
    DELAY_ALERT = "DELAY_ALERT"
    BOARDING = "BOARDING"
    CONNECTION_RISK = "CONNECTION_RISK"
    CANCELLATION = "CANCELLATION"
    FLIGHT_UPDATE = "FLIGHT_UPDATE"


# notification type -> (category, sound)
_PRESENTATION = {
    NotificationType.GATE_CHANGE: (PushCategory.GATE_CHANGE, "gate_change.caf"),
    NotificationType.DELAY: (PushCategory.DELAY_ALERT, "default"),
    NotificationType.BOARDING: (PushCategory.BOARDING, "boarding.caf"),
    NotificationType.CONNECTION_RISK: (PushCategory.CONNECTION_RISK, "default"),
    NotificationType.FLIGHT_CANCELED: (PushCategory.CANCELLATION, "default"),
    NotificationType.FLIGHT_UPDATE: (PushCategory.FLIGHT_UPDATE, "default"),
}


def thread_id(job: NotificationJob) -> str:
    """Group key so the device stacks related alerts together."""
    if isinstance(job.data, ConnectionRiskData):
        return f"connection_{job.data.incoming_flight_id}_{job.data.outgoing_flight_id}"
    return f"flight_{job.flight_id}"


def build_payload(job: NotificationJob) -> dict[str, Any]:
    """Build the push payload for a job."""
    category, sound = _PRESENTATION.get(
        job.type, (PushCategory.FLIGHT_UPDATE, "default")
    )
    payload: dict[str, Any] = {
        "aps": {
            "alert": {"title": job.title, "body": job.body},
            "sound": sound,
            "category": category.value,
            "thread-id": thread_id(job),
        },
        "flight_id": job.flight_id,
        "notification_type": job.type.value,
        "notification_id": job.id,
    }
    if job.data is not None:
        for key, value in job.data.model_dump(mode="json", exclude_none=True).items():
            payload.setdefault(key, value)
    return payload


def payload_size(payload: dict[str, Any]) -> int:
    """Size in bytes of the compact UTF-8 JSON encoding."""
    return len(json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def validate_payload(payload: dict[str, Any], limit: int = MAX_PAYLOAD_BYTES) -> int:
    """Check a payload is sendable and return its size.

    Raises:
        ValueError: If ``aps.alert`` is missing.
        PayloadTooLargeError: If the encoded payload exceeds ``limit`` bytes.
    """
    aps = payload.get("aps")
    if not isinstance(aps, dict) or not aps.get("alert"):
        raise ValueError("Push payload is missing aps.alert")
    size = payload_size(payload)
    if size > limit:
        raise PayloadTooLargeError(size, limit)
    return size
