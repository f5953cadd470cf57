"""Notification record and device token storage."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from flightwatch.db.models import DeviceTokenRow, NotificationRow
from flightwatch.errors import NotFoundError
from flightwatch.models import (
    DeliveryStatus,
    DeviceToken,
    NotificationJob,
    NotificationRecord,
    NotificationType,
)
from flightwatch.storage.flights import as_utc


def _row_to_record(row: NotificationRow) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        job_id=row.job_id,
        user_id=row.user_id,
        flight_id=row.flight_id,
        type=NotificationType(row.type),
        title=row.title,
        body=row.body,
        data=json.loads(row.data_json),
        status=DeliveryStatus(row.status),
        created_at=as_utc(row.created_at),
        sent_at=as_utc(row.sent_at),
        delivered_at=as_utc(row.delivered_at),
        failed_at=as_utc(row.failed_at),
        failure_reason=row.failure_reason,
    )


def _row_to_device(row: DeviceTokenRow) -> DeviceToken:
    return DeviceToken(
        user_id=row.user_id,
        token=row.token,
        platform=row.platform,
        created_at=as_utc(row.created_at),
    )


# --- Notification records ---


def create_notification(session: Session, job: NotificationJob) -> int:
    """Persist a PENDING record for a job and return its id."""
    data = job.data.model_dump(mode="json") if job.data is not None else {}
    row = NotificationRow(
        job_id=job.id,
        user_id=job.user_id,
        flight_id=job.flight_id,
        type=job.type.value,
        title=job.title,
        body=job.body,
        data_json=json.dumps(data),
        status=DeliveryStatus.PENDING.value,
        created_at=job.created_at,
    )
    session.add(row)
    session.flush()
    return row.id


def update_delivery_status(
    session: Session,
    notification_id: int,
    status: DeliveryStatus,
    failure_reason: str | None = None,
) -> None:
    """Record the terminal outcome of a delivery.

    SENT stamps ``sent_at`` and ``delivered_at``; FAILED and NO_DEVICES stamp
    ``failed_at`` with the reason. Raises NotFoundError if the record does not
    exist.
    """
    row = session.get(NotificationRow, notification_id)
    if row is None:
        raise NotFoundError("Notification", notification_id)

    now = datetime.now(timezone.utc)
    row.status = status.value
    if status == DeliveryStatus.SENT:
        row.sent_at = now
        row.delivered_at = now
    elif status in (DeliveryStatus.FAILED, DeliveryStatus.NO_DEVICES):
        row.failed_at = now
        row.failure_reason = failure_reason
    session.flush()


def get_notification(session: Session, notification_id: int) -> NotificationRecord:
    row = session.get(NotificationRow, notification_id)
    if row is None:
        raise NotFoundError("Notification", notification_id)
    return _row_to_record(row)


def list_notifications(
    session: Session, user_id: str, limit: int = 50
) -> list[NotificationRecord]:
    """A user's notification history, newest first."""
    stmt = (
        select(NotificationRow)
        .where(NotificationRow.user_id == user_id)
        .order_by(NotificationRow.created_at.desc(), NotificationRow.id.desc())
        .limit(limit)
    )
    rows = session.execute(stmt).scalars().all()
    return [_row_to_record(r) for r in rows]


# --- Device tokens ---


def register_device_token(
    session: Session, user_id: str, token: str, platform: str = "ios"
) -> DeviceToken:
    """Register a push token for a user; re-registering updates the platform."""
    stmt = select(DeviceTokenRow).where(
        DeviceTokenRow.user_id == user_id, DeviceTokenRow.token == token
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        row = DeviceTokenRow(user_id=user_id, token=token)
        session.add(row)
    row.platform = platform
    session.flush()
    return _row_to_device(row)


def unregister_device_token(session: Session, user_id: str, token: str) -> bool:
    """Remove a push token. Returns False if it was not registered."""
    stmt = select(DeviceTokenRow).where(
        DeviceTokenRow.user_id == user_id, DeviceTokenRow.token == token
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


def list_device_tokens(
    session: Session, user_id: str, platforms: list[str] | None = None
) -> list[DeviceToken]:
    """A user's registered devices, optionally restricted to some platforms."""
    stmt = select(DeviceTokenRow).where(DeviceTokenRow.user_id == user_id)
    if platforms:
        stmt = stmt.where(DeviceTokenRow.platform.in_(platforms))
    rows = session.execute(stmt.order_by(DeviceTokenRow.id)).scalars().all()
    return [_row_to_device(r) for r in rows]
