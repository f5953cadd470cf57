"""Exceptions raised by flightwatch components."""

from __future__ import annotations


class FlightWatchError(Exception):
    """Base exception for all flightwatch errors."""


class ConfigError(FlightWatchError, ValueError):
    """Raised when settings are missing or malformed."""


class NotFoundError(FlightWatchError, KeyError):
    """Raised when a stored entity does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")

    def __str__(self) -> str:
        return self.args[0]


class ProviderError(FlightWatchError):
    """Raised when the flight-data provider call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PayloadTooLargeError(FlightWatchError):
    """Raised when a push payload exceeds the gateway size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payload size {size} bytes exceeds maximum {limit} bytes")


class QueueFullError(FlightWatchError):
    """Raised when enqueueing onto a notification queue at capacity."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Notification queue is full ({capacity} jobs)")
