"""Flight-data provider interface and an AeroAPI-style HTTP client."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import requests

from flightwatch.config import DEFAULT_PROVIDER_URL
from flightwatch.errors import ProviderError
from flightwatch.models import AirportStop, FlightSnapshot, FlightStatus

logger = logging.getLogger(__name__)

# Provider status strings; anything else is treated as SCHEDULED.
STATUS_MAP = {
    "Scheduled": FlightStatus.SCHEDULED,
    "En Route": FlightStatus.IN_AIR,
    "In Flight": FlightStatus.IN_AIR,
    "Arrived": FlightStatus.LANDED,
    "Canceled": FlightStatus.CANCELED,
    "Cancelled": FlightStatus.CANCELED,
    "Diverted": FlightStatus.DELAYED,  # no DIVERTED status of our own
    "Boarding": FlightStatus.BOARDING,
    "Departed": FlightStatus.DEPARTED,
    "Delayed": FlightStatus.DELAYED,
}


@runtime_checkable
class FlightDataProvider(Protocol):
    """Anything that can return the current state of a flight by opaque id."""

    def fetch_flight(self, flight_id: str) -> FlightSnapshot | None:
        """Return the fresh snapshot, or None if the provider does not know the flight.

        Raises:
            ProviderError: On transport, authentication or rate-limit failures.
        """
        ...


def map_status(raw: str | None) -> FlightStatus:
    return STATUS_MAP.get((raw or "").strip(), FlightStatus.SCHEDULED)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_flight(data: dict[str, Any]) -> FlightSnapshot:
    """Convert one provider flight object into a snapshot."""
    origin = data.get("origin") or {}
    destination = data.get("destination") or {}
    return FlightSnapshot(
        id=data["flight_id"],
        airline_code=data.get("airline_code") or data.get("operator_iata") or "",
        flight_number=str(data.get("flight_number") or ""),
        origin=AirportStop(
            code=origin.get("code") or "",
            terminal=data.get("terminal_origin") or None,
            gate=data.get("gate_origin") or None,
        ),
        destination=AirportStop(
            code=destination.get("code") or "",
            terminal=data.get("terminal_destination") or None,
            gate=data.get("gate_destination") or None,
        ),
        scheduled_departure=_parse_time(data.get("scheduled_out")),
        scheduled_arrival=_parse_time(data.get("scheduled_in")),
        estimated_departure=_parse_time(data.get("estimated_out")),
        estimated_arrival=_parse_time(data.get("estimated_in")),
        actual_departure=_parse_time(data.get("actual_out")),
        actual_arrival=_parse_time(data.get("actual_in")),
        status=map_status(data.get("status")),
        delay_minutes=int(data.get("delay_minutes") or 0),
        aircraft_type=data.get("aircraft_type") or None,
    )


class AeroApiProvider:
    """Client for an AeroAPI-compatible flight status endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_PROVIDER_URL,
        timeout: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"x-apikey": api_key, "Accept": "application/json"})

    def fetch_flight(self, flight_id: str) -> FlightSnapshot | None:
        url = f"{self.base_url}/flights/{flight_id}"
        logger.debug("Fetching flight %s", flight_id)

        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Flight provider request failed: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code == 401:
            raise ProviderError("Flight provider API key invalid", status_code=401)
        if resp.status_code == 429:
            raise ProviderError("Flight provider rate limit exceeded", status_code=429)
        if not resp.ok:
            raise ProviderError(
                f"Flight provider error: {resp.status_code} {resp.reason}",
                status_code=resp.status_code,
            )

        try:
            flights = resp.json().get("flights") or []
            return parse_flight(flights[0]) if flights else None
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError(f"Malformed provider response for {flight_id}: {exc}") from exc
