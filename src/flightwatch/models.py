"""Pydantic v2 models for flightwatch."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Flights ---


class FlightStatus(str, Enum):
    """Operational status reported by the flight-data provider."""

    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    DEPARTED = "DEPARTED"
    IN_AIR = "IN_AIR"
    LANDED = "LANDED"
    DELAYED = "DELAYED"
    CANCELED = "CANCELED"


class AirportStop(BaseModel):
    """One end of a flight: airport code plus terminal and gate when known."""

    code: str
    terminal: Optional[str] = None
    gate: Optional[str] = None


class FlightSnapshot(BaseModel):
    """Most recently fetched state of one flight.

    ``(airline_code, flight_number, scheduled_departure)`` is the natural key;
    ``id`` is the opaque identifier used by the provider and the store.
    Timestamps are opaque instants: arrival may precede departure on
    multi-day itineraries and nothing here validates their order.
    """

    id: str
    airline_code: str
    flight_number: str
    origin: AirportStop
    destination: AirportStop
    scheduled_departure: datetime
    scheduled_arrival: datetime
    estimated_departure: Optional[datetime] = None
    estimated_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    status: FlightStatus = FlightStatus.SCHEDULED
    delay_minutes: int = 0
    aircraft_type: Optional[str] = None

    @property
    def natural_key(self) -> tuple[str, str, datetime]:
        return (self.airline_code, self.flight_number, self.scheduled_departure)

    @property
    def ident(self) -> str:
        """Display identifier, e.g. ``UA1234``."""
        return f"{self.airline_code}{self.flight_number}"


class TrackingRelationship(BaseModel):
    """A user's subscription to alerts for one flight."""

    user_id: str
    flight_id: str
    enabled: bool = True
    gate_change_alerts: bool = True
    delay_alerts: bool = True
    boarding_alerts: bool = True
    connection_risk_alerts: bool = True
    tracked_at: datetime = Field(default_factory=utcnow)


# --- Change detection ---


class ChangeType(str, Enum):
    GATE_CHANGE = "GATE_CHANGE"
    TIME_CHANGE = "TIME_CHANGE"
    STATUS_CHANGE = "STATUS_CHANGE"
    DELAY_UPDATE = "DELAY_UPDATE"
    CANCELLATION = "CANCELLATION"


class ChangeRecord(BaseModel):
    """One typed difference between two snapshots of the same flight."""

    flight_id: str
    type: ChangeType
    field: str  # snapshot attribute that changed, e.g. "departure_gate"
    old_value: dict[str, Any] = Field(default_factory=dict)
    new_value: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    detected_at: Optional[datetime] = None  # set once written to the audit trail


# --- Connection risk ---


class RiskLevel(str, Enum):
    """Connection risk bands, best to worst."""

    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    HIGH_RISK = "HIGH_RISK"
    CRITICAL = "CRITICAL"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]


_RISK_SEVERITY = {
    RiskLevel.ON_TRACK: 0,
    RiskLevel.AT_RISK: 1,
    RiskLevel.HIGH_RISK: 2,
    RiskLevel.CRITICAL: 3,
}


class FactorType(str, Enum):
    CONNECTION_TIME = "CONNECTION_TIME"
    DELAY = "DELAY"
    GATE_DISTANCE = "GATE_DISTANCE"
    HISTORICAL = "HISTORICAL"


class FactorImpact(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class RiskFactor(BaseModel):
    """Explanatory contribution to a risk assessment (never drives the level)."""

    type: FactorType
    description: str
    impact: FactorImpact
    weight: float


class ConnectionRisk(BaseModel):
    level: RiskLevel
    buffer_minutes: float  # effective buffer, signed
    raw_buffer_minutes: float  # scheduled gap between the legs
    gate_change_minutes: float = 0.0
    factors: list[RiskFactor] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    calculated_at: datetime = Field(default_factory=utcnow)


class Connection(BaseModel):
    """A user's two-leg itinerary with its latest risk assessment."""

    id: Optional[int] = None
    user_id: str
    incoming_flight_id: str
    outgoing_flight_id: str
    risk: Optional[ConnectionRisk] = None


# --- Notifications ---


class NotificationType(str, Enum):
    GATE_CHANGE = "GATE_CHANGE"
    DELAY = "DELAY"
    BOARDING = "BOARDING"
    FLIGHT_CANCELED = "FLIGHT_CANCELED"
    CONNECTION_RISK = "CONNECTION_RISK"
    FLIGHT_UPDATE = "FLIGHT_UPDATE"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class _FlightRef(BaseModel):
    airline_code: str
    flight_number: str


class GateChangeData(_FlightRef):
    kind: Literal["gate_change"] = "gate_change"
    side: Literal["departure", "arrival"] = "departure"
    old_gate: Optional[str] = None
    new_gate: Optional[str] = None
    terminal: Optional[str] = None


class DelayData(_FlightRef):
    kind: Literal["delay"] = "delay"
    delay_minutes: int = 0
    schedule_change: bool = False
    old_departure: Optional[datetime] = None
    new_departure: Optional[datetime] = None


class BoardingData(_FlightRef):
    kind: Literal["boarding"] = "boarding"
    gate: Optional[str] = None


class CancellationData(_FlightRef):
    kind: Literal["cancellation"] = "cancellation"


class ConnectionRiskData(_FlightRef):
    kind: Literal["connection_risk"] = "connection_risk"
    incoming_flight_id: str
    outgoing_flight_id: str
    previous_level: Optional[RiskLevel] = None
    current_level: RiskLevel
    buffer_minutes: float


NotificationData = Annotated[
    Union[GateChangeData, DelayData, BoardingData, CancellationData, ConnectionRiskData],
    Field(discriminator="kind"),
]


def new_job_id() -> str:
    return f"notif_{uuid4().hex[:16]}"


class NotificationJob(BaseModel):
    """A unit of work for the notification queue."""

    id: str = Field(default_factory=new_job_id)
    user_id: str
    flight_id: str
    type: NotificationType
    title: str
    body: str
    data: Optional[NotificationData] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    created_at: datetime = Field(default_factory=utcnow)


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    NO_DEVICES = "NO_DEVICES"


class NotificationRecord(BaseModel):
    """Persisted delivery outcome of one notification job."""

    id: Optional[int] = None
    job_id: str = ""
    user_id: str
    flight_id: str
    type: NotificationType
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    status: DeliveryStatus = DeliveryStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class DeviceToken(BaseModel):
    user_id: str
    token: str
    platform: str = "ios"
    created_at: datetime = Field(default_factory=utcnow)
