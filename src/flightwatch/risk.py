"""Connection risk scoring for two-leg itineraries.

The level is a function of the effective buffer alone:

    effective = scheduled gap - incoming delay - gate walking time

Factors only explain the result; they never move the level.
"""

from __future__ import annotations

import math
import re

from flightwatch.models import (
    ConnectionRisk,
    FactorImpact,
    FactorType,
    FlightSnapshot,
    FlightStatus,
    RiskFactor,
    RiskLevel,
    utcnow,
)

# Upper bounds (exclusive) of each band, checked in order.
CRITICAL_BELOW = 20
HIGH_RISK_BELOW = 30
AT_RISK_BELOW = 45

SAME_TERMINAL_BASE_MINUTES = 5.0
MINUTES_PER_GATE = 0.5
TERMINAL_CHANGE_MINUTES = 15.0

FACTOR_WEIGHTS = {
    FactorType.DELAY: 0.4,
    FactorType.CONNECTION_TIME: 0.3,
    FactorType.GATE_DISTANCE: 0.2,
    FactorType.HISTORICAL: 0.1,
}


def gate_number(gate: str | None) -> int:
    """Numeric part of a gate label (``"B12"`` -> 12), 0 when there is none."""
    digits = re.sub(r"\D", "", gate or "")
    return int(digits) if digits else 0


def estimate_gate_change_minutes(
    from_gate: str | None,
    to_gate: str | None,
    from_terminal: str | None,
    to_terminal: str | None,
) -> float:
    """Walking time between the arrival gate and the next departure gate."""
    if (from_gate or "") == (to_gate or ""):
        return 0.0
    if from_terminal == to_terminal:
        distance = abs(gate_number(from_gate) - gate_number(to_gate))
        return SAME_TERMINAL_BASE_MINUTES + MINUTES_PER_GATE * distance
    return TERMINAL_CHANGE_MINUTES


def level_for_buffer(effective_buffer: float) -> RiskLevel:
    """Map an effective buffer in minutes to a risk band (first match wins)."""
    if effective_buffer < CRITICAL_BELOW:
        return RiskLevel.CRITICAL
    if effective_buffer < HIGH_RISK_BELOW:
        return RiskLevel.HIGH_RISK
    if effective_buffer < AT_RISK_BELOW:
        return RiskLevel.AT_RISK
    return RiskLevel.ON_TRACK


def _confidence(
    incoming: FlightSnapshot, outgoing: FlightSnapshot, on_time_rate: float | None
) -> float:
    """Data completeness score: live estimates and known gates raise it."""
    score = 1.0
    if incoming.estimated_arrival is None and incoming.actual_arrival is None:
        score -= 0.1
    if outgoing.estimated_departure is None and outgoing.actual_departure is None:
        score -= 0.05
    if not incoming.destination.gate or not outgoing.origin.gate:
        score -= 0.1
    if incoming.destination.terminal is None or outgoing.origin.terminal is None:
        score -= 0.05
    if on_time_rate is None:
        score -= 0.05
    return round(min(1.0, max(0.0, score)), 2)


def _build_factors(
    raw_buffer: float,
    delay_minutes: int,
    gate_minutes: float,
    on_time_rate: float | None,
) -> list[RiskFactor]:
    if raw_buffer >= AT_RISK_BELOW:
        time_impact = FactorImpact.POSITIVE
    elif raw_buffer >= HIGH_RISK_BELOW:
        time_impact = FactorImpact.NEUTRAL
    else:
        time_impact = FactorImpact.NEGATIVE

    factors = [
        RiskFactor(
            type=FactorType.CONNECTION_TIME,
            description=f"{math.floor(raw_buffer)} minutes between flights",
            impact=time_impact,
            weight=FACTOR_WEIGHTS[FactorType.CONNECTION_TIME],
        ),
        RiskFactor(
            type=FactorType.DELAY,
            description=(
                f"Incoming flight delayed {delay_minutes} minutes"
                if delay_minutes > 0 else "No current delay"
            ),
            impact=FactorImpact.NEGATIVE if delay_minutes > 0 else FactorImpact.POSITIVE,
            weight=FACTOR_WEIGHTS[FactorType.DELAY],
        ),
        RiskFactor(
            type=FactorType.GATE_DISTANCE,
            description=(
                f"~{gate_minutes:g} minutes between gates"
                if gate_minutes > 10 else "Short walk between gates"
            ),
            impact=FactorImpact.NEGATIVE if gate_minutes > 10 else FactorImpact.POSITIVE,
            weight=FACTOR_WEIGHTS[FactorType.GATE_DISTANCE],
        ),
    ]

    if on_time_rate is not None:
        if on_time_rate > 0.85:
            impact = FactorImpact.POSITIVE
        elif on_time_rate < 0.6:
            impact = FactorImpact.NEGATIVE
        else:
            impact = FactorImpact.NEUTRAL
        factors.append(RiskFactor(
            type=FactorType.HISTORICAL,
            description=f"Historical on-time rate: {round(on_time_rate * 100)}%",
            impact=impact,
            weight=FACTOR_WEIGHTS[FactorType.HISTORICAL],
        ))

    factors.sort(key=lambda f: f.weight, reverse=True)
    return factors


def calculate_risk(
    incoming: FlightSnapshot,
    outgoing: FlightSnapshot,
    on_time_rate: float | None = None,
) -> ConnectionRisk:
    """Score the connection from ``incoming`` onto ``outgoing``.

    Args:
        incoming: The arriving leg.
        outgoing: The departing leg.
        on_time_rate: Historical on-time fraction of the incoming flight in
            [0, 1]; the HISTORICAL factor is omitted when None.

    Raises:
        ValueError: If ``on_time_rate`` is outside [0, 1].
    """
    if on_time_rate is not None and not 0.0 <= on_time_rate <= 1.0:
        raise ValueError(f"on_time_rate must be within [0, 1], got {on_time_rate}")

    raw_buffer = (
        outgoing.scheduled_departure - incoming.scheduled_arrival
    ).total_seconds() / 60.0
    delay = incoming.delay_minutes or 0
    gate_minutes = estimate_gate_change_minutes(
        incoming.destination.gate,
        outgoing.origin.gate,
        incoming.destination.terminal,
        outgoing.origin.terminal,
    )
    effective = raw_buffer - delay - gate_minutes

    if incoming.status == FlightStatus.CANCELED:
        level = RiskLevel.CRITICAL
    else:
        level = level_for_buffer(effective)

    return ConnectionRisk(
        level=level,
        buffer_minutes=effective,
        raw_buffer_minutes=raw_buffer,
        gate_change_minutes=gate_minutes,
        factors=_build_factors(raw_buffer, delay, gate_minutes, on_time_rate),
        confidence=_confidence(incoming, outgoing, on_time_rate),
        calculated_at=utcnow(),
    )
