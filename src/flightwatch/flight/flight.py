"""Flight aggregate: the flight status state machine.

Status changes only happen through ``request_transition``, which checks the
transition table, appends to the status history, stamps actual times and
recomputes the delay.

State Machine:
    SCHEDULED → {DELAYED, BOARDING, CANCELLED}
    DELAYED → {BOARDING, CANCELLED}
    BOARDING → {DEPARTED, CANCELLED}
    DEPARTED → {IN_AIR, DIVERTED}
    IN_AIR → {ARRIVED, DIVERTED}
    DIVERTED → ARRIVED
    ARRIVED, CANCELLED are terminal
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Integer, String, Text, ValueObject

from flightwatch.domain import flightwatch
from flightwatch.exceptions import InvalidTransitionError
from flightwatch.flight.events import (
    FlightDelayUpdated,
    FlightRegistered,
    FlightStatusChanged,
    GateUpdated,
)
from flightwatch.validators import (
    collect_errors,
    validate_aircraft_registration,
    validate_airline_code,
    validate_airport_code,
    validate_flight_number,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class FlightStatus(Enum):
    SCHEDULED = "Scheduled"
    DELAYED = "Delayed"
    BOARDING = "Boarding"
    DEPARTED = "Departed"
    IN_AIR = "In-Air"
    ARRIVED = "Arrived"
    CANCELLED = "Cancelled"
    DIVERTED = "Diverted"


class DelayReason(Enum):
    WEATHER = "Weather"
    TECHNICAL = "Technical"
    CREW = "Crew"
    AIR_TRAFFIC_CONTROL = "Air Traffic Control"
    SECURITY = "Security"
    PASSENGER = "Passenger"
    AIRPORT_OPERATIONS = "Airport Operations"
    AIRCRAFT_CHANGE = "Aircraft Change"
    OTHER = "Other"


class GateSide(Enum):
    DEPARTURE = "departure"
    ARRIVAL = "arrival"


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    FlightStatus.SCHEDULED: {FlightStatus.DELAYED, FlightStatus.BOARDING, FlightStatus.CANCELLED},
    FlightStatus.DELAYED: {FlightStatus.BOARDING, FlightStatus.CANCELLED},
    FlightStatus.BOARDING: {FlightStatus.DEPARTED, FlightStatus.CANCELLED},
    FlightStatus.DEPARTED: {FlightStatus.IN_AIR, FlightStatus.DIVERTED},
    FlightStatus.IN_AIR: {FlightStatus.ARRIVED, FlightStatus.DIVERTED},
    FlightStatus.DIVERTED: {FlightStatus.ARRIVED},
    FlightStatus.ARRIVED: set(),  # terminal
    FlightStatus.CANCELLED: set(),  # terminal
}


def allowed_transitions(status) -> set[FlightStatus]:
    return set(_VALID_TRANSITIONS.get(FlightStatus(status), set()))


def _as_utc(value):
    """Naive datetimes are read as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _minutes_between(start, end) -> int:
    return int((_as_utc(end) - _as_utc(start)).total_seconds() // 60)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@flightwatch.value_object(part_of="Flight")
class AirportStop:
    """One end of a route: airport, location and gate assignment."""

    airport_code: String(required=True, max_length=3)
    city: String(max_length=100)
    country: String(required=True, max_length=100)
    terminal: String(max_length=10)
    gate: String(max_length=10)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@flightwatch.entity(part_of="Flight")
class StatusChange:
    """An entry in a flight's status history."""

    sequence: Integer(required=True)
    previous_status: String(choices=FlightStatus, required=True)
    new_status: String(choices=FlightStatus, required=True)
    changed_at: DateTime(required=True)
    reason: String(max_length=500)
    actor: String(max_length=100, default="System")
    details: Text()  # JSON mapping supplied by the caller

    @property
    def metadata(self) -> dict:
        return json.loads(self.details) if self.details else {}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@flightwatch.aggregate
class Flight:
    """A tracked flight with a guarded status lifecycle and delay bookkeeping."""

    # Identity
    flight_number: String(required=True, max_length=7, unique=True)
    airline_code: String(required=True, max_length=3)
    airline_name: String(max_length=100)
    aircraft_registration: String(max_length=8)

    # Route
    origin: ValueObject(AirportStop, required=True)
    destination: ValueObject(AirportStop, required=True)

    # Schedule
    scheduled_departure: DateTime(required=True)
    estimated_departure: DateTime()
    actual_departure: DateTime()
    scheduled_arrival: DateTime(required=True)
    estimated_arrival: DateTime()
    actual_arrival: DateTime()

    # Status
    status: String(choices=FlightStatus, default=FlightStatus.SCHEDULED.value)
    status_history: HasMany(StatusChange)

    # Delay
    delay_minutes: Integer(min_value=0, default=0)
    delay_reason: String(choices=DelayReason)
    delay_description: String(max_length=500)

    is_active: Boolean(default=True)
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def departure_must_precede_arrival(self):
        if self.scheduled_departure and self.scheduled_arrival:
            if _as_utc(self.scheduled_departure) >= _as_utc(self.scheduled_arrival):
                raise ValidationError({"scheduled_arrival": ["Scheduled arrival must be after scheduled departure"]})

    @invariant.post
    def origin_must_differ_from_destination(self):
        if self.origin and self.destination:
            if self.origin.airport_code == self.destination.airport_code:
                raise ValidationError({"destination": ["Origin and destination airports must be different"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def register(
        cls,
        flight_number,
        airline_code,
        origin_airport,
        origin_country,
        destination_airport,
        destination_country,
        scheduled_departure,
        scheduled_arrival,
        airline_name=None,
        origin_city=None,
        destination_city=None,
        aircraft_registration=None,
    ):
        """Validate IATA formats, then create a flight in SCHEDULED status."""
        flight_number = (flight_number or "").strip().upper()
        airline_code = (airline_code or "").strip().upper()
        origin_airport = (origin_airport or "").strip().upper()
        destination_airport = (destination_airport or "").strip().upper()

        checks = {
            "flight_number": validate_flight_number(flight_number),
            "airline_code": validate_airline_code(airline_code),
            "origin": validate_airport_code(origin_airport),
            "destination": validate_airport_code(destination_airport),
        }
        if aircraft_registration:
            aircraft_registration = aircraft_registration.strip().upper()
            checks["aircraft_registration"] = validate_aircraft_registration(aircraft_registration)
        collect_errors(checks)

        now = datetime.now(UTC)
        flight = cls(
            flight_number=flight_number,
            airline_code=airline_code,
            airline_name=airline_name,
            aircraft_registration=aircraft_registration,
            origin=AirportStop(airport_code=origin_airport, city=origin_city, country=origin_country),
            destination=AirportStop(
                airport_code=destination_airport,
                city=destination_city,
                country=destination_country,
            ),
            scheduled_departure=_as_utc(scheduled_departure),
            scheduled_arrival=_as_utc(scheduled_arrival),
            status=FlightStatus.SCHEDULED.value,
            delay_minutes=0,
            created_at=now,
            updated_at=now,
        )

        flight.raise_(
            FlightRegistered(
                flight_id=str(flight.id),
                flight_number=flight_number,
                origin=origin_airport,
                destination=destination_airport,
                scheduled_departure=flight.scheduled_departure,
                scheduled_arrival=flight.scheduled_arrival,
                registered_at=now,
            )
        )
        return flight

    # -------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------
    @property
    def history(self) -> list[StatusChange]:
        """Status history in the order it was recorded."""
        return sorted(self.status_history, key=lambda change: change.sequence)

    @property
    def is_delayed(self) -> bool:
        return (self.delay_minutes or 0) > 0

    @property
    def duration_minutes(self) -> int:
        if self.actual_departure and self.actual_arrival:
            return _minutes_between(self.actual_departure, self.actual_arrival)
        return _minutes_between(self.scheduled_departure, self.scheduled_arrival)

    @property
    def is_international(self) -> bool:
        return self.origin.country != self.destination.country

    @property
    def route_string(self) -> str:
        return f"{self.origin.airport_code}-{self.destination.airport_code}"

    @property
    def departure_date(self):
        return _as_utc(self.scheduled_departure).date()

    # -------------------------------------------------------------------
    # Delay
    # -------------------------------------------------------------------
    def calculate_delay(self, now=None) -> int:
        """Recompute ``delay_minutes`` from the best departure time known.

        Actual departure wins over estimated departure. Without either, a
        flight whose scheduled departure has passed is late by the elapsed time.
        """
        now = _as_utc(now) or datetime.now(UTC)
        scheduled = _as_utc(self.scheduled_departure)

        if self.actual_departure:
            minutes = _minutes_between(scheduled, self.actual_departure)
        elif self.estimated_departure:
            minutes = _minutes_between(scheduled, self.estimated_departure)
        elif now > scheduled:
            minutes = _minutes_between(scheduled, now)
        else:
            minutes = 0

        self.delay_minutes = max(0, minutes)
        return self.delay_minutes

    def add_delay(self, minutes, reason=DelayReason.OTHER.value, description=None, now=None):
        """Push estimated departure and arrival back by ``minutes``.

        Negative minutes pull the estimates forward; the recorded delay never
        drops below zero.
        """
        try:
            minutes = int(minutes)
        except (TypeError, ValueError):
            raise ValidationError({"delay_minutes": ["Delay adjustment must be a whole number of minutes"]}) from None

        now = _as_utc(now) or datetime.now(UTC)
        shift = timedelta(minutes=minutes)

        self.delay_reason = reason
        self.delay_description = description
        self.estimated_departure = _as_utc(self.estimated_departure or self.scheduled_departure) + shift
        self.estimated_arrival = _as_utc(self.estimated_arrival or self.scheduled_arrival) + shift
        self.calculate_delay(now=now)
        self.updated_at = now

        self.raise_(
            FlightDelayUpdated(
                flight_id=str(self.id),
                flight_number=self.flight_number,
                added_minutes=minutes,
                delay_minutes=self.delay_minutes,
                delay_reason=reason,
                estimated_departure=self.estimated_departure,
                estimated_arrival=self.estimated_arrival,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------
    def update_gate(self, terminal, gate, side=GateSide.DEPARTURE.value):
        """Replace the terminal and gate on one end of the route."""
        side = GateSide(side)
        stop = self.origin if side == GateSide.DEPARTURE else self.destination
        updated = AirportStop(
            airport_code=stop.airport_code,
            city=stop.city,
            country=stop.country,
            terminal=terminal,
            gate=gate,
        )
        if side == GateSide.DEPARTURE:
            self.origin = updated
        else:
            self.destination = updated

        now = datetime.now(UTC)
        self.updated_at = now

        self.raise_(
            GateUpdated(
                flight_id=str(self.id),
                flight_number=self.flight_number,
                side=side.value,
                terminal=terminal,
                gate=gate,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = FlightStatus(self.status)
        allowed = _VALID_TRANSITIONS.get(current, set())
        if target_status == current or target_status not in allowed:
            raise InvalidTransitionError(
                current=current.value,
                requested=target_status.value,
                allowed={status.value for status in allowed},
            )

    def request_transition(self, new_status, reason=None, actor="System", metadata=None, now=None):
        """Move the flight to ``new_status`` and return the flight.

        The status it left is recorded as ``history[-1].previous_status``.

        Raises ``InvalidTransitionError`` without touching the flight when
        the move is not in the transition table or targets the current status.
        """
        try:
            target = FlightStatus(new_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown flight status: {new_status}"]}) from None

        self._assert_can_transition(target)

        now = _as_utc(now) or datetime.now(UTC)
        previous = self.status
        reason = reason or f"Changed from {previous} to {target.value}"
        details = json.dumps(metadata or {}, default=str)

        self.add_status_history(
            StatusChange(
                sequence=len(self.status_history) + 1,
                previous_status=previous,
                new_status=target.value,
                changed_at=now,
                reason=reason,
                actor=actor or "System",
                details=details,
            )
        )
        self.status = target.value

        if target == FlightStatus.DEPARTED and not self.actual_departure:
            self.actual_departure = now
        if target == FlightStatus.ARRIVED and not self.actual_arrival:
            self.actual_arrival = now

        self.calculate_delay(now=now)
        self.updated_at = now

        self.raise_(
            FlightStatusChanged(
                flight_id=str(self.id),
                flight_number=self.flight_number,
                previous_status=previous,
                new_status=target.value,
                reason=reason,
                actor=actor,
                delay_minutes=self.delay_minutes,
                details=details,
                changed_at=now,
            )
        )
        return self
