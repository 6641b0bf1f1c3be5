"""Schedule adjustments: explicit delays and gate assignments."""

from protean import handle
from protean.fields import Integer, String
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.flight.flight import DelayReason, Flight, GateSide
from flightwatch.flight.registration import get_flight
from flightwatch.flight.status import flight_lock, process_flight_command


@flightwatch.command(part_of="Flight")
class UpdateFlightDelay:
    """Shift a flight's estimated times by a number of minutes."""

    flight_number: String(required=True, max_length=7)
    minutes: Integer(required=True)
    reason: String(choices=DelayReason, default=DelayReason.OTHER.value)
    description: String(max_length=500)


@flightwatch.command(part_of="Flight")
class UpdateGate:
    """Assign a terminal and gate to the departure or arrival end."""

    flight_number: String(required=True, max_length=7)
    terminal: String(max_length=10)
    gate: String(max_length=10)
    side: String(choices=GateSide, default=GateSide.DEPARTURE.value)


@flightwatch.command_handler(part_of=Flight)
class FlightScheduleHandler:
    @handle(UpdateFlightDelay)
    def update_delay(self, command: UpdateFlightDelay):
        with flight_lock(command.flight_number):
            flight = get_flight(command.flight_number)
            flight.add_delay(command.minutes, reason=command.reason, description=command.description)
            current_domain.repository_for(Flight).add(flight)
        return flight.delay_minutes

    @handle(UpdateGate)
    def update_gate(self, command: UpdateGate):
        with flight_lock(command.flight_number):
            flight = get_flight(command.flight_number)
            flight.update_gate(command.terminal, command.gate, side=command.side)
            current_domain.repository_for(Flight).add(flight)


def update_flight_delay(flight_number, minutes, reason=DelayReason.OTHER.value, description=None) -> int:
    """Serialised entry point for delay changes; returns the recorded delay."""
    return process_flight_command(
        UpdateFlightDelay(flight_number=flight_number, minutes=minutes, reason=reason, description=description)
    )


def assign_gate(flight_number, terminal, gate, side=GateSide.DEPARTURE.value) -> None:
    process_flight_command(UpdateGate(flight_number=flight_number, terminal=terminal, gate=gate, side=side))
