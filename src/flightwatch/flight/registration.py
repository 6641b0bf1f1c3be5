"""Flight registration: command and handler."""

from protean import handle
from protean.fields import DateTime, String
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.exceptions import ConflictError, NotFoundError
from flightwatch.flight.flight import Flight


@flightwatch.command(part_of="Flight")
class RegisterFlight:
    """Start tracking a flight."""

    flight_number: String(required=True, max_length=7)
    airline_code: String(required=True, max_length=3)
    airline_name: String(max_length=100)
    aircraft_registration: String(max_length=8)
    origin_airport: String(required=True, max_length=3)
    origin_city: String(max_length=100)
    origin_country: String(required=True, max_length=100)
    destination_airport: String(required=True, max_length=3)
    destination_city: String(max_length=100)
    destination_country: String(required=True, max_length=100)
    scheduled_departure: DateTime(required=True)
    scheduled_arrival: DateTime(required=True)


def find_flight(flight_number) -> Flight | None:
    repo = current_domain.repository_for(Flight)
    matches = repo._dao.query.filter(flight_number=flight_number.strip().upper()).all().items
    return matches[0] if matches else None


def get_flight(flight_number) -> Flight:
    flight = find_flight(flight_number)
    if flight is None:
        raise NotFoundError(f"Flight {flight_number} not found")
    return flight


@flightwatch.command_handler(part_of=Flight)
class RegisterFlightHandler:
    @handle(RegisterFlight)
    def register_flight(self, command: RegisterFlight):
        if find_flight(command.flight_number) is not None:
            raise ConflictError("flight_number", f"Flight {command.flight_number} is already registered")

        flight = Flight.register(
            flight_number=command.flight_number,
            airline_code=command.airline_code,
            airline_name=command.airline_name,
            aircraft_registration=command.aircraft_registration,
            origin_airport=command.origin_airport,
            origin_city=command.origin_city,
            origin_country=command.origin_country,
            destination_airport=command.destination_airport,
            destination_city=command.destination_city,
            destination_country=command.destination_country,
            scheduled_departure=command.scheduled_departure,
            scheduled_arrival=command.scheduled_arrival,
        )
        current_domain.repository_for(Flight).add(flight)
        return str(flight.id)
