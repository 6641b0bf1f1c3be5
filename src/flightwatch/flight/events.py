"""Domain events for the Flight aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from flightwatch.domain import flightwatch


@flightwatch.event(part_of="Flight")
class FlightRegistered:
    """A flight was registered for status tracking."""

    __version__ = 1

    flight_id: Identifier(required=True)
    flight_number: String(required=True)
    origin: String(required=True)
    destination: String(required=True)
    scheduled_departure: DateTime(required=True)
    scheduled_arrival: DateTime(required=True)
    registered_at: DateTime(required=True)


@flightwatch.event(part_of="Flight")
class FlightStatusChanged:
    """A flight moved to a new status through the state machine."""

    __version__ = 1

    flight_id: Identifier(required=True)
    flight_number: String(required=True)
    previous_status: String(required=True)
    new_status: String(required=True)
    reason: String()
    actor: String()
    delay_minutes: Integer()
    details: Text()  # JSON
    changed_at: DateTime(required=True)


@flightwatch.event(part_of="Flight")
class FlightDelayUpdated:
    """An explicit delay was added to a flight."""

    __version__ = 1

    flight_id: Identifier(required=True)
    flight_number: String(required=True)
    added_minutes: Integer(required=True)
    delay_minutes: Integer(required=True)
    delay_reason: String()
    estimated_departure: DateTime()
    estimated_arrival: DateTime()
    updated_at: DateTime(required=True)


@flightwatch.event(part_of="Flight")
class GateUpdated:
    """A departure or arrival gate assignment changed."""

    __version__ = 1

    flight_id: Identifier(required=True)
    flight_number: String(required=True)
    side: String(required=True)
    terminal: String()
    gate: String()
    updated_at: DateTime(required=True)
