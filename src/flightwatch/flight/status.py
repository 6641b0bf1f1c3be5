"""Flight status transitions: command, handler and per-flight serialisation.

Every flight command is read-modify-write on one flight record. Handlers
take a reentrant lock per flight number around load, change and save, and
``process_flight_command`` holds the same lock around the whole unit of work
so the commit is covered too. Two concurrent requests for one flight cannot
both read the same state and lose a history entry or a delay.
"""

import json
import threading

import structlog
from protean import handle
from protean.fields import String, Text
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.flight.flight import Flight
from flightwatch.flight.registration import get_flight

logger = structlog.get_logger(__name__)

_registry_lock = threading.Lock()
_flight_locks: dict[str, threading.RLock] = {}


def flight_lock(flight_number: str) -> threading.RLock:
    """Return the lock guarding ``flight_number``, creating it on first use."""
    with _registry_lock:
        return _flight_locks.setdefault(flight_number.strip().upper(), threading.RLock())


def process_flight_command(command):
    """Run a flight command synchronously while holding that flight's lock."""
    with flight_lock(command.flight_number):
        return current_domain.process(command, asynchronous=False)


@flightwatch.command(part_of="Flight")
class TransitionFlightStatus:
    """Move a flight to a new status."""

    flight_number: String(required=True, max_length=7)
    new_status: String(required=True, max_length=20)
    reason: String(max_length=500)
    actor: String(max_length=100, default="System")
    details: Text()  # JSON mapping


@flightwatch.command_handler(part_of=Flight)
class TransitionFlightStatusHandler:
    @handle(TransitionFlightStatus)
    def transition(self, command: TransitionFlightStatus):
        metadata = json.loads(command.details) if command.details else None

        with flight_lock(command.flight_number):
            flight = get_flight(command.flight_number)
            flight.request_transition(
                command.new_status,
                reason=command.reason,
                actor=command.actor,
                metadata=metadata,
            )
            current_domain.repository_for(Flight).add(flight)

        previous = flight.history[-1].previous_status

        logger.info(
            "Flight status changed",
            flight_number=flight.flight_number,
            previous_status=previous,
            new_status=flight.status,
            actor=command.actor,
        )
        return {
            "flight_id": str(flight.id),
            "previous_status": previous,
            "status": flight.status,
            "delay_minutes": flight.delay_minutes,
        }


def transition_flight(flight_number, new_status, reason=None, actor="System", metadata=None) -> dict:
    """Serialised entry point for status changes on one flight."""
    command = TransitionFlightStatus(
        flight_number=flight_number,
        new_status=new_status,
        reason=reason,
        actor=actor,
        details=json.dumps(metadata, default=str) if metadata else None,
    )
    return process_flight_command(command)
