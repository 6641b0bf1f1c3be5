"""Reacts to flight status changes by notifying the flight's subscribers."""

import structlog
from protean.utils.mixins import handle

from flightwatch.domain import flightwatch
from flightwatch.flight.events import FlightStatusChanged
from flightwatch.flight.registration import find_flight
from flightwatch.notification.dispatcher import get_dispatcher
from flightwatch.subscription.subscription import Subscription
from flightwatch.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)


@flightwatch.event_handler(part_of=Subscription, stream_category="flightwatch::flight")
class FlightStatusEventsHandler:
    """Fans each accepted status change out through the dispatcher."""

    @handle(FlightStatusChanged)
    def on_flight_status_changed(self, event: FlightStatusChanged) -> None:
        add_context(flight_number=event.flight_number)
        try:
            flight = find_flight(event.flight_number)
            if flight is None:
                logger.error("Flight not found for status change", flight_id=str(event.flight_id))
                return

            if flight.status != event.new_status:
                logger.info(
                    "Status change superseded, skipping dispatch",
                    event_status=event.new_status,
                    current_status=flight.status,
                )
                return

            result = get_dispatcher().dispatch(flight, event.previous_status, actor=event.actor or "System")
            logger.info(
                "Status change dispatched",
                sent=result.notifications_sent,
                failed=result.notifications_failed,
                message=result.message,
            )
        finally:
            clear_context()
