"""Status change template: sent to subscribers when their flight changes status."""

from html import escape

from flightwatch.config import NotificationSettings
from flightwatch.flight.flight import FlightStatus
from flightwatch.templates.formatting import greeting_name, local_time, passenger_zone

STATUS_DISPLAY_NAMES = {
    FlightStatus.SCHEDULED.value: "Scheduled",
    FlightStatus.DELAYED.value: "Delayed",
    FlightStatus.BOARDING.value: "Now Boarding",
    FlightStatus.DEPARTED.value: "Departed",
    FlightStatus.IN_AIR.value: "In Flight",
    FlightStatus.ARRIVED.value: "Arrived",
    FlightStatus.CANCELLED.value: "Cancelled",
    FlightStatus.DIVERTED.value: "Diverted",
}

STATUS_MESSAGES = {
    FlightStatus.BOARDING.value: "Your flight is now boarding. Please proceed to your gate.",
    FlightStatus.DEPARTED.value: "Your flight has departed.",
    FlightStatus.DELAYED.value: "Your flight has been delayed. Please check the updated departure time.",
    FlightStatus.CANCELLED.value: "Your flight has been cancelled. Please contact customer service for rebooking.",
    FlightStatus.IN_AIR.value: "Your flight is currently in the air.",
    FlightStatus.ARRIVED.value: "Your flight has arrived at its destination.",
    FlightStatus.DIVERTED.value: "Your flight has been diverted. The airline will share further instructions.",
}

URGENT_STATUSES = {FlightStatus.DELAYED.value, FlightStatus.CANCELLED.value, FlightStatus.DIVERTED.value}


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, f"Flight status has been updated to {status}.")


class StatusChangeTemplate:
    def __init__(self, settings: NotificationSettings | None = None):
        self.settings = settings or NotificationSettings.from_env()

    def render(self, subscription, flight, old_status) -> dict:
        new_status = flight.status
        zone = passenger_zone(subscription)
        old_name = STATUS_DISPLAY_NAMES.get(old_status, old_status)
        new_name = STATUS_DISPLAY_NAMES.get(new_status, new_status)
        unsubscribe_url = self.settings.unsubscribe_url(subscription.unsubscribe_token)

        prefix = "URGENT: " if new_status in URGENT_STATUSES else ""
        subject = f"{prefix}Flight {flight.flight_number} - {new_name}"

        lines = [
            f"Dear {greeting_name(subscription)},",
            "",
            "Your flight status has been updated:",
            "",
            f"- Flight: {flight.flight_number}",
        ]
        if flight.airline_name:
            lines.append(f"- Airline: {flight.airline_name}")
        lines += [
            f"- Route: {flight.route_string}",
            f"- Status: {old_name} -> {new_name}",
            f"- Departure: {local_time(flight.scheduled_departure, zone)}",
            f"- Arrival: {local_time(flight.scheduled_arrival, zone, with_date=False)}",
        ]
        if flight.is_delayed:
            lines.append(f"- Delay: {flight.delay_minutes} minutes ({flight.delay_reason or 'reason not specified'})")
            if flight.delay_description:
                lines.append(f"- Details: {flight.delay_description}")
        if flight.origin.gate:
            terminal = f" (Terminal {flight.origin.terminal})" if flight.origin.terminal else ""
            lines.append(f"- Departure Gate: {flight.origin.gate}{terminal}")
        if flight.destination.gate:
            terminal = f" (Terminal {flight.destination.terminal})" if flight.destination.terminal else ""
            lines.append(f"- Arrival Gate: {flight.destination.gate}{terminal}")
        lines += [
            "",
            status_message(new_status),
            "",
            "---",
            f"This email was sent to {subscription.email} because you subscribed to flight {flight.flight_number}.",
            f"To unsubscribe, visit: {unsubscribe_url}",
        ]
        text = "\n".join(lines)

        items = "".join(f"<li>{escape(line[2:])}</li>" for line in lines if line.startswith("- "))
        html = (
            f"<h1>{escape(subject)}</h1>"
            f"<p>Dear {escape(greeting_name(subscription))},</p>"
            f"<ul>{items}</ul>"
            f"<p>{escape(status_message(new_status))}</p>"
            f'<p><a href="{escape(unsubscribe_url)}">Unsubscribe</a></p>'
        )
        return {"subject": subject, "text": text, "html": html}
