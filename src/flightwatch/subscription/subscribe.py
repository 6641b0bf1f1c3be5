"""Subscribing to a flight: command and handler."""

from protean import handle
from protean.fields import Boolean, Date, Integer, String
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.exceptions import ConflictError
from flightwatch.subscription.subscription import Language, Subscription, SubscriptionSource


@flightwatch.command(part_of="Subscription")
class Subscribe:
    """Subscribe an address to status updates for a flight on a given date."""

    email: String(required=True, max_length=254)
    flight_number: String(required=True, max_length=7)
    flight_date: Date(required=True)
    pnr: String(max_length=6)
    first_name: String(max_length=50)
    last_name: String(max_length=50)
    phone: String(max_length=16)
    language: String(choices=Language, default=Language.EN.value)
    timezone: String(max_length=50, default="UTC")
    source: String(choices=SubscriptionSource, default=SubscriptionSource.WEBSITE.value)
    consent_given: Boolean(default=False)
    data_processing_consent: Boolean(default=False)
    marketing_consent: Boolean(default=False)
    data_retention_days: Integer(default=365, min_value=1, max_value=3650)
    consent_version: String(max_length=20, default="1.0")


@flightwatch.command_handler(part_of=Subscription)
class SubscribeHandler:
    @handle(Subscribe)
    def subscribe(self, command: Subscribe):
        repo = current_domain.repository_for(Subscription)
        if repo.find_duplicate(command.email, command.flight_number, command.flight_date) is not None:
            raise ConflictError(
                "email",
                f"{command.email} is already subscribed to {command.flight_number} on {command.flight_date}",
            )

        subscription = Subscription.create(
            email=command.email,
            flight_number=command.flight_number,
            flight_date=command.flight_date,
            consent_given=command.consent_given,
            data_processing_consent=command.data_processing_consent,
            pnr=command.pnr,
            first_name=command.first_name,
            last_name=command.last_name,
            phone=command.phone,
            language=command.language,
            timezone=command.timezone,
            source=command.source,
            marketing_consent=command.marketing_consent,
            data_retention_days=command.data_retention_days,
            consent_version=command.consent_version,
        )
        repo.add(subscription)
        return str(subscription.id)
