"""Domain events for the Subscription aggregate."""

from protean.fields import Date, DateTime, Identifier, Integer, String

from flightwatch.domain import flightwatch


@flightwatch.event(part_of="Subscription")
class SubscriptionCreated:
    """A passenger subscribed to a flight and is pending verification."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    email: String(required=True)
    flight_number: String(required=True)
    flight_date: Date(required=True)
    expires_at: DateTime()
    created_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class SubscriptionVerified:
    """The subscriber confirmed their address."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    email: String(required=True)
    verified_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class VerificationFailed:
    """A verification attempt used the wrong token."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    attempts: Integer(required=True)
    failed_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class SubscriptionUnsubscribed:
    """The subscriber (or an administrator) stopped notifications."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    email: String(required=True)
    reason: String(required=True)
    by_admin: String()
    unsubscribed_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class SubscriptionReactivated:
    """A previously unsubscribed subscription was switched back on."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    status: String(required=True)
    reactivated_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class DataExportRequested:
    """The subscriber asked for a copy of their data."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    email: String(required=True)
    expires_at: DateTime(required=True)
    requested_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class DeletionRequested:
    """The subscriber invoked the right to be forgotten."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    email: String(required=True)
    requested_at: DateTime(required=True)


@flightwatch.event(part_of="Subscription")
class RetentionUpdated:
    """Consent or retention inputs changed and expiry was recomputed."""

    __version__ = 1

    subscription_id: Identifier(required=True)
    data_retention_days: Integer(required=True)
    consent_version: String()
    expires_at: DateTime()
    updated_at: DateTime(required=True)
