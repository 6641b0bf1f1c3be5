"""Consent and data-rights commands, plus per-address export and erasure.

``process_data_deletion_request`` and ``export_passenger_data`` work on
every subscription held for an email address. They run outside a command
so a single request can touch many aggregates.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.subscription.lifecycle import load_subscription
from flightwatch.subscription.subscription import Subscription

logger = structlog.get_logger(__name__)


@flightwatch.command(part_of="Subscription")
class RequestDataExport:
    subscription_id: Identifier(required=True)


@flightwatch.command(part_of="Subscription")
class RequestDeletion:
    subscription_id: Identifier(required=True)


@flightwatch.command(part_of="Subscription")
class UpdateRetention:
    """Change the retention window or the consent that anchors it."""

    subscription_id: Identifier(required=True)
    data_retention_days: Integer(min_value=1, max_value=3650)
    consent_date: DateTime()
    consent_version: String(max_length=20)


@flightwatch.command_handler(part_of=Subscription)
class DataRightsHandler:
    @handle(RequestDataExport)
    def request_export(self, command: RequestDataExport):
        subscription = load_subscription(command.subscription_id)
        token = subscription.request_data_export()
        current_domain.repository_for(Subscription).add(subscription)
        return token

    @handle(RequestDeletion)
    def request_deletion(self, command: RequestDeletion):
        subscription = load_subscription(command.subscription_id)
        subscription.request_deletion()
        current_domain.repository_for(Subscription).add(subscription)

    @handle(UpdateRetention)
    def update_retention(self, command: UpdateRetention):
        subscription = load_subscription(command.subscription_id)
        subscription.update_retention(
            data_retention_days=command.data_retention_days,
            consent_date=command.consent_date,
            consent_version=command.consent_version,
        )
        current_domain.repository_for(Subscription).add(subscription)
        return subscription.expires_at


def process_data_deletion_request(email: str, rate_limiter=None) -> dict:
    """Flag every subscription for ``email`` for erasure and drop its rate-limit counters."""
    repo = current_domain.repository_for(Subscription)
    subscriptions = repo.find_all_by_email(email)

    if not subscriptions:
        logger.info("No subscriptions found for deletion request", email=email)
        return {"success": True, "subscriptions_marked": 0, "message": "No data found"}

    for subscription in subscriptions:
        subscription.request_deletion()
        repo.add(subscription)

    if rate_limiter is None:
        from flightwatch.notification.dispatcher import get_dispatcher

        rate_limiter = get_dispatcher().rate_limiter
    rate_limiter.forget(email.strip().lower())

    logger.info("Data deletion request processed", email=email, subscriptions_marked=len(subscriptions))
    return {
        "success": True,
        "subscriptions_marked": len(subscriptions),
        "message": "Data deletion request processed successfully",
    }


def export_passenger_data(email: str) -> dict:
    """Minimal export of live subscriptions and their delivery history for ``email``."""
    subscriptions = current_domain.repository_for(Subscription).find_by_email(email)

    exported = []
    notifications = []
    for sub in subscriptions:
        passenger = None
        if sub.passenger:
            passenger = {
                "first_name": sub.passenger.first_name,
                "last_name": sub.passenger.last_name,
                "phone": sub.passenger.phone,
                "language": sub.passenger.language,
                "timezone": sub.passenger.timezone,
            }
        exported.append(
            {
                "flight_number": sub.flight_number,
                "flight_date": sub.flight_date.isoformat(),
                "passenger": passenger,
                "status": sub.status,
                "created_at": sub.created_at.isoformat() if sub.created_at else None,
                "preferences": sub.preferences.to_dict(),
                "notification_stats": {
                    "total_sent": sub.total_sent,
                    "emails_sent": sub.emails_sent,
                    "last_notification_sent": (
                        sub.last_notification_sent.isoformat() if sub.last_notification_sent else None
                    ),
                },
            }
        )
        notifications.extend(
            {
                "type": record.notification_type,
                "method": record.method,
                "sent_at": record.sent_at.isoformat(),
                "status": record.status,
            }
            for record in sub.history
        )

    logger.info(
        "Passenger data exported",
        email=email,
        subscription_count=len(exported),
        notification_count=len(notifications),
    )
    return {
        "email": email.strip().lower(),
        "exported_at": datetime.now(UTC).isoformat(),
        "subscriptions": exported,
        "notifications": notifications,
    }
