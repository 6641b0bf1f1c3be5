"""Query shapes for finding subscriptions to notify, expire or clean up."""

from datetime import UTC, datetime, timedelta

from flightwatch.domain import flightwatch
from flightwatch.subscription.preferences import NotificationType
from flightwatch.subscription.subscription import MAX_VERIFICATION_ATTEMPTS, Subscription, SubscriptionStatus

_NOTIFIABLE_STATUSES = [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PENDING.value]


@flightwatch.repository(part_of=Subscription)
class SubscriptionRepository:
    def find_active_by_flight(self, flight_number: str, flight_date=None) -> list[Subscription]:
        """Live subscriptions for a flight, oldest first.

        ``flight_date`` narrows the match to subscriptions for that departure day.
        """
        criteria = {
            "flight_number": flight_number.strip().upper(),
            "is_active": True,
            "is_unsubscribed": False,
            "status__in": _NOTIFIABLE_STATUSES,
        }
        if flight_date is not None:
            criteria["flight_date"] = flight_date
        return self._dao.query.filter(**criteria).order_by("created_at").all().items

    def find_by_email(self, email: str) -> list[Subscription]:
        """Live subscriptions for an address, ordered by flight date."""
        return (
            self._dao.query.filter(email=email.strip().lower(), is_active=True, is_unsubscribed=False)
            .order_by("flight_date")
            .all()
            .items
        )

    def find_all_by_email(self, email: str) -> list[Subscription]:
        """Every subscription for an address, including inactive ones."""
        return self._dao.query.filter(email=email.strip().lower()).order_by("flight_date").all().items

    def find_by_unsubscribe_token(self, token: str) -> Subscription | None:
        matches = self._dao.query.filter(unsubscribe_token=token).all().items
        return matches[0] if matches else None

    def find_duplicate(self, email: str, flight_number: str, flight_date) -> Subscription | None:
        matches = (
            self._dao.query.filter(
                email=email.strip().lower(),
                flight_number=flight_number.strip().upper(),
                flight_date=flight_date,
            )
            .all()
            .items
        )
        return matches[0] if matches else None

    def find_for_notification(self, flight_number: str, flight_date, notification_type) -> list[Subscription]:
        """Verified, active subscriptions that opted in to ``notification_type``."""
        notification_type = NotificationType(notification_type)
        candidates = self._dao.query.filter(
            flight_number=flight_number.strip().upper(),
            flight_date=flight_date,
            is_verified=True,
            is_active=True,
            is_unsubscribed=False,
            status=SubscriptionStatus.ACTIVE.value,
        ).all().items
        return [sub for sub in candidates if sub.preferences.is_enabled(notification_type)]

    def find_expiring(self, days: int = 7, now=None) -> list[Subscription]:
        """Live subscriptions whose expiry falls within ``days``, soonest first."""
        now = now or datetime.now(UTC)
        return (
            self._dao.query.filter(
                expires_at__lte=now + timedelta(days=days),
                is_active=True,
                is_unsubscribed=False,
            )
            .order_by("expires_at")
            .all()
            .items
        )

    def find_unverified(self, hours_old: int = 24, now=None) -> list[Subscription]:
        """Unverified subscriptions older than ``hours_old`` that can still be verified."""
        now = now or datetime.now(UTC)
        return (
            self._dao.query.filter(
                is_verified=False,
                created_at__lte=now - timedelta(hours=hours_old),
                verification_attempts__lt=MAX_VERIFICATION_ATTEMPTS,
                is_active=True,
            )
            .order_by("created_at")
            .all()
            .items
        )
