"""Notification dispatcher: fans a flight status change out to its subscribers.

For every live subscription on the flight's departure day the dispatcher
checks preferences, then the recipient's rate limit, renders the message,
delivers it with bounded linear-backoff retries and records the outcome on
the subscription. One subscriber's failure never stops the batch; a
persistence outage does.
"""

import threading
import time
from dataclasses import asdict, dataclass, field

import structlog
from protean.utils.globals import current_domain

from flightwatch.channel import get_channel
from flightwatch.config import NotificationSettings
from flightwatch.exceptions import DatabaseError, DeliveryError, RateLimitedError
from flightwatch.notification.rate_limiter import RateLimiter
from flightwatch.subscription.preferences import DeliveryMethod, preference_for_status
from flightwatch.subscription.subscription import DeliveryStatus, Subscription
from flightwatch.templates import StatusChangeTemplate, VerificationTemplate

logger = structlog.get_logger(__name__)

VERIFICATION = "verification"


@dataclass
class DeliveryDetail:
    """Outcome for one subscription in a batch."""

    subscription_id: str
    email: str
    status: str  # sent | failed | rate_limited | error
    message_id: str | None = None
    error: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DispatchResult:
    success: bool
    notifications_sent: int = 0
    notifications_failed: int = 0
    details: list[DeliveryDetail] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
            "details": [detail.to_dict() for detail in self.details],
            "message": self.message,
        }


@dataclass(frozen=True)
class _Delivery:
    success: bool
    attempts: int
    message_id: str | None = None
    error: str | None = None


class NotificationDispatcher:
    def __init__(
        self,
        settings: NotificationSettings | None = None,
        rate_limiter: RateLimiter | None = None,
        channel=None,
        renderer=None,
        repository=None,
        sleep=time.sleep,
    ):
        self.settings = settings or NotificationSettings.from_env()
        if rate_limiter is None:
            rate_limiter = RateLimiter(max_per_hour=self.settings.max_per_hour, max_per_day=self.settings.max_per_day)
        self.rate_limiter = rate_limiter
        self.channel = channel if channel is not None else get_channel(self.settings.mode)
        self.renderer = renderer if renderer is not None else StatusChangeTemplate(self.settings)
        self.verification_renderer = VerificationTemplate(self.settings)
        self._repository = repository
        self._sleep = sleep
        self.enabled = True

        self._stats_lock = threading.Lock()
        self._stats = {
            "dispatches": 0,
            "sent": 0,
            "failed": 0,
            "rate_limited": 0,
            "errors": 0,
            "retries": 0,
            "verifications_sent": 0,
        }

    @property
    def repository(self):
        if self._repository is not None:
            return self._repository
        return current_domain.repository_for(Subscription)

    # -------------------------------------------------------------------
    # Service switches and reporting
    # -------------------------------------------------------------------
    def enable(self):
        self.enabled = True
        logger.info("Notification dispatcher enabled")

    def disable(self):
        self.enabled = False
        logger.warning("Notification dispatcher disabled")

    def _count(self, key, amount=1):
        with self._stats_lock:
            self._stats[key] += amount

    def stats(self) -> dict:
        with self._stats_lock:
            snapshot = dict(self._stats)
        snapshot["enabled"] = self.enabled
        snapshot["rate_limit_buckets"] = len(self.rate_limiter)
        return snapshot

    def health(self) -> dict:
        return {
            "status": "healthy" if self.enabled else "disabled",
            "mode": self.settings.mode,
            "retry_attempts": self.settings.retry_attempts,
            "max_per_hour": self.settings.max_per_hour,
            "max_per_day": self.settings.max_per_day,
        }

    # -------------------------------------------------------------------
    # Batch dispatch
    # -------------------------------------------------------------------
    def dispatch(self, flight, old_status, actor="System") -> DispatchResult:
        """Notify every matching subscriber about ``flight``'s move from ``old_status``.

        Raises ``DatabaseError`` when subscriptions cannot be queried or saved;
        outcomes already saved for earlier subscribers stay saved.
        """
        if not self.enabled:
            return DispatchResult(success=True, message="Service disabled")

        self._count("dispatches")
        log = logger.bind(flight_number=flight.flight_number, old_status=old_status, new_status=flight.status)

        try:
            subscriptions = self.repository.find_active_by_flight(flight.flight_number, flight.departure_date)
        except Exception as exc:
            log.error("Subscription query failed", error=str(exc))
            raise DatabaseError(f"Could not load subscriptions for {flight.flight_number}") from exc

        if not subscriptions:
            log.info("No subscriptions for flight")
            return DispatchResult(success=True, message="no subscriptions")

        result = DispatchResult(success=True)
        for subscription in subscriptions:
            try:
                detail = self._notify(subscription, flight, old_status)
            except DatabaseError:
                log.error("Persistence failure, aborting remaining batch", subscription_id=str(subscription.id))
                raise
            except Exception as exc:
                log.exception("Notification failed", subscription_id=str(subscription.id))
                self._count("errors")
                detail = DeliveryDetail(
                    subscription_id=str(subscription.id),
                    email=subscription.email,
                    status="error",
                    error=str(exc),
                )

            if detail is None:
                continue
            result.details.append(detail)
            if detail.status == DeliveryStatus.SENT.value:
                result.notifications_sent += 1
            elif detail.status in (DeliveryStatus.FAILED.value, "error"):
                result.notifications_failed += 1

        log.info(
            "Dispatch complete",
            actor=actor,
            matched=len(subscriptions),
            sent=result.notifications_sent,
            failed=result.notifications_failed,
        )
        return result

    def _notify(self, subscription, flight, old_status) -> DeliveryDetail | None:
        if not subscription.should_notify(old_status, flight.status):
            return None

        if not self.rate_limiter.try_acquire(subscription.email):
            logger.info("Recipient rate limited", subscription_id=str(subscription.id), email=subscription.email)
            self._count("rate_limited")
            return DeliveryDetail(
                subscription_id=str(subscription.id),
                email=subscription.email,
                status="rate_limited",
                error=str(RateLimitedError(subscription.email)),
            )

        try:
            content = self.renderer.render(subscription, flight, old_status)
            delivery = self._deliver(subscription.email, content)
        except Exception:
            self.rate_limiter.release(subscription.email)
            raise
        if not delivery.success:
            self.rate_limiter.release(subscription.email)

        notification_type = preference_for_status(flight.status).value
        return self._record(subscription, notification_type, delivery)

    def _record(self, subscription, notification_type, delivery: _Delivery) -> DeliveryDetail:
        if delivery.success:
            status = DeliveryStatus.SENT.value
            subscription.add_notification(notification_type, DeliveryMethod.EMAIL.value, status, delivery.message_id)
            self._count("sent")
        else:
            status = DeliveryStatus.FAILED.value
            subscription.add_notification(notification_type, DeliveryMethod.EMAIL.value, status, None, delivery.error)
            self._count("failed")

        self._save(subscription)
        return DeliveryDetail(
            subscription_id=str(subscription.id),
            email=subscription.email,
            status=status,
            message_id=delivery.message_id,
            error=delivery.error,
            attempts=delivery.attempts,
        )

    def _save(self, subscription):
        try:
            self.repository.add(subscription)
        except Exception as exc:
            raise DatabaseError(f"Could not save subscription {subscription.id}") from exc

    # -------------------------------------------------------------------
    # Delivery with retry
    # -------------------------------------------------------------------
    def _deliver(self, recipient, content) -> _Delivery:
        """Send once, then retry transient failures up to ``retry_attempts`` times.

        The wait before retry ``n`` is ``retry_delay * n`` seconds.
        """
        error = None
        total = self.settings.retry_attempts + 1
        for attempt in range(1, total + 1):
            if attempt > 1:
                delay = self.settings.retry_delay * (attempt - 1)
                logger.warning("Retrying delivery", recipient=recipient, attempt=attempt, delay=delay, error=error)
                self._count("retries")
                self._sleep(delay)

            try:
                response = self.channel.send(
                    to=recipient,
                    subject=content["subject"],
                    body=content["text"],
                    html_body=content.get("html"),
                    sender=self.settings.sender,
                )
            except DeliveryError as exc:
                error = str(exc)
                if not exc.transient:
                    return _Delivery(success=False, attempts=attempt, error=error)
                continue

            if response.get("status") == "sent":
                return _Delivery(success=True, attempts=attempt, message_id=response.get("message_id"))
            error = response.get("error") or "Unknown delivery error"

        logger.error("Delivery failed after retries", recipient=recipient, attempts=total, error=error)
        return _Delivery(success=False, attempts=total, error=error)

    # -------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------
    def send_verification(self, subscription) -> DeliveryDetail:
        """Email the verification link and record it in the subscription's history."""
        content = self.verification_renderer.render(subscription)
        delivery = self._deliver(subscription.email, content)
        detail = self._record(subscription, VERIFICATION, delivery)
        if delivery.success:
            self._count("verifications_sent")
        return detail


_dispatcher_instance = None


def get_dispatcher() -> NotificationDispatcher:
    """Return the process-wide dispatcher (singleton)."""
    global _dispatcher_instance
    if _dispatcher_instance is None:
        _dispatcher_instance = NotificationDispatcher()
    return _dispatcher_instance


def reset_dispatcher():
    """Reset the dispatcher singleton (useful for testing)."""
    global _dispatcher_instance
    _dispatcher_instance = None
