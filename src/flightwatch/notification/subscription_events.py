"""Sends the verification email when a subscription is created."""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from flightwatch.domain import flightwatch
from flightwatch.notification.dispatcher import get_dispatcher
from flightwatch.subscription.events import SubscriptionCreated
from flightwatch.subscription.subscription import Subscription

logger = structlog.get_logger(__name__)


@flightwatch.event_handler(part_of=Subscription)
class SubscriptionEventsHandler:
    @handle(SubscriptionCreated)
    def on_subscription_created(self, event: SubscriptionCreated) -> None:
        try:
            subscription = current_domain.repository_for(Subscription).get(str(event.subscription_id))
        except ObjectNotFoundError:
            logger.error("Subscription not found for verification", subscription_id=str(event.subscription_id))
            return

        if subscription.is_verified:
            return

        detail = get_dispatcher().send_verification(subscription)
        logger.info(
            "Verification email processed",
            subscription_id=str(subscription.id),
            status=detail.status,
        )
