"""Verification, unsubscribe and reactivation commands.

A wrong verification token still has to count against the attempt limit,
so ``VerifySubscription`` saves the subscription and reports the failure in
its result instead of raising inside the unit of work.
``verify_subscription`` turns that result back into ``InvalidTokenError``.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from flightwatch.domain import flightwatch
from flightwatch.exceptions import InvalidTokenError, NotFoundError
from flightwatch.subscription.subscription import Subscription, UnsubscribeReason

logger = structlog.get_logger(__name__)


@flightwatch.command(part_of="Subscription")
class VerifySubscription:
    subscription_id: Identifier(required=True)
    token: String(required=True, max_length=64)


@flightwatch.command(part_of="Subscription")
class UnsubscribeSubscription:
    """Stop notifications, by subscription id or by the emailed unsubscribe token alone."""

    subscription_id: Identifier()
    token: String(max_length=64)
    reason: String(choices=UnsubscribeReason, default=UnsubscribeReason.USER_REQUEST.value)
    feedback: String(max_length=500)
    by_admin: Boolean(default=False)


@flightwatch.command(part_of="Subscription")
class ReactivateSubscription:
    subscription_id: Identifier(required=True)


def load_subscription(subscription_id) -> Subscription:
    try:
        return current_domain.repository_for(Subscription).get(str(subscription_id))
    except ObjectNotFoundError as exc:
        raise NotFoundError(f"Subscription {subscription_id} not found") from exc


@flightwatch.command_handler(part_of=Subscription)
class SubscriptionLifecycleHandler:
    @handle(VerifySubscription)
    def verify(self, command: VerifySubscription):
        subscription = load_subscription(command.subscription_id)
        repo = current_domain.repository_for(Subscription)

        try:
            subscription.verify(command.token)
        except InvalidTokenError:
            repo.add(subscription)
            logger.warning(
                "Verification token mismatch",
                subscription_id=str(subscription.id),
                attempts=subscription.verification_attempts,
            )
            return {"verified": False, "attempts": subscription.verification_attempts}

        repo.add(subscription)
        return {"verified": True, "attempts": subscription.verification_attempts}

    @handle(UnsubscribeSubscription)
    def unsubscribe(self, command: UnsubscribeSubscription):
        repo = current_domain.repository_for(Subscription)
        if command.subscription_id:
            subscription = load_subscription(command.subscription_id)
        elif command.token:
            subscription = repo.find_by_unsubscribe_token(command.token)
            if subscription is None:
                raise NotFoundError("No subscription matches this unsubscribe token")
        else:
            raise InvalidTokenError("Unsubscribe token is required")

        subscription.unsubscribe(
            token=command.token,
            reason=command.reason,
            feedback=command.feedback,
            by_admin=command.by_admin,
        )
        repo.add(subscription)
        return str(subscription.id)

    @handle(ReactivateSubscription)
    def reactivate(self, command: ReactivateSubscription):
        subscription = load_subscription(command.subscription_id)
        subscription.reactivate()
        current_domain.repository_for(Subscription).add(subscription)
        return subscription.status


def verify_subscription(subscription_id, token) -> dict:
    """Verify a subscription, raising ``InvalidTokenError`` after the attempt is saved."""
    result = current_domain.process(
        VerifySubscription(subscription_id=str(subscription_id), token=token),
        asynchronous=False,
    )
    if not result["verified"]:
        raise InvalidTokenError(f"Invalid verification token ({result['attempts']} attempts used)")
    return result
