"""Error taxonomy for flight tracking and passenger notifications.

Business-rule failures build on Protean's ``ValidationError`` so callers can
read ``exc.messages`` the same way for field errors and rule violations.
Infrastructure failures (delivery, persistence) are plain exceptions.
"""

from protean.exceptions import ObjectNotFoundError, ValidationError


class InvalidTransitionError(ValidationError):
    """A flight was asked to move to a status its current status does not allow."""

    def __init__(self, current, requested, allowed):
        self.current = current
        self.requested = requested
        self.allowed = sorted(allowed)
        allowed_text = ", ".join(self.allowed) if self.allowed else "none"
        super().__init__({"status": [f"Cannot transition from {current} to {requested} (allowed: {allowed_text})"]})


class ConflictError(ValidationError):
    """A flight or subscription with the same identity already exists."""

    def __init__(self, field, message):
        super().__init__({field: [message]})


class NotFoundError(ObjectNotFoundError):
    pass


# ---------------------------------------------------------------------------
# Subscription lifecycle
# ---------------------------------------------------------------------------
class LifecycleError(ValidationError):
    """Base class for expected subscription lifecycle conditions."""

    field = "subscription"
    default_message = "Subscription lifecycle error"

    def __init__(self, message=None):
        super().__init__({self.field: [message or self.default_message]})


class TokenExpiredError(LifecycleError):
    field = "verification_token"
    default_message = "Verification token has expired"


class InvalidTokenError(LifecycleError):
    field = "token"
    default_message = "Token does not match"


class MaxAttemptsExceededError(LifecycleError):
    field = "verification_attempts"
    default_message = "Maximum verification attempts exceeded"


class AlreadyVerifiedError(LifecycleError):
    field = "is_verified"
    default_message = "Subscription is already verified"


class AlreadyUnsubscribedError(LifecycleError):
    field = "is_unsubscribed"
    default_message = "Subscription is already unsubscribed"


class NotUnsubscribedError(LifecycleError):
    field = "is_unsubscribed"
    default_message = "Subscription is not unsubscribed"


class ExpiredError(LifecycleError):
    field = "expires_at"
    default_message = "Subscription has expired"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
class RateLimitedError(Exception):
    """Recipient exceeded its send budget. Reported as a skip, never a failure."""

    def __init__(self, recipient):
        self.recipient = recipient
        super().__init__(f"Rate limit exceeded for {recipient}")


class DeliveryError(Exception):
    """The delivery channel could not hand off a message."""

    def __init__(self, message, transient=True):
        self.transient = transient
        super().__init__(message)


class DatabaseError(Exception):
    """The persistence collaborator is unavailable."""
