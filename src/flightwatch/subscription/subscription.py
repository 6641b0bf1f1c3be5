"""Subscription aggregate: a passenger's opt-in to updates for one flight.

Lifecycle:
    PENDING → ACTIVE (verify)
    PENDING, ACTIVE → UNSUBSCRIBED (unsubscribe, token-gated unless admin)
    UNSUBSCRIBED → ACTIVE or PENDING (reactivate, unless expired)

The logical status is tracked in ``status`` and mirrors the
``is_verified`` / ``is_unsubscribed`` flags. Expiry is the earlier of
flight date + 7 days and consent date + retention days, and only ever
tightens once set.
"""

import secrets
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, Date, DateTime, HasMany, Integer, String, Text, ValueObject

from flightwatch.domain import flightwatch
from flightwatch.exceptions import (
    AlreadyUnsubscribedError,
    AlreadyVerifiedError,
    ExpiredError,
    InvalidTokenError,
    MaxAttemptsExceededError,
    NotUnsubscribedError,
    TokenExpiredError,
)
from flightwatch.subscription.events import (
    DataExportRequested,
    DeletionRequested,
    RetentionUpdated,
    SubscriptionCreated,
    SubscriptionReactivated,
    SubscriptionUnsubscribed,
    SubscriptionVerified,
    VerificationFailed,
)
from flightwatch.subscription.preferences import DeliveryMethod, NotificationPreferences
from flightwatch.validators import (
    collect_errors,
    validate_email,
    validate_flight_number,
    validate_future_date,
    validate_phone,
    validate_pnr,
)

MAX_VERIFICATION_ATTEMPTS = 5
VERIFICATION_TOKEN_TTL = timedelta(hours=24)
EXPORT_TOKEN_TTL = timedelta(days=7)
POST_FLIGHT_RETENTION = timedelta(days=7)
HISTORY_LIMIT = 100
HISTORY_KEEP = 50


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SubscriptionStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNSUBSCRIBED = "unsubscribed"
    EXPIRED = "expired"


class UnsubscribeReason(Enum):
    USER_REQUEST = "user_request"
    BOUNCE = "bounce"
    SPAM_COMPLAINT = "spam_complaint"
    ADMIN_ACTION = "admin_action"
    GDPR_REQUEST = "gdpr_request"
    EXPIRED = "expired"


class DeliveryStatus(Enum):
    SENT = "sent"
    FAILED = "failed"
    BOUNCED = "bounced"
    DELIVERED = "delivered"


class SubscriptionSource(Enum):
    WEBSITE = "website"
    MOBILE_APP = "mobile_app"
    API = "api"
    IMPORT = "import"
    ADMIN = "admin"


class Language(Enum):
    EN = "en"
    ID = "id"
    ES = "es"
    FR = "fr"
    DE = "de"
    JA = "ja"
    KO = "ko"
    ZH = "zh"


def _as_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _new_token() -> str:
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@flightwatch.value_object(part_of="Subscription")
class PassengerInfo:
    """Optional passenger details used to personalise messages."""

    first_name: String(max_length=50)
    last_name: String(max_length=50)
    phone: String(max_length=16)
    language: String(choices=Language, default=Language.EN.value)
    timezone: String(max_length=50, default="UTC")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@flightwatch.entity(part_of="Subscription")
class NotificationRecord:
    """One delivery attempt outcome kept in the subscription's history."""

    sequence: Integer(required=True)
    notification_type: String(required=True, max_length=50)
    method: String(choices=DeliveryMethod, required=True)
    status: String(choices=DeliveryStatus, default=DeliveryStatus.SENT.value)
    sent_at: DateTime(required=True)
    message_id: String(max_length=255)
    error: String(max_length=1000)


@flightwatch.entity(part_of="Subscription")
class DataExportRequest:
    """A GDPR data export request with a time-limited download token."""

    download_token: String(required=True, max_length=64)
    requested_at: DateTime(required=True)
    expires_at: DateTime(required=True)
    processed_at: DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@flightwatch.aggregate
class Subscription:
    """A passenger's subscription to status updates for one flight on one date."""

    # Target
    email: String(required=True, max_length=254)
    flight_number: String(required=True, max_length=7)
    flight_date: Date(required=True)
    pnr: String(max_length=6)
    passenger: ValueObject(PassengerInfo)
    source: String(choices=SubscriptionSource, default=SubscriptionSource.WEBSITE.value)

    # Preferences
    preferences_data: Text()  # JSON, see NotificationPreferences

    # Statistics
    total_sent: Integer(default=0)
    emails_sent: Integer(default=0)
    sms_sent: Integer(default=0)
    push_sent: Integer(default=0)
    last_notification_sent: DateTime()
    notification_sequence: Integer(default=0)
    notification_history: HasMany(NotificationRecord)

    # Verification
    is_verified: Boolean(default=False)
    verification_token: String(max_length=64)
    verification_token_expires: DateTime()
    verified_at: DateTime()
    verification_attempts: Integer(default=0, min_value=0, max_value=MAX_VERIFICATION_ATTEMPTS)

    # Unsubscribe
    unsubscribe_token: String(max_length=64)
    is_unsubscribed: Boolean(default=False)
    unsubscribed_at: DateTime()
    unsubscribe_reason: String(choices=UnsubscribeReason)
    unsubscribe_feedback: String(max_length=500)

    # Consent
    consent_given: Boolean(default=False)
    consent_date: DateTime()
    consent_version: String(max_length=20, default="1.0")
    data_retention_days: Integer(default=365, min_value=1, max_value=3650)
    data_processing_consent: Boolean(default=False)
    marketing_consent: Boolean(default=False)
    deletion_requested: Boolean(default=False)
    deletion_requested_at: DateTime()
    deletion_processed_at: DateTime()
    export_requests: HasMany(DataExportRequest)

    # Lifecycle
    status: String(choices=SubscriptionStatus, default=SubscriptionStatus.PENDING.value)
    is_active: Boolean(default=True)
    expires_at: DateTime()
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def history_is_bounded(self):
        if len(self.notification_history) > HISTORY_LIMIT:
            raise ValidationError({"notification_history": [f"Cannot keep more than {HISTORY_LIMIT} records"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        email,
        flight_number,
        flight_date,
        consent_given,
        data_processing_consent,
        pnr=None,
        first_name=None,
        last_name=None,
        phone=None,
        language=Language.EN.value,
        timezone="UTC",
        source=SubscriptionSource.WEBSITE.value,
        marketing_consent=False,
        data_retention_days=365,
        consent_version="1.0",
        preferences=None,
        now=None,
    ):
        """Create a subscription pending verification.

        Both consent flags must be true. Tokens are generated here and the
        expiry starts at flight date + 7 days, tightened by the retention window.
        """
        now = _as_utc(now) or datetime.now(UTC)
        email = (email or "").strip().lower()
        flight_number = (flight_number or "").strip().upper()
        pnr = pnr.strip().upper() if pnr else None

        checks = {
            "email": validate_email(email),
            "flight_number": validate_flight_number(flight_number),
            "flight_date": validate_future_date(flight_date, today=now.date()),
            "consent_given": None if consent_given is True else "Consent must be given",
            "data_processing_consent": None if data_processing_consent is True else "Data processing consent is required",
        }
        if pnr:
            checks["pnr"] = validate_pnr(pnr)
        if phone:
            checks["phone"] = validate_phone(phone)
        collect_errors(checks)

        passenger = None
        if first_name or last_name or phone:
            passenger = PassengerInfo(
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                language=language,
                timezone=timezone,
            )

        subscription = cls(
            email=email,
            flight_number=flight_number,
            flight_date=flight_date,
            pnr=pnr,
            passenger=passenger,
            source=source,
            preferences_data=(preferences or NotificationPreferences()).to_json(),
            verification_token=_new_token(),
            verification_token_expires=now + VERIFICATION_TOKEN_TTL,
            unsubscribe_token=_new_token(),
            consent_given=True,
            consent_date=now,
            consent_version=consent_version,
            data_retention_days=data_retention_days,
            data_processing_consent=True,
            marketing_consent=marketing_consent,
            status=SubscriptionStatus.PENDING.value,
            is_active=True,
            expires_at=_start_of_day(flight_date) + POST_FLIGHT_RETENTION,
            created_at=now,
            updated_at=now,
        )
        subscription._tighten_expiry()

        subscription.raise_(
            SubscriptionCreated(
                subscription_id=str(subscription.id),
                email=email,
                flight_number=flight_number,
                flight_date=flight_date,
                expires_at=subscription.expires_at,
                created_at=now,
            )
        )
        return subscription

    # -------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------
    @property
    def preferences(self) -> NotificationPreferences:
        return NotificationPreferences.from_json(self.preferences_data)

    @property
    def history(self) -> list[NotificationRecord]:
        """Notification history, oldest first."""
        return sorted(self.notification_history, key=lambda record: record.sequence)

    @property
    def notification_count(self) -> int:
        return self.total_sent or 0

    @property
    def gdpr_expiry_date(self):
        if not self.consent_date or not self.data_retention_days:
            return None
        return _as_utc(self.consent_date) + timedelta(days=self.data_retention_days)

    def is_expired(self, now=None) -> bool:
        now = _as_utc(now) or datetime.now(UTC)
        return self.expires_at is not None and now > _as_utc(self.expires_at)

    def days_until_expiry(self, now=None) -> int | None:
        if self.expires_at is None:
            return None
        now = _as_utc(now) or datetime.now(UTC)
        remaining = (_as_utc(self.expires_at) - now).total_seconds()
        return -int(-remaining // 86400)  # ceiling

    def is_verification_expired(self, now=None) -> bool:
        now = _as_utc(now) or datetime.now(UTC)
        return self.verification_token_expires is not None and now > _as_utc(self.verification_token_expires)

    def update_preferences(self, notification_type, **changes):
        self.preferences_data = self.preferences.updated(notification_type, **changes).to_json()
        self.updated_at = datetime.now(UTC)

    def should_notify(self, old_status, new_status) -> bool:
        if old_status == new_status:
            return False
        return self.preferences.allows(new_status)

    # -------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------
    def verify(self, token, now=None):
        """Confirm the subscriber's address with the emailed token.

        A wrong token still counts as an attempt; the caller is expected to
        persist the subscription before surfacing the error.
        """
        now = _as_utc(now) or datetime.now(UTC)

        if self.is_verified:
            raise AlreadyVerifiedError()
        if self.is_verification_expired(now):
            raise TokenExpiredError()
        if self.verification_attempts >= MAX_VERIFICATION_ATTEMPTS:
            raise MaxAttemptsExceededError()

        if not token or not secrets.compare_digest(str(token), self.verification_token or ""):
            self.verification_attempts += 1
            self.updated_at = now
            self.raise_(
                VerificationFailed(
                    subscription_id=str(self.id),
                    attempts=self.verification_attempts,
                    failed_at=now,
                )
            )
            raise InvalidTokenError("Invalid verification token")

        self.is_verified = True
        self.verified_at = now
        self.verification_token = None
        self.verification_token_expires = None
        self.status = SubscriptionStatus.ACTIVE.value
        self.updated_at = now

        self.raise_(
            SubscriptionVerified(
                subscription_id=str(self.id),
                email=self.email,
                verified_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Unsubscribe / reactivate
    # -------------------------------------------------------------------
    def unsubscribe(
        self,
        token=None,
        reason=UnsubscribeReason.USER_REQUEST.value,
        feedback=None,
        by_admin=False,
        now=None,
    ):
        """Stop notifications. Without a token only an administrator may do this."""
        if self.is_unsubscribed:
            raise AlreadyUnsubscribedError()
        if token is None:
            if not by_admin:
                raise InvalidTokenError("Unsubscribe token is required")
        elif not secrets.compare_digest(str(token), self.unsubscribe_token or ""):
            raise InvalidTokenError("Invalid unsubscribe token")

        reasons = {r.value for r in UnsubscribeReason}
        if reason not in reasons:
            raise ValidationError({"unsubscribe_reason": [f"Unknown unsubscribe reason: {reason}"]})
        if feedback and len(feedback) > 500:
            raise ValidationError({"unsubscribe_feedback": ["Feedback cannot exceed 500 characters"]})

        now = _as_utc(now) or datetime.now(UTC)
        with atomic_change(self):
            self.is_unsubscribed = True
            self.unsubscribed_at = now
            self.unsubscribe_reason = reason
            self.unsubscribe_feedback = feedback
            self.is_active = False
            self.status = SubscriptionStatus.UNSUBSCRIBED.value
            self.updated_at = now

        self.raise_(
            SubscriptionUnsubscribed(
                subscription_id=str(self.id),
                email=self.email,
                reason=reason,
                by_admin=str(by_admin),
                unsubscribed_at=now,
            )
        )

    def reactivate(self, now=None):
        now = _as_utc(now) or datetime.now(UTC)

        if not self.is_unsubscribed:
            raise NotUnsubscribedError()
        if self.is_expired(now):
            raise ExpiredError("Cannot reactivate an expired subscription")

        status = SubscriptionStatus.ACTIVE if self.is_verified else SubscriptionStatus.PENDING
        with atomic_change(self):
            self.is_unsubscribed = False
            self.unsubscribed_at = None
            self.unsubscribe_reason = None
            self.unsubscribe_feedback = None
            self.is_active = True
            self.status = status.value
            self.updated_at = now

        self.raise_(
            SubscriptionReactivated(
                subscription_id=str(self.id),
                status=status.value,
                reactivated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------
    def add_notification(
        self,
        notification_type,
        method,
        status=DeliveryStatus.SENT.value,
        message_id=None,
        error=None,
        now=None,
    ):
        """Record a delivery outcome and bump the counters.

        History beyond 100 entries is cut back to the newest 50.
        """
        now = _as_utc(now) or datetime.now(UTC)
        method = DeliveryMethod(method)

        with atomic_change(self):
            self.total_sent = (self.total_sent or 0) + 1
            if method == DeliveryMethod.EMAIL:
                self.emails_sent = (self.emails_sent or 0) + 1
            elif method == DeliveryMethod.SMS:
                self.sms_sent = (self.sms_sent or 0) + 1
            else:
                self.push_sent = (self.push_sent or 0) + 1
            self.last_notification_sent = now

            self.notification_sequence = (self.notification_sequence or 0) + 1
            record = NotificationRecord(
                sequence=self.notification_sequence,
                notification_type=notification_type,
                method=method.value,
                status=status,
                sent_at=now,
                message_id=message_id,
                error=error,
            )
            self.add_notification_history(record)

            if len(self.notification_history) > HISTORY_LIMIT:
                for stale in self.history[:-HISTORY_KEEP]:
                    self.remove_notification_history(stale)

            self.updated_at = now
        return record

    # -------------------------------------------------------------------
    # Consent and data rights
    # -------------------------------------------------------------------
    def _tighten_expiry(self):
        """Adopt the consent-bound expiry when it is earlier than the current one."""
        gdpr_expiry = self.gdpr_expiry_date
        if gdpr_expiry is None:
            return
        if self.expires_at is None or gdpr_expiry < _as_utc(self.expires_at):
            self.expires_at = gdpr_expiry

    def update_retention(self, data_retention_days=None, consent_date=None, consent_version=None, now=None):
        """Change retention inputs and recompute expiry. Expiry never moves later."""
        now = _as_utc(now) or datetime.now(UTC)
        if data_retention_days is not None:
            self.data_retention_days = data_retention_days
        if consent_date is not None:
            self.consent_date = _as_utc(consent_date)
        if consent_version is not None:
            self.consent_version = consent_version
        self._tighten_expiry()
        self.updated_at = now

        self.raise_(
            RetentionUpdated(
                subscription_id=str(self.id),
                data_retention_days=self.data_retention_days,
                consent_version=self.consent_version,
                expires_at=self.expires_at,
                updated_at=now,
            )
        )

    def renew_consent(self, consent_version, now=None):
        now = _as_utc(now) or datetime.now(UTC)
        self.update_retention(consent_date=now, consent_version=consent_version, now=now)

    def request_data_export(self, now=None) -> str:
        """Register an export request and return its download token."""
        now = _as_utc(now) or datetime.now(UTC)
        token = _new_token()
        expires_at = now + EXPORT_TOKEN_TTL

        self.add_export_requests(DataExportRequest(download_token=token, requested_at=now, expires_at=expires_at))
        self.updated_at = now

        self.raise_(
            DataExportRequested(
                subscription_id=str(self.id),
                email=self.email,
                expires_at=expires_at,
                requested_at=now,
            )
        )
        return token

    def request_deletion(self, now=None):
        """Flag the subscription for erasure. Purging happens in a separate batch job."""
        now = _as_utc(now) or datetime.now(UTC)
        self.deletion_requested = True
        self.deletion_requested_at = now
        self.updated_at = now

        self.raise_(
            DeletionRequested(
                subscription_id=str(self.id),
                email=self.email,
                requested_at=now,
            )
        )
