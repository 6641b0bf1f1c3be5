"""Dispatcher fan-out: filtering, rate limiting, retries and failure isolation."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from protean import current_domain

from flightwatch.channel.fake_email import FakeEmailAdapter
from flightwatch.config import NotificationSettings
from flightwatch.exceptions import DatabaseError
from flightwatch.notification.dispatcher import NotificationDispatcher, get_dispatcher, reset_dispatcher
from flightwatch.notification.rate_limiter import RateLimiter
from flightwatch.subscription.subscription import Subscription
from flightwatch.templates import StatusChangeTemplate


@pytest.fixture
def channel():
    return FakeEmailAdapter()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_dispatcher(channel, sleeps):
    def _make(rate_limiter=None, renderer=None, repository=None, **overrides):
        settings = NotificationSettings(**{"mode": "fake", "retry_attempts": 3, "retry_delay": 10.0, **overrides})
        return NotificationDispatcher(
            settings=settings,
            rate_limiter=rate_limiter,
            channel=channel,
            renderer=renderer,
            repository=repository,
            sleep=sleeps.append,
        )

    return _make


@pytest.fixture
def save():
    def _save(subscription):
        current_domain.repository_for(Subscription).add(subscription)
        return subscription

    return _save


def _reload(subscription):
    return current_domain.repository_for(Subscription).get(str(subscription.id))


@pytest.fixture
def boarding_flight(make_flight):
    flight = make_flight()
    flight.request_transition("Boarding")
    return flight


class TestScenarios:
    def test_verified_subscriber_is_notified_of_boarding(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel
    ):
        sub = save(make_subscription(verified=True))

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled", actor="gate-agent")

        assert result.success is True
        assert result.notifications_sent == 1
        assert result.notifications_failed == 0
        assert result.details[0].status == "sent"
        assert channel.sent_emails[0]["to"] == "passenger@example.com"
        assert channel.sent_emails[0]["sender"] == "FSNS Notifications <noreply@fsns.com>"

        stored = _reload(sub)
        assert stored.total_sent == 1
        assert stored.emails_sent == 1
        assert stored.history[0].notification_type == "boarding_calls"
        assert stored.history[0].message_id == result.details[0].message_id

    def test_opted_out_subscriber_is_skipped_without_record(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel
    ):
        sub = make_subscription(verified=True)
        sub.update_preferences("status_changes", enabled=False)
        sub.update_preferences("boarding_calls", enabled=False)
        save(sub)

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert result.notifications_sent == 0
        assert result.details == []
        assert channel.sent_emails == []
        assert _reload(sub).total_sent == 0

    def test_cancellation_reported_through_status_changes(
        self, make_dispatcher, make_subscription, save, make_flight
    ):
        sub = make_subscription(verified=True)
        sub.update_preferences("cancellations", enabled=False)
        save(sub)
        flight = make_flight()
        flight.request_transition("Cancelled")

        result = make_dispatcher().dispatch(flight, "Scheduled")

        assert result.notifications_sent == 1

    def test_second_dispatch_in_same_hour_is_rate_limited(
        self, make_dispatcher, make_subscription, save, make_flight
    ):
        save(make_subscription(verified=True))
        flight = make_flight()
        dispatcher = make_dispatcher(rate_limiter=RateLimiter(max_per_hour=1, clock=lambda: 7200.0))

        flight.request_transition("Boarding")
        first = dispatcher.dispatch(flight, "Scheduled")
        flight.request_transition("Departed")
        second = dispatcher.dispatch(flight, "Boarding")

        assert first.notifications_sent == 1
        assert second.notifications_sent == 0
        assert second.notifications_failed == 0
        assert second.details[0].status == "rate_limited"
        assert second.details[0].error == "Rate limit exceeded for passenger@example.com"
        assert dispatcher.stats()["rate_limited"] == 1


class TestMatching:
    def test_no_subscriptions(self, make_dispatcher, boarding_flight):
        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert result.success is True
        assert result.notifications_sent == 0
        assert result.message == "no subscriptions"

    def test_pending_subscriptions_are_included(self, make_dispatcher, make_subscription, save, boarding_flight):
        save(make_subscription(verified=False))

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert result.notifications_sent == 1

    def test_unsubscribed_and_other_days_are_excluded(
        self, make_dispatcher, make_subscription, save, boarding_flight, departure
    ):
        gone = make_subscription(verified=True, email="gone@example.com")
        gone.unsubscribe(token=gone.unsubscribe_token)
        save(gone)
        save(make_subscription(verified=True, email="later@example.com", flight_date=departure.date() + timedelta(days=1)))
        save(make_subscription(verified=True, email="other@example.com", flight_number="BA117"))
        save(make_subscription(verified=True, email="match@example.com"))

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert [detail.email for detail in result.details] == ["match@example.com"]


class TestRetries:
    def test_transient_failures_retry_with_linear_backoff(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel, sleeps
    ):
        save(make_subscription(verified=True))
        channel.configure(should_succeed=False, fail_times=2)

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert result.notifications_sent == 1
        assert result.details[0].attempts == 3
        assert sleeps == [10.0, 20.0]

    def test_exhausted_retries_are_recorded_as_failed(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel, sleeps
    ):
        sub = save(make_subscription(verified=True))
        channel.configure(should_succeed=False, failure_reason="SMTP timeout")
        dispatcher = make_dispatcher()

        result = dispatcher.dispatch(boarding_flight, "Scheduled")

        assert result.success is True
        assert result.notifications_sent == 0
        assert result.notifications_failed == 1
        assert result.details[0].status == "failed"
        assert result.details[0].error == "SMTP timeout"
        assert result.details[0].attempts == 4
        assert sleeps == [10.0, 20.0, 30.0]
        assert channel.attempts == 4
        assert dispatcher.stats()["retries"] == 3

        record = _reload(sub).history[0]
        assert record.status == "failed"
        assert record.error == "SMTP timeout"
        assert record.message_id is None

    def test_permanent_failure_is_not_retried(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel, sleeps
    ):
        save(make_subscription(verified=True))
        channel.configure(should_succeed=False, failure_reason="Mailbox does not exist", transient=False)

        result = make_dispatcher().dispatch(boarding_flight, "Scheduled")

        assert result.notifications_failed == 1
        assert result.details[0].attempts == 1
        assert sleeps == []

    def test_failed_response_is_retried(self, make_dispatcher, make_subscription, save, boarding_flight, sleeps):
        save(make_subscription(verified=True))
        channel = MagicMock()
        channel.send.return_value = {"status": "failed", "error": "Bounced"}
        dispatcher = make_dispatcher(retry_attempts=1)
        dispatcher.channel = channel

        result = dispatcher.dispatch(boarding_flight, "Scheduled")

        assert channel.send.call_count == 2
        assert result.details[0].error == "Bounced"
        assert sleeps == [10.0]

    def test_failures_do_not_consume_rate_limit(
        self, make_dispatcher, make_subscription, save, boarding_flight, channel
    ):
        save(make_subscription(verified=True))
        channel.configure(should_succeed=False, transient=False)
        limiter = RateLimiter(max_per_hour=1)

        make_dispatcher(rate_limiter=limiter).dispatch(boarding_flight, "Scheduled")

        assert limiter.check_rate_limit("passenger@example.com") is True
        assert limiter.usage("passenger@example.com")["hourly"] == 0
        assert limiter.try_acquire("passenger@example.com") is True


class _ReentrantChannel(FakeEmailAdapter):
    """Starts another dispatch while the first message is still being sent."""

    def __init__(self):
        super().__init__()
        self.on_first_send = None

    def send(self, to, subject, body, html_body=None, sender=None):
        if self.on_first_send is not None:
            callback, self.on_first_send = self.on_first_send, None
            callback()
        return super().send(to, subject, body, html_body=html_body, sender=sender)


class TestOverlappingDispatches:
    def test_overlapping_dispatches_respect_hourly_limit(self, make_subscription, save, make_flight, sleeps):
        save(make_subscription(verified=True))
        save(make_subscription(verified=True, flight_number="BA117"))
        first_flight = make_flight()
        first_flight.request_transition("Boarding")
        second_flight = make_flight(flight_number="BA117", airline_code="BA", airline_name="British Airways")
        second_flight.request_transition("Boarding")

        channel = _ReentrantChannel()
        limiter = RateLimiter(max_per_hour=1, max_per_day=10)
        dispatcher = NotificationDispatcher(
            settings=NotificationSettings(mode="fake", retry_attempts=0),
            rate_limiter=limiter,
            channel=channel,
            sleep=sleeps.append,
        )
        nested = []
        channel.on_first_send = lambda: nested.append(dispatcher.dispatch(second_flight, "Scheduled"))

        outer = dispatcher.dispatch(first_flight, "Scheduled")

        assert len(channel.sent_emails) == 1
        assert outer.notifications_sent == 1
        assert nested[0].details[0].status == "rate_limited"
        assert limiter.usage("passenger.com")["hourly"] == 1

    def test_render_error_hands_back_reserved_slot(self, make_dispatcher, make_subscription, save, boarding_flight):
        save(make_subscription(verified=True, email="bad.com"))
        limiter = RateLimiter(max_per_hour=1)

        make_dispatcher(rate_limiter=limiter, renderer=_FlakyRenderer("bad.com")).dispatch(
            boarding_flight, "Scheduled"
        )

        assert limiter.usage("bad.com")["hourly"] == 0

class _FlakyRenderer:
    def __init__(self, bad_email):
        self.bad_email = bad_email
        self.inner = StatusChangeTemplate(NotificationSettings())

    def render(self, subscription, flight, old_status):
        if subscription.email == self.bad_email:
            raise RuntimeError("template exploded")
        return self.inner.render(subscription, flight, old_status)


class TestIsolation:
    def test_one_broken_subscription_does_not_stop_the_batch(
        self, make_dispatcher, make_subscription, save, boarding_flight
    ):
        save(make_subscription(verified=True, email="bad@example.com"))
        save(make_subscription(verified=True, email="good@example.com"))
        dispatcher = make_dispatcher(renderer=_FlakyRenderer("bad@example.com"))

        result = dispatcher.dispatch(boarding_flight, "Scheduled")

        by_email = {detail.email: detail for detail in result.details}
        assert by_email["bad@example.com"].status == "error"
        assert by_email["bad@example.com"].error == "template exploded"
        assert by_email["good@example.com"].status == "sent"
        assert result.notifications_sent == 1
        assert result.notifications_failed == 1
        assert dispatcher.stats()["errors"] == 1

    def test_query_failure_raises_database_error(self, make_dispatcher, boarding_flight):
        repository = MagicMock()
        repository.find_active_by_flight.side_effect = RuntimeError("connection refused")

        with pytest.raises(DatabaseError):
            make_dispatcher(repository=repository).dispatch(boarding_flight, "Scheduled")

    def test_save_failure_aborts_remaining_batch(self, make_dispatcher, make_subscription, boarding_flight, channel):
        first = make_subscription(verified=True, email="first@example.com")
        second = make_subscription(verified=True, email="second@example.com")
        repository = MagicMock()
        repository.find_active_by_flight.return_value = [first, second]
        repository.add.side_effect = RuntimeError("disk full")

        with pytest.raises(DatabaseError):
            make_dispatcher(repository=repository).dispatch(boarding_flight, "Scheduled")

        assert [email["to"] for email in channel.sent_emails] == ["first@example.com"]
        assert repository.add.call_count == 1


class TestServiceControls:
    def test_disabled_dispatcher_sends_nothing(self, make_dispatcher, make_subscription, save, boarding_flight, channel):
        save(make_subscription(verified=True))
        dispatcher = make_dispatcher()
        dispatcher.disable()

        result = dispatcher.dispatch(boarding_flight, "Scheduled")

        assert result.success is True
        assert result.message == "Service disabled"
        assert channel.sent_emails == []
        assert dispatcher.health()["status"] == "disabled"

        dispatcher.enable()
        assert dispatcher.dispatch(boarding_flight, "Scheduled").notifications_sent == 1

    def test_stats(self, make_dispatcher, make_subscription, save, boarding_flight):
        save(make_subscription(verified=True))
        dispatcher = make_dispatcher()

        dispatcher.dispatch(boarding_flight, "Scheduled")
        stats = dispatcher.stats()

        assert stats["dispatches"] == 1
        assert stats["sent"] == 1
        assert stats["enabled"] is True
        assert stats["rate_limit_buckets"] == 2

    def test_result_serialises(self, make_dispatcher, make_subscription, save, boarding_flight):
        save(make_subscription(verified=True))

        payload = make_dispatcher().dispatch(boarding_flight, "Scheduled").to_dict()

        assert payload["notifications_sent"] == 1
        assert payload["details"][0]["email"] == "passenger@example.com"
        assert payload["details"][0]["attempts"] == 1

    def test_singleton(self):
        dispatcher = get_dispatcher()
        assert get_dispatcher() is dispatcher
        reset_dispatcher()
        assert get_dispatcher() is not dispatcher


class TestVerificationEmail:
    def test_sends_link_and_records_without_rate_cost(self, make_dispatcher, make_subscription, save, channel):
        sub = save(make_subscription())
        limiter = RateLimiter(max_per_hour=1)
        dispatcher = make_dispatcher(rate_limiter=limiter)

        detail = dispatcher.send_verification(sub)

        assert detail.status == "sent"
        assert sub.verification_token in channel.sent_emails[0]["body"]
        assert _reload(sub).history[0].notification_type == "verification"
        assert limiter.usage("passenger@example.com")["hourly"] == 0
        assert dispatcher.stats()["verifications_sent"] == 1
