"""Event handlers that connect flight and subscription events to the dispatcher."""

from protean import current_domain

from flightwatch.channel import get_channel
from flightwatch.flight.flight import Flight
from flightwatch.notification.dispatcher import get_dispatcher
from flightwatch.notification.flight_events import FlightStatusEventsHandler
from flightwatch.notification.subscription_events import SubscriptionEventsHandler
from flightwatch.subscription.events import SubscriptionCreated
from flightwatch.subscription.subscription import Subscription


def _store_flight(flight):
    flight._events.clear()
    current_domain.repository_for(Flight).add(flight)
    return flight


def _store_subscription(subscription):
    current_domain.repository_for(Subscription).add(subscription)
    return subscription


def _emails_to(address):
    return [email for email in get_channel("fake").sent_emails if email["to"] == address]


class TestFlightStatusEventsHandler:
    def test_status_change_notifies_subscribers(self, make_flight, make_subscription):
        sub = _store_subscription(make_subscription(verified=True, email="fan@example.com"))
        flight = make_flight()
        flight.request_transition("Delayed", reason="Late inbound aircraft")
        event = flight._events[-1]
        _store_flight(flight)

        FlightStatusEventsHandler().on_flight_status_changed(event)

        emails = _emails_to("fan@example.com")
        assert len(emails) >= 1
        assert emails[-1]["subject"] == "URGENT: Flight AA123 - Delayed"
        assert current_domain.repository_for(Subscription).get(str(sub.id)).total_sent >= 1
        assert get_dispatcher().stats()["sent"] >= 1

    def test_superseded_event_is_skipped(self, make_flight, make_subscription):
        _store_subscription(make_subscription(verified=True, email="late@example.com"))
        flight = make_flight()
        flight.request_transition("Boarding")
        stale = flight._events[-1]
        flight.request_transition("Departed")
        _store_flight(flight)

        FlightStatusEventsHandler().on_flight_status_changed(stale)

        assert _emails_to("late@example.com") == []

    def test_unknown_flight_is_ignored(self, make_flight):
        flight = make_flight(flight_number="ZZ999")
        flight.request_transition("Boarding")

        FlightStatusEventsHandler().on_flight_status_changed(flight._events[-1])

        assert get_dispatcher().stats()["dispatches"] == 0


class TestSubscriptionEventsHandler:
    def _created(self, subscription):
        return SubscriptionCreated(
            subscription_id=str(subscription.id),
            email=subscription.email,
            flight_number=subscription.flight_number,
            flight_date=subscription.flight_date,
            expires_at=subscription.expires_at,
            created_at=subscription.created_at,
        )

    def test_sends_verification_email(self, make_subscription):
        sub = _store_subscription(make_subscription(email="verify-me@example.com"))

        SubscriptionEventsHandler().on_subscription_created(self._created(sub))

        emails = _emails_to("verify-me@example.com")
        assert sub.verification_token in emails[-1]["body"]
        stored = current_domain.repository_for(Subscription).get(str(sub.id))
        assert stored.history[-1].notification_type == "verification"

    def test_verified_subscription_gets_no_email(self, make_subscription):
        sub = _store_subscription(make_subscription(verified=True, email="already@example.com"))

        SubscriptionEventsHandler().on_subscription_created(self._created(sub))

        assert _emails_to("already@example.com") == []

    def test_missing_subscription_is_ignored(self, make_subscription):
        sub = make_subscription(email="ghost@example.com")

        SubscriptionEventsHandler().on_subscription_created(self._created(sub))

        assert _emails_to("ghost@example.com") == []
