"""Shared BDD fixtures and step definitions for flights and subscriptions."""

import pytest
from pytest_bdd import parsers, then

from flightwatch.flight.events import FlightStatusChanged
from flightwatch.subscription.events import (
    SubscriptionCreated,
    SubscriptionReactivated,
    SubscriptionUnsubscribed,
    SubscriptionVerified,
)

_EVENT_CLASSES = {
    "FlightStatusChanged": FlightStatusChanged,
    "SubscriptionCreated": SubscriptionCreated,
    "SubscriptionVerified": SubscriptionVerified,
    "SubscriptionUnsubscribed": SubscriptionUnsubscribed,
    "SubscriptionReactivated": SubscriptionReactivated,
}


@pytest.fixture()
def error():
    """Container for the last error raised by a When step."""
    return {"exc": None}


@pytest.fixture()
def aggregate():
    """The flight or subscription under test."""
    return {"current": None}


@then(parsers.cfparse("a {event_type} event is raised"))
def event_raised(aggregate, event_type):
    event_cls = _EVENT_CLASSES[event_type]
    events = aggregate["current"]._events
    assert any(isinstance(e, event_cls) for e in events), f"No {event_type} in {[type(e).__name__ for e in events]}"
