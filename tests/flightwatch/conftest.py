from datetime import UTC, date, datetime, timedelta

import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def flightwatch_bed():
    from flightwatch.domain import flightwatch

    bed = DomainFixture(flightwatch)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(flightwatch_bed):
    from flightwatch.channel import reset_channels
    from flightwatch.notification.dispatcher import reset_dispatcher

    with flightwatch_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_dispatcher()
    reset_channels()


@pytest.fixture
def departure():
    """A departure slot three days out, on the hour."""
    day = date.today() + timedelta(days=3)
    return datetime(day.year, day.month, day.day, 8, 0, tzinfo=UTC)


@pytest.fixture
def make_flight(departure):
    from flightwatch.flight.flight import Flight

    def _make_flight(**overrides):
        defaults = {
            "flight_number": "AA123",
            "airline_code": "AA",
            "airline_name": "American Airlines",
            "origin_airport": "JFK",
            "origin_city": "New York",
            "origin_country": "US",
            "destination_airport": "LAX",
            "destination_city": "Los Angeles",
            "destination_country": "US",
            "scheduled_departure": departure,
            "scheduled_arrival": departure + timedelta(hours=6),
        }
        defaults.update(overrides)
        flight = Flight.register(**defaults)
        flight._events.clear()
        return flight

    return _make_flight


@pytest.fixture
def make_subscription(departure):
    from flightwatch.subscription.subscription import Subscription

    def _make_subscription(verified=False, **overrides):
        defaults = {
            "email": "passenger@example.com",
            "flight_number": "AA123",
            "flight_date": departure.date(),
            "consent_given": True,
            "data_processing_consent": True,
            "first_name": "Ada",
            "last_name": "Lovelace",
        }
        defaults.update(overrides)
        subscription = Subscription.create(**defaults)
        if verified:
            subscription.verify(subscription.verification_token)
        subscription._events.clear()
        return subscription

    return _make_subscription
