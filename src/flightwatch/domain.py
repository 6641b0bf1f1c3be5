"""Flightwatch bounded context: flight status tracking and passenger notifications.

Flights move through a guarded status state machine. Every accepted status
change is fanned out to the passengers subscribed to that flight, filtered
by their notification preferences and a per-recipient rate limit, and
delivered through a pluggable email channel with bounded retry.
"""

from protean.domain import Domain

from flightwatch.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

logger = get_logger(__name__)

flightwatch = Domain(name="flightwatch")
