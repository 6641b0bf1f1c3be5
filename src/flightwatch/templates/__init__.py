"""Message templates for flight notifications.

A renderer is any object with ``render(subscription, flight, old_status)``
returning ``{"subject", "text", "html"}``.
"""

from flightwatch.templates.status_change import StatusChangeTemplate
from flightwatch.templates.verification import VerificationTemplate

__all__ = ["StatusChangeTemplate", "VerificationTemplate"]
