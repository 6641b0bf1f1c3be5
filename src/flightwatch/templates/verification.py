"""Verification template: asks a new subscriber to confirm their address."""

from html import escape

from flightwatch.config import NotificationSettings
from flightwatch.templates.formatting import greeting_name


class VerificationTemplate:
    def __init__(self, settings: NotificationSettings | None = None):
        self.settings = settings or NotificationSettings.from_env()

    def render(self, subscription) -> dict:
        verify_url = self.settings.verification_url(subscription.verification_token)
        unsubscribe_url = self.settings.unsubscribe_url(subscription.unsubscribe_token)
        subject = f"Verify your flight notification subscription - {subscription.flight_number}"
        text = (
            f"Dear {greeting_name(subscription)},\n\n"
            f"Please confirm you want updates for flight {subscription.flight_number} "
            f"on {subscription.flight_date.isoformat()}.\n\n"
            f"Verify your subscription: {verify_url}\n\n"
            "This link expires in 24 hours.\n\n"
            f"If you did not request this, ignore this email or unsubscribe: {unsubscribe_url}"
        )
        html = (
            f"<p>Dear {escape(greeting_name(subscription))},</p>"
            f"<p>Please confirm you want updates for flight {escape(subscription.flight_number)} "
            f"on {subscription.flight_date.isoformat()}.</p>"
            f'<p><a href="{escape(verify_url)}">Verify your subscription</a></p>'
            "<p>This link expires in 24 hours.</p>"
            f'<p><a href="{escape(unsubscribe_url)}">Unsubscribe</a></p>'
        )
        return {"subject": subject, "text": text, "html": html}
