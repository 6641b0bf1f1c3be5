"""Fake email adapter: records sent emails for testing."""

from uuid import uuid4

from flightwatch.channel.email_port import EmailPort
from flightwatch.exceptions import DeliveryError


class FakeEmailAdapter(EmailPort):
    """Email adapter that records messages in memory for test assertions.

    Failures can be permanent, or limited to the first ``fail_times`` calls
    to exercise retries.
    """

    def __init__(self):
        self.sent_emails: list[dict] = []
        self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"
        self.fail_times = None
        self.transient = True

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Email delivery failed",
        fail_times: int | None = None,
        transient: bool = True,
    ):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.fail_times = fail_times
        self.transient = transient

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: str | None = None,
        sender: str | None = None,
    ) -> dict:
        self.attempts += 1
        if not self.should_succeed and (self.fail_times is None or self.attempts <= self.fail_times):
            raise DeliveryError(self.failure_reason, transient=self.transient)

        message_id = f"email-{uuid4().hex[:12]}"
        self.sent_emails.append(
            {
                "message_id": message_id,
                "to": to,
                "sender": sender,
                "subject": subject,
                "body": body,
                "html_body": html_body,
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def reset(self):
        """Clear sent emails (useful between tests)."""
        self.sent_emails.clear()
        self.attempts = 0
        self.configure()
