"""Console email adapter: writes outgoing mail to the log instead of sending it."""

from uuid import uuid4

import structlog

from flightwatch.channel.email_port import EmailPort

logger = structlog.get_logger(__name__)


class ConsoleEmailAdapter(EmailPort):
    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: str | None = None,
        sender: str | None = None,
    ) -> dict:
        message_id = f"console-{uuid4().hex[:12]}"
        logger.info(
            "Email (console mode)",
            message_id=message_id,
            to=to,
            sender=sender,
            subject=subject,
            body=body,
        )
        return {"message_id": message_id, "status": "sent"}
