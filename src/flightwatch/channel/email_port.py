"""Delivery channel contract used by the dispatcher."""

from abc import ABC, abstractmethod


class EmailPort(ABC):
    @abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: str | None = None,
        sender: str | None = None,
    ) -> dict:
        """Hand one message to the provider.

        Returns ``{"message_id", "status"}`` with status ``"sent"`` on success.
        A ``"failed"`` status may carry an ``"error"`` and is retried like a
        transient failure. Raise ``DeliveryError`` when the provider refuses
        the message; set ``transient=False`` when retrying cannot help.
        """
        ...
