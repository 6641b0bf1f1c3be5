"""Notification settings read from environment variables."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationSettings:
    mode: str = "console"
    retry_attempts: int = 3
    retry_delay: float = 300.0  # seconds, multiplied by the attempt number
    max_per_hour: int = 100
    max_per_day: int = 1000
    base_url: str = "https://fsns.com"
    from_email: str = "noreply@fsns.com"
    from_name: str = "FSNS Notifications"

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    def unsubscribe_url(self, token: str) -> str:
        return f"{self.base_url}/unsubscribe/{token}"

    def verification_url(self, token: str) -> str:
        return f"{self.base_url}/verify/{token}"

    @classmethod
    def from_env(cls) -> "NotificationSettings":
        """Build settings from ``NOTIFICATION_*`` and ``BASE_URL`` variables."""
        return cls(
            mode=os.environ.get("NOTIFICATION_MODE", cls.mode),
            retry_attempts=int(os.environ.get("NOTIFICATION_RETRY_ATTEMPTS", cls.retry_attempts)),
            retry_delay=float(os.environ.get("NOTIFICATION_RETRY_DELAY", cls.retry_delay)),
            max_per_hour=int(os.environ.get("NOTIFICATION_RATE_LIMIT", cls.max_per_hour)),
            max_per_day=int(os.environ.get("NOTIFICATION_DAILY_LIMIT", cls.max_per_day)),
            base_url=os.environ.get("BASE_URL", cls.base_url).rstrip("/"),
            from_email=os.environ.get("NOTIFICATION_FROM_EMAIL", cls.from_email),
            from_name=os.environ.get("NOTIFICATION_FROM_NAME", cls.from_name),
        )
