"""Per-type notification preferences and the status-to-preference decision table."""

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum

from protean.exceptions import ValidationError


class NotificationType(Enum):
    STATUS_CHANGES = "status_changes"
    DELAYS = "delays"
    GATE_CHANGES = "gate_changes"
    CANCELLATIONS = "cancellations"
    BOARDING_CALLS = "boarding_calls"
    DEPARTURE_ALERTS = "departure_alerts"
    ARRIVAL_ALERTS = "arrival_alerts"
    WEATHER_ALERTS = "weather_alerts"


class DeliveryMethod(Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


@dataclass(frozen=True)
class TypePreference:
    enabled: bool
    methods: tuple[str, ...] = (DeliveryMethod.EMAIL.value,)
    min_delay_minutes: int | None = None
    advance_minutes: int | None = None


DEFAULT_PREFERENCES = {
    NotificationType.STATUS_CHANGES: TypePreference(enabled=True, min_delay_minutes=0),
    NotificationType.DELAYS: TypePreference(enabled=True, min_delay_minutes=15),
    NotificationType.GATE_CHANGES: TypePreference(enabled=True),
    NotificationType.CANCELLATIONS: TypePreference(
        enabled=True, methods=(DeliveryMethod.EMAIL.value, DeliveryMethod.SMS.value)
    ),
    NotificationType.BOARDING_CALLS: TypePreference(
        enabled=False, methods=(DeliveryMethod.PUSH.value,), advance_minutes=30
    ),
    NotificationType.DEPARTURE_ALERTS: TypePreference(enabled=False, advance_minutes=60),
    NotificationType.ARRIVAL_ALERTS: TypePreference(enabled=False, advance_minutes=30),
    NotificationType.WEATHER_ALERTS: TypePreference(enabled=False),
}

# Target flight status -> preference that can opt a subscriber in besides status_changes
_STATUS_PREFERENCE = {
    "Boarding": NotificationType.BOARDING_CALLS,
    "Delayed": NotificationType.DELAYS,
    "Cancelled": NotificationType.CANCELLATIONS,
}


def preference_for_status(new_status) -> NotificationType:
    """The notification type a status change is reported as."""
    return _STATUS_PREFERENCE.get(new_status, NotificationType.STATUS_CHANGES)


class NotificationPreferences:
    """Immutable mapping of ``NotificationType`` to ``TypePreference``."""

    def __init__(self, preferences=None):
        self._preferences = dict(DEFAULT_PREFERENCES)
        if preferences:
            self._preferences.update(preferences)

    def __getitem__(self, notification_type) -> TypePreference:
        return self._preferences[NotificationType(notification_type)]

    def __eq__(self, other):
        return isinstance(other, NotificationPreferences) and self._preferences == other._preferences

    def is_enabled(self, notification_type) -> bool:
        return self[notification_type].enabled

    def allows(self, new_status) -> bool:
        """Decide whether a change to ``new_status`` should be reported.

        Boarding, Delayed and Cancelled are reported when either their own
        preference or ``status_changes`` is enabled. Every other status
        depends on ``status_changes`` alone.
        """
        specific = _STATUS_PREFERENCE.get(new_status)
        if specific is not None and self.is_enabled(specific):
            return True
        return self.is_enabled(NotificationType.STATUS_CHANGES)

    def updated(self, notification_type, **changes) -> "NotificationPreferences":
        notification_type = NotificationType(notification_type)
        if "methods" in changes:
            methods = tuple(changes["methods"])
            unknown = [m for m in methods if m not in {method.value for method in DeliveryMethod}]
            if unknown:
                raise ValidationError({"preferences": [f"Unknown delivery method(s): {', '.join(unknown)}"]})
            changes["methods"] = methods
        preferences = dict(self._preferences)
        preferences[notification_type] = replace(preferences[notification_type], **changes)
        return NotificationPreferences(preferences)

    def to_dict(self) -> dict:
        return {ntype.value: {**asdict(pref), "methods": list(pref.methods)} for ntype, pref in self._preferences.items()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw) -> "NotificationPreferences":
        if not raw:
            return cls()
        data = json.loads(raw)
        preferences = {}
        for key, values in data.items():
            try:
                ntype = NotificationType(key)
            except ValueError:
                continue
            values = dict(values)
            values["methods"] = tuple(values.get("methods") or ())
            preferences[ntype] = TypePreference(**values)
        return cls(preferences)
