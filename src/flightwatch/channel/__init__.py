"""Email channel registry.

Returns one adapter per mode. ``console`` (the default) logs messages and
``fake`` records them in memory. Select with ``NOTIFICATION_MODE``.
"""

import os

_channel_instances: dict[str, object] = {}


def get_channel(mode: str | None = None):
    """Return the email adapter for ``mode`` (singleton per mode)."""
    mode = mode or os.environ.get("NOTIFICATION_MODE", "console")
    if mode not in _channel_instances:
        if mode == "console":
            from flightwatch.channel.console_email import ConsoleEmailAdapter

            _channel_instances[mode] = ConsoleEmailAdapter()
        elif mode == "fake":
            from flightwatch.channel.fake_email import FakeEmailAdapter

            _channel_instances[mode] = FakeEmailAdapter()
        else:
            raise ValueError(f"Unknown notification mode: {mode}")

    return _channel_instances[mode]


def reset_channels():
    """Reset all channel singletons (useful for testing)."""
    _channel_instances.clear()
