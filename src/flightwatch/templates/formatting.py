"""Shared helpers for rendering times and names in messages."""

from datetime import UTC
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def passenger_zone(subscription):
    name = subscription.passenger.timezone if subscription.passenger else None
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def local_time(value, zone, with_date=True) -> str:
    if value is None:
        return "TBA"
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(zone)
    if with_date:
        return value.strftime("%A, %B %d, %Y %H:%M %Z")
    return value.strftime("%H:%M %Z")


def greeting_name(subscription) -> str:
    if subscription.passenger and subscription.passenger.first_name:
        return subscription.passenger.first_name
    return "Passenger"
