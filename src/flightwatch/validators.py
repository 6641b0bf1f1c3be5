"""Format checks for IATA codes, booking references and contact details.

Each ``validate_*`` function returns an error message or ``None``.
``collect_errors`` runs a batch of them and raises a single
``ValidationError`` before any aggregate is built or mutated.
"""

import re
from datetime import date

from protean.exceptions import ValidationError

FLIGHT_NUMBER_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{1,4}[A-Z]?$")
AIRPORT_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")
AIRLINE_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,3}$")
AIRCRAFT_REGISTRATION_PATTERN = re.compile(r"^[A-Z]{1,2}-[A-Z0-9]{3,5}$")
PNR_PATTERN = re.compile(r"^[A-Z0-9]{6}$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{7,14}$")
EMAIL_PATTERN = re.compile(r"^[^\s@.][^\s@]*@[^\s@]+\.[^\s@]+$")


def _check(pattern, value, message):
    if value is None or not pattern.match(value):
        return message
    return None


def validate_flight_number(value: str | None) -> str | None:
    return _check(FLIGHT_NUMBER_PATTERN, value, f"Invalid flight number format: {value!r}")


def validate_airport_code(value: str | None) -> str | None:
    return _check(AIRPORT_CODE_PATTERN, value, f"Invalid IATA airport code: {value!r}")


def validate_airline_code(value: str | None) -> str | None:
    return _check(AIRLINE_CODE_PATTERN, value, f"Invalid IATA airline code: {value!r}")


def validate_aircraft_registration(value: str | None) -> str | None:
    return _check(AIRCRAFT_REGISTRATION_PATTERN, value, f"Invalid aircraft registration: {value!r}")


def validate_pnr(value: str | None) -> str | None:
    return _check(PNR_PATTERN, value, f"PNR must be 6 alphanumeric characters: {value!r}")


def validate_phone(value: str | None) -> str | None:
    return _check(PHONE_PATTERN, value, f"Invalid phone number: {value!r}")


def validate_email(value: str | None) -> str | None:
    """Basic structural check: one @, a dotted domain, no whitespace or double dots."""
    if value is None or not EMAIL_PATTERN.match(value) or ".." in value or value.endswith("."):
        return f"Invalid email address: {value!r}"
    return None


def validate_future_date(value: date | None, today: date | None = None) -> str | None:
    """Flight dates may be today or later."""
    if value is None:
        return "Flight date is required"
    today = today or date.today()
    if value < today:
        return f"Flight date {value.isoformat()} is in the past"
    return None


def collect_errors(checks: dict) -> None:
    """Raise one ``ValidationError`` holding every failed check.

    ``checks`` maps a field name to the result of a ``validate_*`` call.
    """
    errors = {field: [message] for field, message in checks.items() if message}
    if errors:
        raise ValidationError(errors)
