from datetime import date

import pytest
from protean.exceptions import ValidationError

from flightwatch.validators import (
    collect_errors,
    validate_aircraft_registration,
    validate_airline_code,
    validate_airport_code,
    validate_email,
    validate_flight_number,
    validate_future_date,
    validate_phone,
    validate_pnr,
)


@pytest.mark.parametrize("value", ["AA123", "BA1", "GA1234", "UA12A"])
def test_valid_flight_numbers(value):
    assert validate_flight_number(value) is None


@pytest.mark.parametrize("value", ["", "A123", "AA12345", "aa123", "1234", None])
def test_invalid_flight_numbers(value):
    assert validate_flight_number(value) is not None


def test_airport_and_airline_codes():
    assert validate_airport_code("JFK") is None
    assert validate_airport_code("JF") is not None
    assert validate_airline_code("AA") is None
    assert validate_airline_code("U2") is None
    assert validate_airline_code("ABCD") is not None


def test_aircraft_registration():
    assert validate_aircraft_registration("N-12345") is None
    assert validate_aircraft_registration("PK-GIA") is None
    assert validate_aircraft_registration("N12345") is not None


def test_pnr_and_phone():
    assert validate_pnr("ABC123") is None
    assert validate_pnr("ABC12") is not None
    assert validate_phone("+14155550123") is None
    assert validate_phone("0123") is not None


@pytest.mark.parametrize("value", ["a@example.com", "first.last@sub.example.org"])
def test_valid_email(value):
    assert validate_email(value) is None


@pytest.mark.parametrize("value", ["plain", "a@b", "a@@example.com", "a b@example.com", "a@example..com", None])
def test_invalid_email(value):
    assert validate_email(value) is not None


def test_future_date():
    today = date(2030, 1, 1)
    assert validate_future_date(today, today=today) is None
    assert validate_future_date(date(2030, 6, 1), today=today) is None
    assert "past" in validate_future_date(date(2029, 12, 31), today=today)
    assert validate_future_date(None, today=today) == "Flight date is required"


def test_collect_errors_reports_every_failure():
    with pytest.raises(ValidationError) as exc:
        collect_errors(
            {
                "flight_number": validate_flight_number("X"),
                "email": validate_email("nope"),
                "pnr": validate_pnr("ABC123"),
            }
        )

    assert set(exc.value.messages) == {"flight_number", "email"}


def test_collect_errors_passes_clean_batch():
    collect_errors({"pnr": None, "email": None})
