"""
Tests for date, amount and location normalization helpers.
"""

import datetime as dt

import pytest

from receipt_extractor.core.utils import (canonical_date, clean_text, format_date,
                                          normalize_amount, normalize_city, normalize_state,
                                          parse_date_string)


def test_year_first_and_month_first_agree():
    assert parse_date_string("2024/04/12") == parse_date_string("04/12/2024") == dt.date(2024, 4, 12)


@pytest.mark.parametrize("value", [
    "2024-04-12",
    "2024/04/12",
    "04/12/2024",
    "04/12/24",
    "04-12-2024",
    "April 12, 2024",
    "Apr. 12 2024",
    "12 Apr 2024",
])
def test_supported_formats(value):
    assert canonical_date(value) == "2024-04-12"


def test_day_first_used_when_month_first_is_impossible():
    assert parse_date_string("25/12/2024") == dt.date(2024, 12, 25)


@pytest.mark.parametrize("value", ["", None, "13/45/2024", "yesterday", "Foo 12, 2024"])
def test_unparseable_dates(value):
    assert parse_date_string(value) is None
    assert canonical_date(value) is None


@pytest.mark.parametrize("day", [
    dt.date(2024, 1, 1),
    dt.date(2024, 2, 29),
    dt.date(1999, 12, 31),
])
def test_canonical_format_round_trips(day):
    text = format_date(day)
    assert parse_date_string(text) == day
    assert canonical_date(text) == text


@pytest.mark.parametrize("value,expected", [
    ("$1,234.50", 1234.5),
    (" 12.00 ", 12.0),
    ("abc", None),
    ("", None),
])
def test_normalize_amount(value, expected):
    assert normalize_amount(value) == expected


@pytest.mark.parametrize("value,expected", [
    ("tx", "TX"),
    ("TX.", "TX"),
    ("Texas", "TX"),
    ("new york", "NY"),
    ("Tex", None),
    (None, None),
])
def test_normalize_state(value, expected):
    assert normalize_state(value) == expected


def test_normalize_city_and_text():
    assert normalize_city("  New York ") == "new york"
    assert normalize_city("") is None
    assert clean_text("  x ") == "x"
    assert clean_text("   ") is None
    assert clean_text(None) is None
