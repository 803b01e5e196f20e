"""Tests for calendar helpers used by billing periods."""

from datetime import datetime

import pytest

from hireledger.utils.dates import add_months, as_datetime, month_bounds, parse_month


class TestAddMonths:
    def test_simple(self):
        assert add_months(datetime(2024, 3, 15), 1) == datetime(2024, 4, 15)

    def test_crosses_year(self):
        assert add_months(datetime(2024, 11, 1), 3) == datetime(2025, 2, 1)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)

    def test_twelve_months(self):
        assert add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)


def test_month_bounds():
    start, end = month_bounds(datetime(2024, 2, 10, 8, 30))
    assert start == datetime(2024, 2, 1)
    assert end.date() == datetime(2024, 2, 29).date()
    assert end.hour == 23


def test_parse_month():
    assert parse_month("2024-07") == datetime(2024, 7, 1)
    with pytest.raises(ValueError):
        parse_month("July 2024")


class TestAsDatetime:
    def test_passes_datetimes_through(self):
        value = datetime(2024, 1, 1, 12)
        assert as_datetime(value) is value

    def test_parses_sqlite_strings(self):
        assert as_datetime("2024-01-01 12:00:00.000001") == datetime(2024, 1, 1, 12, 0, 0, 1)

    def test_none(self):
        assert as_datetime(None) is None
