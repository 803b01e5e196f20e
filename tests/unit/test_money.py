"""Tests for cent conversion and rate helpers."""

from decimal import Decimal

from hireledger.utils.money import (
    apply_percent, apply_rate, format_money, from_cents, normalize_rate, to_cents
)


class TestToCents:
    def test_whole_dollars(self):
        assert to_cents(100) == 10000

    def test_float_rounding_is_half_up(self):
        assert to_cents(0.125) == 13
        assert to_cents(19.99) == 1999

    def test_accepts_strings_and_decimals(self):
        assert to_cents("12.34") == 1234
        assert to_cents(Decimal("0.01")) == 1

    def test_from_cents(self):
        assert from_cents(1999) == 19.99
        assert from_cents(None) == 0.0


class TestRates:
    def test_fraction_is_kept(self):
        assert normalize_rate(0.15) == 0.15

    def test_percentage_is_converted(self):
        assert normalize_rate(15) == 0.15

    def test_one_is_a_full_rate(self):
        assert normalize_rate(1) == 1.0

    def test_apply_rate(self):
        assert apply_rate(199000, 0.15) == 29850
        assert apply_rate(199000, 15) == 29850

    def test_apply_rate_rounds(self):
        assert apply_rate(333, 0.1) == 33
        assert apply_rate(335, 0.1) == 34

    def test_apply_percent(self):
        assert apply_percent(10000, 20) == 2000
        assert apply_percent(12345, 12.5) == 1543


def test_format_money():
    assert format_money(123456) == "$1,234.56"
    assert format_money(0) == "$0.00"
