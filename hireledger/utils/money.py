"""
Money helpers.

All amounts are stored and computed as integer cents. API schemas carry
dollars as floats; conversion happens only at the edges.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Amount = Union[int, float, str, Decimal]

CENT = Decimal("0.01")


def to_cents(amount: Amount) -> int:
    """Convert a dollar amount to integer cents, rounding half-up."""
    value = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(value * 100)


def from_cents(cents: int) -> float:
    return float(Decimal(int(cents or 0)) / 100)


def format_money(cents: int) -> str:
    return f"${Decimal(int(cents or 0)) / 100:,.2f}"


def normalize_rate(rate: float) -> float:
    """Rates above 1 are percentages (10 -> 0.10)."""
    rate = float(rate)
    if rate > 1:
        return rate / 100
    return rate


def apply_rate(cents: int, rate: float) -> int:
    value = (Decimal(int(cents)) * Decimal(str(normalize_rate(rate)))).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(value)


def apply_percent(cents: int, percent: float) -> int:
    """Percent in the 0-100 range, e.g. a licensee revenue share."""
    value = (Decimal(int(cents)) * Decimal(str(percent)) / 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(value)
