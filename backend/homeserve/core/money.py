"""Decimal helpers for rupee amounts (two decimal places, half-up rounding)."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")
ONE = Decimal("1")
ZERO = Decimal("0.00")

Numeric = Union[Decimal, int, float, str]


def to_money(value: Numeric) -> Decimal:
    """Quantize to paise. Floats go through ``str`` to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rupees(value: Numeric) -> Decimal:
    """Round to the nearest whole rupee, kept at two decimal places."""
    return to_money(Decimal(value).quantize(ONE, rounding=ROUND_HALF_UP))


def floor_to(value: Decimal, quantum: Decimal) -> Decimal:
    """Floor a non-negative amount to the given quantum."""
    return value.quantize(quantum, rounding=ROUND_DOWN)


def floor_int(value: Numeric) -> int:
    return int(Decimal(value).quantize(ONE, rounding=ROUND_DOWN))
