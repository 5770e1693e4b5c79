"""
Money Handling Module

Fixed-point helpers for USD amounts. Every amount that is persisted or
returned goes through these helpers; raw float sums never do.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Plain decimal literal, optionally in exponent form ("10.5", ".5", "1e+30")
AMOUNT_PATTERN = re.compile(r'[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?')

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal without picking up binary float noise.

    Floats go through str(), which yields the shortest repr (10.1 -> "10.1").
    Raises ValueError for anything that is not a plain decimal literal.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    if isinstance(value, Decimal):
        return value
    text = str(value).strip()
    if not AMOUNT_PATTERN.fullmatch(text):
        raise ValueError(f"Not a valid amount: {value!r}")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {value!r}")


def quantize(value: Number) -> Decimal:
    """Round to 2 decimal places, half up"""
    try:
        return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def has_at_most_two_places(value: Decimal) -> bool:
    """Check that rounding to cents would not change the value"""
    return value == quantize(value)


def format_amount(value: Decimal) -> str:
    """Serialize for the wire ("10.30")"""
    return str(quantize(value))
