"""
Checked fixed-point arithmetic on Python ints.

On-chain quantities are u64 and intermediates are u128, so products are
range-checked before dividing even though Python ints never wrap.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

import numpy as np

from config.params import FLOAT_SCALING, U64_MAX, U128_MAX
from models.results import ArithmeticOverflowError, InvalidSnapshotError


def check_u64(value: int, name: str = "value") -> int:
    """Validate an unsigned 64-bit quantity."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidSnapshotError(f"{name} must be an integer, got {type(value).__name__}")
    value = int(value)
    if value < 0:
        raise InvalidSnapshotError(f"{name} must be non-negative, got {value}")
    if value > U64_MAX:
        raise ArithmeticOverflowError(f"{name}={value} exceeds u64")
    return value


def mul_div(a: int, b: int, c: int) -> int:
    """floor(a * b / c) with the product checked against u128."""
    if a < 0 or b < 0:
        raise InvalidSnapshotError("mul_div operands must be non-negative")
    if c <= 0:
        raise ZeroDivisionError("mul_div divisor must be positive")
    product = a * b
    if product > U128_MAX:
        raise ArithmeticOverflowError(f"{a} * {b} exceeds u128")
    return product // c


def mul(a: int, b: int) -> int:
    """Fixed-point multiply at FLOAT_SCALING, flooring."""
    return mul_div(a, b, FLOAT_SCALING)


def div(a: int, b: int) -> int:
    """Fixed-point divide at FLOAT_SCALING, flooring."""
    return mul_div(a, FLOAT_SCALING, b)


def signed_mul_div(a: int, b: int, c: int) -> int:
    """a * b / c for signed a, truncating toward zero."""
    magnitude = mul_div(abs(a), abs(b), abs(c))
    negative = (a < 0) ^ (b < 0) ^ (c < 0)
    return -magnitude if negative else magnitude


def to_fixed(value, scale: int = FLOAT_SCALING) -> int:
    """
    Convert a human decimal (0.7, "0.062", Decimal) to a fixed-point int.

    Goes through Decimal so that 0.7 becomes exactly 700_000_000 rather than
    the nearest binary float. Truncates toward zero past the last digit.
    """
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return int(value) * scale
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return int(dec * scale)


def to_float(value: int, scale: int = FLOAT_SCALING) -> float:
    """Presentation-only conversion of a fixed-point int to float."""
    return float(np.float64(value) / np.float64(scale))


def to_decimal(value: int, scale: int = FLOAT_SCALING) -> Decimal:
    return Decimal(value) / Decimal(scale)
