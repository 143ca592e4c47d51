"""Numeric helpers shared by the processors."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from numbers import Number
from typing import Iterable, Optional, Union

Numeric = Union[int, float, Decimal]


def _as_number(value) -> Optional[Numeric]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    if isinstance(value, Number):
        return float(value)
    return None


def median(values: Iterable) -> Numeric:
    """
    Textbook median: the middle value for odd length, the mean of the two
    middle values for even length. Non-numeric entries are ignored and an
    empty input yields 0.
    """
    numbers = sorted(n for n in (_as_number(v) for v in values) if n is not None)
    if not numbers:
        return 0

    count = len(numbers)
    middle = (count - 1) // 2
    if count % 2:
        return numbers[middle]
    return (numbers[middle] + numbers[middle + 1]) / 2


def safe_average(total, count) -> Numeric:
    """``total / count``, or 0 when count is not positive or total is negative."""
    total_n = _as_number(total)
    count_n = _as_number(count)
    if count_n is None or count_n <= 0:
        return 0
    if total_n is None or total_n < 0:
        return 0
    if isinstance(total_n, Decimal):
        return total_n / Decimal(count_n)
    return total_n / count_n


def to_decimal(value) -> Decimal:
    """Coerce a store value (None, str, float, Decimal) into a Decimal amount."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(0)
