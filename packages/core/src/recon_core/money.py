"""Fixed-point helpers for monetary amounts.

Stored amounts carry two fractional digits. Rates and intermediate products
are kept at four, and anything derived is rounded to cents only when exposed
on a bucket, total or balance.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
INTERNAL_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce a raw amount to a Decimal at internal precision.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be numeric, not boolean")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Amount is not numeric: {value!r}") from None
    else:
        raise ValueError(f"Amount must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result.quantize(INTERNAL_QUANTUM, rounding=ROUND_HALF_UP)


def round2(value: Decimal) -> Decimal:
    """Round to cents (half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def exact_sum(values: Iterable[Decimal]) -> Decimal:
    """Sum without intermediate rounding."""
    return sum(values, ZERO)


def to_amount(value: Any) -> Decimal:
    """Coerce a raw monetary amount to cents.

    Stored amounts carry exactly two fractional digits so that every sum of
    them is exact and the cent-level totals invariant cannot drift.
    """
    return round2(to_decimal(value))
