"""
Rounding -- Decimal numeric kernel for quantities, prices and percentages.

Responsibility:
    Strict Decimal coercion and the two rounding modes used by the WBS
    engines: round-half-away-from-zero for every monetary result, and
    truncation toward zero when a unit price is derived from a user-typed
    total.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic: floats are rejected at the boundary, never
      silently converted (binary floats cannot represent cents exactly).
    - Rounding happens immediately after each operation that produces a
      monetary value, so a category total is always the exact sum of its
      already-rounded children (no cent drift).
    - Division by zero yields zero, never NaN or infinity.

Failure modes:
    - InvalidLineItemError when a value cannot be coerced to a finite
      Decimal.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from wbs_kernel.exceptions import InvalidLineItemError

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

MONEY_PLACES = 2
QUANTITY_PLACES = 2
PERCENTAGE_PLACES = 2


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Coerce ``value`` to a finite Decimal.

    Accepts Decimal, int and numeric strings. ``None`` maps to zero.

    Raises:
        InvalidLineItemError: for floats, booleans, NaN/infinity or
            unparseable strings.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidLineItemError(
            field_name, value, "use Decimal, int or str (floats are not accepted)"
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidLineItemError(field_name, value, "not a number") from exc
    else:
        raise InvalidLineItemError(
            field_name, value, f"unsupported type {type(value).__name__}"
        )
    if not result.is_finite():
        raise InvalidLineItemError(field_name, value, "must be finite")
    return result


def round_money(value: Decimal, places: int = MONEY_PLACES) -> Decimal:
    """Round half away from zero to ``places`` decimals."""
    return value.quantize(_exponent(places), rounding=ROUND_HALF_UP)


def truncate(value: Decimal, places: int = MONEY_PLACES) -> Decimal:
    """Round toward zero to ``places`` decimals (never rounds a total up)."""
    return value.quantize(_exponent(places), rounding=ROUND_DOWN)


def round_quantity(value: Decimal, places: int = QUANTITY_PLACES) -> Decimal:
    """Round a measured quantity half away from zero."""
    return value.quantize(_exponent(places), rounding=ROUND_HALF_UP)


def round_percentage(value: Decimal, places: int = PERCENTAGE_PLACES) -> Decimal:
    """Round a percentage half away from zero."""
    return value.quantize(_exponent(places), rounding=ROUND_HALF_UP)


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, defining any ratio against zero as zero."""
    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def percentage_of(
    part: Decimal,
    whole: Decimal,
    places: int = PERCENTAGE_PLACES,
) -> Decimal:
    """``part / whole * 100`` rounded; zero when ``whole`` is zero."""
    return round_percentage(safe_ratio(part, whole) * HUNDRED, places)


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Bound ``value`` to ``[lower, upper]``; ``lower`` wins if they cross."""
    return max(lower, min(value, upper))


def money_sum(values: Iterable[Decimal], places: int = MONEY_PLACES) -> Decimal:
    """Sum already-rounded amounts and round the result."""
    return round_money(sum(values, ZERO), places)
