"""Centavo arithmetic and validation helpers.

All internal arithmetic is done on integer centavos. Major units (pesos) only
appear at the boundary, and to_cents / to_major_units are the only places the
two representations meet.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from billing_settlement.domain.exceptions import ArithmeticRangeError, ValidationError

MAX_SAFE_CENTS = 2**53 - 1
CENT = Decimal("0.01")

Number = Union[int, str, Decimal]


def to_cents(amount: Number, max_cents: int = MAX_SAFE_CENTS) -> int:
    """
    Convert a major-unit amount to integer centavos.

    Rounds half up to the nearest centavo. Floats are rejected because they
    cannot carry an exact decimal amount.

    Example:
        Decimal("1500.005") -> 150001
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise ValidationError(f"Amount must be Decimal, int or str, got {type(amount).__name__}")
    try:
        value = Decimal(amount) if not isinstance(amount, Decimal) else amount
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValidationError(f"Amount must be finite: {amount!r}")
    if abs(value) * 100 > max_cents:
        raise ArithmeticRangeError(f"Amount {value} exceeds limit of {max_cents} centavos")

    cents = int((value.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    return ensure_in_range(cents, max_cents)


def to_major_units(cents: int) -> Decimal:
    """Convert integer centavos to a major-unit Decimal with two places"""
    return (Decimal(cents) / 100).quantize(CENT)


def ensure_in_range(cents: int, max_cents: int = MAX_SAFE_CENTS) -> int:
    """Guard against amounts the minor-unit representation cannot hold"""
    if abs(cents) > max_cents:
        raise ArithmeticRangeError(f"Amount {cents} centavos exceeds limit of {max_cents}")
    return cents


def require_cents(value: object, name: str, allow_negative: bool = False) -> int:
    """Validate that value is an integer centavo amount"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of centavos, got {value!r}")
    if not allow_negative and value < 0:
        raise ValidationError(f"{name} must be non-negative, got {value}")
    return value


def format_major_units(cents: int) -> str:
    """Display string for an amount, e.g. 150000 -> '$1,500.00'"""
    sign = "-" if cents < 0 else ""
    return f"{sign}${to_major_units(abs(cents)):,}"
