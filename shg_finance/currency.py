"""
Currency Arithmetic Module

Group funds are counted in whole currency units (no sub-unit granularity).
Intermediate math is carried out in Decimal and rounded at the edges with
round-half-up-toward-positive-infinity, the same rule for every output.
"""

from decimal import Decimal, ROUND_FLOOR, InvalidOperation, getcontext
from typing import Union

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

Number = Union[int, float, str, Decimal]

HALF = Decimal('0.5')
HUNDRED = Decimal('100')


def to_decimal(value: Number, field_name: str = "value") -> Decimal:
    """Convert input to Decimal, never going through binary float repr"""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def round_currency(value: Number) -> int:
    """
    Round to the nearest whole unit; halves go toward positive infinity.

    >>> round_currency(Decimal('2.5')), round_currency(Decimal('-2.5'))
    (3, -2)
    """
    return int((to_decimal(value) + HALF).to_integral_value(rounding=ROUND_FLOOR))


def to_amount(value: Number, field_name: str = "amount", allow_zero: bool = False) -> int:
    """Validate a whole-unit amount: positive (or non-negative) and integral"""
    amount = to_decimal(value, field_name)
    if amount != amount.to_integral_value():
        raise ValidationError(f"{field_name} must be a whole currency amount")
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "greater than 0"
        raise ValidationError(f"{field_name} must be {qualifier}")
    return int(amount)


def percent_of(amount: Number, rate: Number) -> Decimal:
    """``rate`` percent of ``amount``, unrounded"""
    return to_decimal(amount) * to_decimal(rate) / HUNDRED
