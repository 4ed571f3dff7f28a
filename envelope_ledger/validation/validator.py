"""
Amount Validation

Every amount entering the ledger passes through here before any write.
Amounts are normalised to cents; anything that cannot be represented as a
finite cent amount is rejected loudly.

IMPORTANT: Validation never silently fixes a sign or clamps a value.
A negative delta that would overdraw a column is rejected by the
adjustment primitives, not trimmed here.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from envelope_ledger.errors import ValidationError
from envelope_ledger.models.money import round2


Number = Union[Decimal, int, float, str]


def to_money(value: Number, field: str = "amount") -> Decimal:
    """
    Convert a number to a cent-quantised Decimal.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} is not a number: {value!r}", field=field)

    if not decimal_value.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field)

    return round2(decimal_value)


def validate_positive_amount(value: Number, field: str = "amount") -> Decimal:
    """Normalise an amount that must be strictly positive (income, spend, allocation)."""
    amount = to_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero, got {amount}", field=field)
    return amount


def validate_delta(value: Number, field: str = "delta") -> Decimal:
    """Normalise a signed adjustment delta."""
    return to_money(value, field)


def check_non_negative(current: Decimal, delta: Decimal, column: str) -> Decimal:
    """
    Reject a delta that would drive a non-negative column below zero.

    Returns:
        The resulting value

    Raises:
        ValidationError: If current + delta < 0
    """
    result = current + delta
    if result < 0:
        raise ValidationError(
            f"Adjusting {column} by {delta} would make it negative "
            f"(current {current}, result {result})",
            field=column,
        )
    return result
