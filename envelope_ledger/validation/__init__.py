"""Amount validation package."""

from envelope_ledger.validation.validator import (
    check_non_negative,
    to_money,
    validate_delta,
    validate_positive_amount,
)

__all__ = [
    "check_non_negative",
    "to_money",
    "validate_delta",
    "validate_positive_amount",
]
