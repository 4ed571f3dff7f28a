"""Money helpers shared by the ledger models and services."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Union

from pydantic import PlainSerializer


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Tolerance for comparing stored and recomputed balances
HALF_CENT = Decimal("0.005")

# Decimals are kept internally; JSON consumers get plain numbers
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


def round2(value: Union[Decimal, float, int, str]) -> Decimal:
    """Round to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
