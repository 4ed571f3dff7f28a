"""
Ledger Error Taxonomy

Every failure raised by the adjustment primitives and the services built on
them derives from LedgerError. Batch runners catch these per item and record
them in the item's result; only CompensationFailure is escalated, because it
leaves the ledger in a state that needs a manual integrity check.
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """
    An amount or delta was rejected before any write.

    Raised for malformed amounts and for deltas that would drive a
    non-negative column (pool, allocated, spent) below zero.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class OverspendBlocked(ValidationError):
    """A spend would exceed the envelope's remaining funds while overspend is blocked."""
    pass


class ConcurrencyConflict(LedgerError):
    """
    The guarded update refused the delta.

    The pre-check passed but another writer changed the row in between,
    so applying the delta now would produce an invalid value. Callers may
    retry with a smaller (or zero) delta.
    """

    def __init__(self, message: str, column: str, delta: Decimal):
        super().__init__(message)
        self.column = column
        self.delta = delta


class AdjustmentRolledBack(LedgerError):
    """
    The second half of a two-step move failed and the first half was reversed.

    The ledger is back at its pre-attempt state, which is still not the same
    as the move never having been tried: the attempt is visible in history.
    """

    def __init__(self, message: str, cause: Exception):
        super().__init__(f"{message}: {cause}")
        self.cause = cause


class CompensationFailure(LedgerError):
    """
    Reversing an already-applied adjustment failed.

    The ledger is inconsistent until the integrity checker repairs it.
    """

    def __init__(self, message: str, cause: Exception, compensation_error: Exception):
        super().__init__(
            f"{message}: {cause}; compensation failed: {compensation_error}"
        )
        self.cause = cause
        self.compensation_error = compensation_error
