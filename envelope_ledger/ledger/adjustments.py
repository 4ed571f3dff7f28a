"""
Atomic Adjustment Primitives

The only code path that changes a pool, allocated or spent value.

Each primitive:
1. Normalises the delta to cents
2. Pre-reads the current value and rejects a delta that would make the
   column negative (ValidationError, nothing written)
3. Hands the delta to the store's guarded update, which refuses it if a
   concurrent writer got there first (ConcurrencyConflict)

CRITICAL: The primitives are not jointly transactional. Moves that touch two
columns are sagas: apply the first step, then the second, and reverse the
first if the second fails. A reversal that itself fails leaves the ledger
inconsistent and is escalated as CompensationFailure.
"""

from decimal import Decimal
from typing import Awaitable, Callable
from uuid import UUID

import structlog

from envelope_ledger.errors import AdjustmentRolledBack, CompensationFailure
from envelope_ledger.models.ledger import BudgetPeriod, EnvelopeAllocation, Owner
from envelope_ledger.models.money import ZERO
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.services.storage import LedgerStorageInterface
from envelope_ledger.validation import (
    check_non_negative,
    validate_delta,
    validate_positive_amount,
)


logger = structlog.get_logger(__name__)


class AtomicAdjuster:
    """Validated single-column deltas plus the two-step moves built on them."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    # =========================================================================
    # SINGLE-COLUMN PRIMITIVES
    # =========================================================================

    async def adjust_available_pool(
        self,
        owner: Owner,
        period: PeriodKey,
        delta: Decimal,
    ) -> BudgetPeriod:
        delta = validate_delta(delta)
        row = await self._storage.get_budget_period(owner, period)
        check_non_negative(row.available_pool if row else ZERO, delta, "available_pool")
        return await self._storage.adjust_available_pool(owner, period, delta)

    async def adjust_envelope_allocated(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        delta: Decimal,
    ) -> EnvelopeAllocation:
        delta = validate_delta(delta)
        row = await self._storage.get_allocation(envelope_id, period)
        check_non_negative(row.allocated if row else ZERO, delta, "allocated")
        return await self._storage.adjust_envelope_allocated(owner, envelope_id, period, delta)

    async def adjust_envelope_spent(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        delta: Decimal,
    ) -> EnvelopeAllocation:
        delta = validate_delta(delta)
        row = await self._storage.get_allocation(envelope_id, period)
        check_non_negative(row.spent if row else ZERO, delta, "spent")
        return await self._storage.adjust_envelope_spent(owner, envelope_id, period, delta)

    # =========================================================================
    # TWO-STEP MOVES
    # =========================================================================

    async def move_pool_to_envelope(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> tuple[EnvelopeAllocation, BudgetPeriod]:
        """
        Allocate `amount` from the pool into an envelope.

        Envelope first, then pool; the envelope is reverted if the pool
        refuses.
        """
        amount = validate_positive_amount(amount)
        allocation = await self.adjust_envelope_allocated(owner, envelope_id, period, amount)
        try:
            budget = await self.adjust_available_pool(owner, period, -amount)
        except Exception as cause:
            await self._compensate(
                f"Allocation of {amount} to envelope {envelope_id} rolled back",
                cause,
                lambda: self.adjust_envelope_allocated(owner, envelope_id, period, -amount),
            )
        return allocation, budget

    async def move_envelope_to_pool(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> tuple[EnvelopeAllocation, BudgetPeriod]:
        """
        Return `amount` from an envelope to the pool.

        Envelope first, then pool; the envelope is restored if the pool
        update fails.
        """
        amount = validate_positive_amount(amount)
        allocation = await self.adjust_envelope_allocated(owner, envelope_id, period, -amount)
        try:
            budget = await self.adjust_available_pool(owner, period, amount)
        except Exception as cause:
            await self._compensate(
                f"Deallocation of {amount} from envelope {envelope_id} rolled back",
                cause,
                lambda: self.adjust_envelope_allocated(owner, envelope_id, period, amount),
            )
        return allocation, budget

    async def move_between_envelopes(
        self,
        owner: Owner,
        source_envelope_id: UUID,
        target_envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> tuple[EnvelopeAllocation, EnvelopeAllocation]:
        """
        Move allocated funds from one envelope to another.

        The pool is untouched.
        """
        amount = validate_positive_amount(amount)
        source = await self.adjust_envelope_allocated(owner, source_envelope_id, period, -amount)
        try:
            target = await self.adjust_envelope_allocated(owner, target_envelope_id, period, amount)
        except Exception as cause:
            await self._compensate(
                f"Transfer of {amount} from {source_envelope_id} to {target_envelope_id} rolled back",
                cause,
                lambda: self.adjust_envelope_allocated(owner, source_envelope_id, period, amount),
            )
        return source, target

    async def _compensate(
        self,
        message: str,
        cause: Exception,
        reverse: Callable[[], Awaitable[object]],
    ) -> None:
        """Run the reversal, then raise AdjustmentRolledBack or CompensationFailure."""
        try:
            await reverse()
        except Exception as compensation_error:
            logger.error(
                "compensation_failed",
                message=message,
                cause=str(cause),
                compensation_error=str(compensation_error),
            )
            raise CompensationFailure(message, cause, compensation_error) from compensation_error

        logger.warning("adjustment_rolled_back", message=message, cause=str(cause))
        raise AdjustmentRolledBack(message, cause) from cause
