"""
Budget Integrity Checker

Recomputes the available pool of an (owner, period) from its source rows

    calculated = sum(income.amount) - sum(allocation.allocated)

and compares it with the stored pool. Drift is a result state, not an
exception: the caller decides whether to repair it.

The repair overwrites the stored pool with the calculated value. It is the
only write in the system that does not go through the adjustment
primitives, and it is idempotent.
"""

from decimal import Decimal
from typing import Optional

import structlog

from envelope_ledger.audit import ActivityRecorder
from envelope_ledger.models.activity import ActivityEntryBuilder
from envelope_ledger.models.ledger import Owner
from envelope_ledger.models.money import HALF_CENT, ZERO, round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.results import IntegrityCheckResult
from envelope_ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class IntegrityChecker:

    def __init__(
        self,
        storage: LedgerStorageInterface,
        recorder: Optional[ActivityRecorder] = None,
        epsilon: Decimal = HALF_CENT,
    ):
        self._storage = storage
        self._recorder = recorder or ActivityRecorder()
        self._epsilon = epsilon

    async def check(self, owner: Owner, period: PeriodKey) -> IntegrityCheckResult:
        incomes = await self._storage.list_incomes(owner, period)
        allocations = await self._storage.list_allocations(owner, period)
        budget = await self._storage.get_budget_period(owner, period)

        total_incomes = round2(sum((i.amount for i in incomes), ZERO))
        total_allocations = round2(sum((a.allocated for a in allocations), ZERO))
        stored = budget.available_pool if budget else ZERO
        calculated = total_incomes - total_allocations
        discrepancy = abs(stored - calculated)
        is_valid = discrepancy < self._epsilon

        result = IntegrityCheckResult(
            month_key=period.key,
            total_incomes=total_incomes,
            total_allocations=total_allocations,
            stored_to_be_budgeted=stored,
            calculated_to_be_budgeted=calculated,
            discrepancy=round2(discrepancy),
            is_valid=is_valid,
            message=(
                "Budget is consistent"
                if is_valid
                else f"Pool drift detected: {round2(discrepancy)} difference"
            ),
        )

        if not is_valid:
            logger.warning(
                "integrity_drift",
                owner=owner.key,
                month_key=period.key,
                stored=str(stored),
                calculated=str(calculated),
            )
        return result

    async def fix(self, owner: Owner, period: PeriodKey) -> IntegrityCheckResult:
        """
        Overwrite a drifted pool with the calculated value.

        No-op when the pool is already consistent. The returned result keeps
        the pre-repair stored value and discrepancy so the caller can see
        what was corrected.
        """
        result = await self.check(owner, period)
        if result.is_valid:
            return result

        await self._storage.set_available_pool(owner, period, result.calculated_to_be_budgeted)
        logger.info(
            "budget_corrected",
            owner=owner.key,
            month_key=period.key,
            previous=str(result.stored_to_be_budgeted),
            corrected=str(result.calculated_to_be_budgeted),
        )
        await self._recorder.record(ActivityEntryBuilder.budget_corrected(
            owner,
            period.key,
            result.stored_to_be_budgeted,
            result.calculated_to_be_budgeted,
        ))

        return result.model_copy(update={
            "is_valid": True,
            "fixed": True,
            "message": "Budget corrected",
        })
