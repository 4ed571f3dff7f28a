"""
Recurring Obligation Scheduler

Turns due recurring obligations into real spends.

Each occurrence is applied in three steps:
1. CLAIM    - compare-and-set next_due_date from the old due date to the
              advanced one. Only one concurrent runner can win the claim,
              so an occurrence is never applied twice.
2. SPEND    - record the spend in the period of the occurrence's own due
              date and increment the envelope's spent column.
3. RELEASE  - if the spend fails, put the old due date back so the next
              run retries the occurrence.

DESIGN DECISION: The next due date is always advanced from the old due
date, never from today. A run that was missed for three months applies
three occurrences, one per period, instead of jumping straight to today.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

import structlog

from envelope_ledger.errors import CompensationFailure, LedgerError
from envelope_ledger.ledger.service import BudgetLedger
from envelope_ledger.models.ledger import Frequency, HistoryStatus, OwnerScope, RecurringObligation
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.results import RecurringBatchResult, RecurringItemResult
from envelope_ledger.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def advance_due_date(
    current: date,
    frequency: Frequency,
    anchor_day: Optional[int] = None,
) -> date:
    """
    Next occurrence after `current`.

    Month-based frequencies land on `anchor_day` (defaulting to the current
    day of month), clamped to the last day of the target month: a bill
    anchored on the 31st falls on Feb 28/29 and returns to the 31st in March.
    """
    if frequency == Frequency.WEEKLY:
        return current + timedelta(days=7)
    if frequency == Frequency.BIWEEKLY:
        return current + timedelta(days=14)

    month_index = current.month - 1 + _MONTH_STEPS[frequency]
    year = current.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day or current.day, last_day))


class RecurringScheduler:

    def __init__(
        self,
        storage: LedgerStorageInterface,
        ledger: BudgetLedger,
        max_catch_up_occurrences: int = 60,
    ):
        self._storage = storage
        self._ledger = ledger
        self._max_catch_up = max_catch_up_occurrences

    async def find_due(
        self,
        scope: Optional[OwnerScope] = None,
        today: Optional[date] = None,
    ) -> list[RecurringObligation]:
        """Active obligations due on or before today, oldest first."""
        return await self._storage.list_due_recurring(scope or OwnerScope(), today or date.today())

    async def apply(
        self,
        obligation: RecurringObligation,
        period: Optional[PeriodKey] = None,
    ) -> RecurringItemResult:
        """
        Apply the obligation's current occurrence.

        Returns a SKIPPED result when another runner already claimed the
        occurrence.

        Raises:
            LedgerError: If the spend could not be recorded (the claim has
                         been released)
            CompensationFailure: If releasing the claim failed as well
        """
        due = obligation.next_due_date
        next_due = advance_due_date(due, obligation.frequency, obligation.anchor_day)
        period = period or PeriodKey.from_date(due)

        claimed = await self._storage.advance_recurring_due_date(obligation.id, due, next_due)
        if not claimed:
            logger.info("recurring_already_applied", recurring_id=str(obligation.id), due_date=due.isoformat())
            return RecurringItemResult(
                recurring_id=obligation.id,
                description=obligation.description,
                amount=obligation.amount,
                due_date=due,
                month_key=period.key,
                status=HistoryStatus.SKIPPED,
                reason="already_applied",
            )

        try:
            spend = await self._ledger.record_spend(
                obligation.owner,
                obligation.envelope_id,
                period,
                obligation.amount,
                obligation.description,
                merchant=obligation.merchant,
                spent_on=due,
                recurring_id=obligation.id,
            )
        except Exception as cause:
            await self._release_claim(obligation, due, next_due, cause)
            raise

        logger.info(
            "recurring_applied",
            recurring_id=str(obligation.id),
            transaction_id=str(spend.id),
            month_key=period.key,
            next_due_date=next_due.isoformat(),
        )
        return RecurringItemResult(
            recurring_id=obligation.id,
            description=obligation.description,
            amount=obligation.amount,
            due_date=due,
            month_key=period.key,
            transaction_id=spend.id,
            next_due_date=next_due,
            status=HistoryStatus.SUCCESS,
        )

    async def _release_claim(
        self,
        obligation: RecurringObligation,
        due: date,
        next_due: date,
        cause: Exception,
    ) -> None:
        try:
            released = await self._storage.advance_recurring_due_date(obligation.id, next_due, due)
            if not released:
                raise StorageError(f"Due date of {obligation.id} changed before it could be restored")
        except Exception as compensation_error:
            logger.error(
                "recurring_release_failed",
                recurring_id=str(obligation.id),
                cause=str(cause),
                error=str(compensation_error),
            )
            raise CompensationFailure(
                f"Occurrence {due.isoformat()} of {obligation.id} failed and could not be released",
                cause,
                compensation_error,
            ) from compensation_error

    async def apply_all_due(
        self,
        scope: Optional[OwnerScope] = None,
        today: Optional[date] = None,
    ) -> RecurringBatchResult:
        """
        Catch every due obligation up to today.

        One occurrence at a time per obligation until it is no longer due.
        A failing obligation is recorded and the batch moves on.
        """
        today = today or date.today()
        due = await self.find_due(scope, today)
        batch = RecurringBatchResult(run_date=today, total_due=len(due))
        logger.info("recurring_run_started", run_date=today.isoformat(), total_due=len(due))

        for obligation in due:
            await self._catch_up(obligation, today, batch)

        logger.info(
            "recurring_run_finished",
            processed=batch.processed,
            skipped=batch.skipped,
            errors=batch.errors,
        )
        return batch

    async def _catch_up(
        self,
        obligation: RecurringObligation,
        today: date,
        batch: RecurringBatchResult,
    ) -> None:
        current = obligation
        for _ in range(self._max_catch_up):
            if not current.is_due(today):
                return
            try:
                item = await self.apply(current)
            except CompensationFailure:
                raise
            except (LedgerError, StorageError) as e:
                logger.warning("recurring_failed", recurring_id=str(obligation.id), error=str(e))
                batch.add(RecurringItemResult(
                    recurring_id=current.id,
                    description=current.description,
                    amount=current.amount,
                    due_date=current.next_due_date,
                    month_key=PeriodKey.from_date(current.next_due_date).key,
                    status=HistoryStatus.ERROR,
                    error=str(e),
                ))
                return

            batch.add(item)
            if item.status != HistoryStatus.SUCCESS:
                return
            current = current.model_copy(update={"next_due_date": item.next_due_date})

        if current.is_due(today):
            logger.warning(
                "recurring_catch_up_limit_reached",
                recurring_id=str(obligation.id),
                next_due_date=current.next_due_date.isoformat(),
                limit=self._max_catch_up,
            )
