"""
Savings Auto-Contribution Engine

Funds savings goals from each owner's available pool, once per period.

For each owner budget, goals are processed one at a time in the fixed
priority order essential > high > medium > low. Every goal reads the pool
fresh, so a goal only sees what the goals before it left behind.

CRITICAL: A SUCCESS history entry for (envelope, period) is the
idempotency key. The engine checks it before touching a goal, and the store
refuses a second one, so two overlapping runs can never fund the same goal
twice in a period.

Per-goal failures are recorded and the run continues. Two things abort
the run: failing to load the goals at all, and a CompensationFailure
(the ledger is inconsistent and needs an integrity fix).
"""

from decimal import Decimal
from typing import Optional

import structlog

from envelope_ledger.audit import ActivityRecorder
from envelope_ledger.errors import AdjustmentRolledBack, CompensationFailure, LedgerError
from envelope_ledger.ledger.adjustments import AtomicAdjuster
from envelope_ledger.models.activity import ActivityEntryBuilder
from envelope_ledger.models.ledger import (
    AutoAllocationHistoryEntry,
    HistoryStatus,
    OwnerScope,
    SavingsGoal,
    SkipReason,
)
from envelope_ledger.models.money import ZERO, round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.results import ContributionOutcome, ContributionRunResult
from envelope_ledger.services.storage import DuplicateError, LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class SavingsContributionEngine:

    def __init__(
        self,
        storage: LedgerStorageInterface,
        adjuster: Optional[AtomicAdjuster] = None,
        recorder: Optional[ActivityRecorder] = None,
    ):
        self._storage = storage
        self._adjuster = adjuster or AtomicAdjuster(storage)
        self._recorder = recorder or ActivityRecorder()

    async def run(
        self,
        period: Optional[PeriodKey] = None,
        scope: Optional[OwnerScope] = None,
    ) -> ContributionRunResult:
        period = period or PeriodKey.current()
        scope = scope or OwnerScope()

        goals = await self._storage.list_auto_contribute_goals(scope)
        # sorted() is stable: equal priorities keep their load order
        ordered = sorted(goals, key=lambda g: g.priority.rank)

        by_owner: dict[str, list[SavingsGoal]] = {}
        for goal in ordered:
            by_owner.setdefault(goal.owner.key, []).append(goal)

        logger.info(
            "savings_run_started",
            month_key=period.key,
            goals=len(ordered),
            owners=len(by_owner),
        )

        result = ContributionRunResult(month_key=period.key)
        for owner_goals in by_owner.values():
            for goal in owner_goals:
                result.add(await self._process_goal(goal, period))

        logger.info(
            "savings_run_finished",
            month_key=period.key,
            processed=result.processed,
            skipped=result.skipped,
            errors=result.errors,
            total_allocated=str(result.total_allocated),
        )
        return result

    # =========================================================================
    # PER-GOAL PROCESSING
    # =========================================================================

    async def _process_goal(self, goal: SavingsGoal, period: PeriodKey) -> ContributionOutcome:
        try:
            if await self._storage.has_successful_contribution(goal.envelope_id, period):
                return self._outcome(goal, HistoryStatus.SKIPPED, reason=SkipReason.ALREADY_PROCESSED)
            return await self._contribute(goal, period)
        except CompensationFailure as e:
            await self._record(goal, period, HistoryStatus.ERROR, error_message=str(e))
            raise
        except AdjustmentRolledBack as e:
            if await self._funded_concurrently(goal, period):
                logger.info("contribution_lost_race", goal_id=str(goal.id), month_key=period.key)
                return self._outcome(goal, HistoryStatus.SKIPPED, reason=SkipReason.ALREADY_PROCESSED)
            message = f"Rolled back: {e}"
        except (LedgerError, StorageError) as e:
            message = f"Not attempted: {e}"

        logger.warning("contribution_failed", goal_id=str(goal.id), error=message)
        await self._record(goal, period, HistoryStatus.ERROR, error_message=message)
        return self._outcome(goal, HistoryStatus.ERROR, error=message)

    async def _contribute(self, goal: SavingsGoal, period: PeriodKey) -> ContributionOutcome:
        current_saved = await self._current_saved(goal)
        target = goal.target_amount
        if target > 0 and current_saved >= target:
            return await self._skip(goal, period, SkipReason.TARGET_REACHED)

        budget = await self._storage.get_budget_period(goal.owner, period)
        pool = budget.available_pool if budget else ZERO

        if goal.monthly_contribution is not None:
            amount = goal.monthly_contribution
        elif goal.contribution_percentage is not None:
            amount = round2(max(pool, ZERO) * goal.contribution_percentage / Decimal(100))
        else:
            return await self._skip(goal, period, SkipReason.NO_CONTRIBUTION_RULE)

        if target > 0:
            amount = min(amount, target - current_saved)
        amount = round2(min(amount, pool))
        if amount <= 0:
            return await self._skip(goal, period, SkipReason.INSUFFICIENT_FUNDS)

        await self._adjuster.move_pool_to_envelope(goal.owner, goal.envelope_id, period, amount)

        try:
            await self._storage.append_history(self._entry(goal, period, HistoryStatus.SUCCESS, amount))
        except DuplicateError as duplicate:
            # A concurrent run funded this goal first; give the money back
            await self._reverse(goal, period, amount, duplicate)
            logger.info("contribution_lost_race", goal_id=str(goal.id), month_key=period.key)
            return self._outcome(goal, HistoryStatus.SKIPPED, reason=SkipReason.ALREADY_PROCESSED)
        except StorageError as e:
            await self._reverse(goal, period, amount, e)
            raise AdjustmentRolledBack(
                f"Contribution of {amount} to goal {goal.id} reversed after the history write failed",
                e,
            )

        logger.info(
            "contribution_applied",
            goal_id=str(goal.id),
            owner=goal.owner.key,
            month_key=period.key,
            amount=str(amount),
        )
        await self._recorder.record(ActivityEntryBuilder.allocation_made(
            goal.owner,
            goal.envelope_id,
            amount,
            period.key,
            savings_goal_id=goal.id,
            envelope_name=goal.name,
        ))
        return self._outcome(goal, HistoryStatus.SUCCESS, amount=amount)

    async def _reverse(
        self,
        goal: SavingsGoal,
        period: PeriodKey,
        amount: Decimal,
        cause: Exception,
    ) -> None:
        try:
            await self._adjuster.move_envelope_to_pool(goal.owner, goal.envelope_id, period, amount)
        except Exception as reversal_error:
            raise CompensationFailure(
                f"Contribution of {amount} to goal {goal.id} could not be reversed",
                cause,
                reversal_error,
            ) from reversal_error

    async def _funded_concurrently(self, goal: SavingsGoal, period: PeriodKey) -> bool:
        """True when an overlapping run has recorded this goal's contribution since the gate."""
        try:
            return await self._storage.has_successful_contribution(goal.envelope_id, period)
        except StorageError as e:
            logger.warning("contribution_recheck_failed", goal_id=str(goal.id), error=str(e))
            return False

    async def _current_saved(self, goal: SavingsGoal) -> Decimal:
        """Saved amount derived from every allocation row of the goal's envelope."""
        rows = await self._storage.list_envelope_allocations(goal.envelope_id)
        return round2(sum((row.allocated - row.spent for row in rows), ZERO))

    async def _skip(self, goal: SavingsGoal, period: PeriodKey, reason: SkipReason) -> ContributionOutcome:
        logger.info("contribution_skipped", goal_id=str(goal.id), reason=reason.value)
        await self._record(goal, period, HistoryStatus.SKIPPED, error_message=reason.value)
        return self._outcome(goal, HistoryStatus.SKIPPED, reason=reason)

    # =========================================================================
    # HISTORY AND RESULTS
    # =========================================================================

    @staticmethod
    def _entry(
        goal: SavingsGoal,
        period: PeriodKey,
        status: HistoryStatus,
        amount: Decimal = ZERO,
        error_message: Optional[str] = None,
    ) -> AutoAllocationHistoryEntry:
        return AutoAllocationHistoryEntry(
            owner=goal.owner,
            period=period,
            goal_id=goal.id,
            goal_name=goal.display_name,
            envelope_id=goal.envelope_id,
            amount=amount,
            priority=goal.priority,
            status=status,
            error_message=error_message,
        )

    async def _record(
        self,
        goal: SavingsGoal,
        period: PeriodKey,
        status: HistoryStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Append a skip/error history entry; a failed write is logged, not raised."""
        try:
            await self._storage.append_history(
                self._entry(goal, period, status, error_message=error_message)
            )
        except StorageError as e:
            logger.error("history_write_failed", goal_id=str(goal.id), status=status.value, error=str(e))

    @staticmethod
    def _outcome(
        goal: SavingsGoal,
        status: HistoryStatus,
        amount: Decimal = ZERO,
        reason: Optional[SkipReason] = None,
        error: Optional[str] = None,
    ) -> ContributionOutcome:
        return ContributionOutcome(
            goal_id=goal.id,
            goal_name=goal.display_name,
            envelope_id=goal.envelope_id,
            owner_key=goal.owner.key,
            priority=goal.priority,
            amount=amount,
            status=status,
            reason=reason,
            error=error,
        )
