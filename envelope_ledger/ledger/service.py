"""
Budget Ledger Service

The user-facing ledger operations: income in and out, allocations,
transfers between envelopes and spends. Every balance change goes through
the AtomicAdjuster; this layer adds the checks a user-driven operation
needs before the first write (enough in the pool, enough left in the
envelope) and writes the activity entries.

IMPORTANT: Record rows (income, spend) are written before the balance
delta and removed again if the delta fails, so a failed operation leaves
neither a dangling row nor a moved balance.
"""

from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from envelope_ledger.audit import ActivityRecorder
from envelope_ledger.errors import CompensationFailure, OverspendBlocked, ValidationError
from envelope_ledger.ledger.adjustments import AtomicAdjuster
from envelope_ledger.models.activity import ActivityEntryBuilder
from envelope_ledger.models.ledger import (
    EnvelopeAllocation,
    Income,
    Owner,
    SpendRecord,
)
from envelope_ledger.models.money import ZERO, round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.results import BudgetSummary, EnvelopeSummary
from envelope_ledger.services.storage import LedgerStorageInterface, NotFoundError
from envelope_ledger.validation import validate_positive_amount


logger = structlog.get_logger(__name__)


async def _undo_record(message: str, cause: Exception, undo: Callable[[], Awaitable[object]]) -> None:
    """Remove a just-written record row after its balance delta failed."""
    try:
        await undo()
    except Exception as compensation_error:
        raise CompensationFailure(message, cause, compensation_error) from compensation_error


class BudgetLedger:

    def __init__(
        self,
        storage: LedgerStorageInterface,
        adjuster: Optional[AtomicAdjuster] = None,
        recorder: Optional[ActivityRecorder] = None,
        block_overspend: bool = False,
    ):
        self._storage = storage
        self._adjuster = adjuster or AtomicAdjuster(storage)
        self._recorder = recorder or ActivityRecorder()
        self._block_overspend = block_overspend

    # =========================================================================
    # INCOME
    # =========================================================================

    async def add_income(
        self,
        owner: Owner,
        period: PeriodKey,
        amount: Decimal,
        description: str,
        received_on: Optional[date] = None,
    ) -> Income:
        income = Income(
            owner=owner,
            period=period,
            amount=validate_positive_amount(amount),
            description=description,
            received_on=received_on or date.today(),
        )
        await self._storage.add_income(income)
        try:
            await self._adjuster.adjust_available_pool(owner, period, income.amount)
        except Exception as cause:
            await _undo_record(
                f"Income {income.id} could not be removed after pool update failed",
                cause,
                lambda: self._storage.delete_income(income.id),
            )
            raise

        logger.info("income_added", owner=owner.key, month_key=period.key, amount=str(income.amount))
        await self._recorder.record(ActivityEntryBuilder.income_added(
            owner, income.id, income.amount, income.description, period.key
        ))
        return income

    async def remove_income(self, income_id: UUID) -> Income:
        """
        Delete an income entry and take its amount back out of the pool.

        Raises:
            NotFoundError: If the income does not exist
            ValidationError: If part of the amount is already allocated
        """
        income = await self._storage.get_income(income_id)
        if income is None:
            raise NotFoundError(f"Income not found: {income_id}")

        await self._adjuster.adjust_available_pool(income.owner, income.period, -income.amount)
        try:
            deleted = await self._storage.delete_income(income_id)
            if not deleted:
                raise NotFoundError(f"Income already deleted: {income_id}")
        except Exception as cause:
            await _undo_record(
                f"Pool could not be restored after deleting income {income_id} failed",
                cause,
                lambda: self._adjuster.adjust_available_pool(income.owner, income.period, income.amount),
            )
            raise

        await self._recorder.record(ActivityEntryBuilder.income_deleted(
            income.owner, income.id, income.amount, income.period.key
        ))
        return income

    async def update_income(
        self,
        income_id: UUID,
        amount: Optional[Decimal] = None,
        description: Optional[str] = None,
        received_on: Optional[date] = None,
    ) -> Income:
        """
        Edit an income entry; the pool moves by the difference in amount.

        Raises:
            NotFoundError: If the income does not exist
            ValidationError: If lowering the amount would take back money
                             that is already allocated
        """
        income = await self._storage.get_income(income_id)
        if income is None:
            raise NotFoundError(f"Income not found: {income_id}")

        changes: dict = {}
        if amount is not None:
            changes["amount"] = validate_positive_amount(amount)
        if description is not None:
            changes["description"] = description
        if received_on is not None:
            changes["received_on"] = received_on
        updated = Income.model_validate({**income.model_dump(), **changes})
        diff = updated.amount - income.amount

        if diff != 0:
            await self._adjuster.adjust_available_pool(income.owner, income.period, diff)
        try:
            await self._storage.update_income(updated)
        except Exception as cause:
            if diff != 0:
                await _undo_record(
                    f"Pool could not be restored after editing income {income_id} failed",
                    cause,
                    lambda: self._adjuster.adjust_available_pool(income.owner, income.period, -diff),
                )
            raise

        logger.info("income_updated", income_id=str(income_id), diff=str(diff))
        await self._recorder.record(ActivityEntryBuilder.income_updated(
            income.owner, income.id, income.amount, updated.amount, income.period.key
        ))
        return updated

    # =========================================================================
    # ALLOCATIONS
    # =========================================================================

    async def allocate(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> EnvelopeAllocation:
        amount = validate_positive_amount(amount)
        budget = await self._storage.get_budget_period(owner, period)
        pool = budget.available_pool if budget else ZERO
        if amount > pool:
            raise ValidationError(
                f"Cannot allocate {amount}: only {pool} available in {period}",
                field="amount",
            )

        allocation, _ = await self._adjuster.move_pool_to_envelope(owner, envelope_id, period, amount)
        await self._recorder.record(ActivityEntryBuilder.allocation_made(
            owner, envelope_id, amount, period.key
        ))
        return allocation

    async def deallocate(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> EnvelopeAllocation:
        """Return unspent envelope funds to the pool."""
        amount = validate_positive_amount(amount)
        await self._require_remaining(envelope_id, period, amount)

        allocation, _ = await self._adjuster.move_envelope_to_pool(owner, envelope_id, period, amount)
        await self._recorder.record(ActivityEntryBuilder.allocation_removed(
            owner, envelope_id, amount, period.key
        ))
        return allocation

    async def transfer(
        self,
        owner: Owner,
        source_envelope_id: UUID,
        target_envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
    ) -> tuple[EnvelopeAllocation, EnvelopeAllocation]:
        amount = validate_positive_amount(amount)
        if source_envelope_id == target_envelope_id:
            raise ValidationError("Source and target envelope are the same", field="target_envelope_id")
        await self._require_remaining(source_envelope_id, period, amount)

        moved = await self._adjuster.move_between_envelopes(
            owner, source_envelope_id, target_envelope_id, period, amount
        )
        await self._recorder.record(ActivityEntryBuilder.transfer_made(
            owner, source_envelope_id, target_envelope_id, amount, period.key
        ))
        return moved

    async def _require_remaining(self, envelope_id: UUID, period: PeriodKey, amount: Decimal) -> None:
        allocation = await self._storage.get_allocation(envelope_id, period)
        remaining = allocation.remaining if allocation else ZERO
        if amount > remaining:
            raise ValidationError(
                f"Cannot move {amount}: envelope {envelope_id} has {remaining} left in {period}",
                field="amount",
            )

    # =========================================================================
    # SPENDS
    # =========================================================================

    async def record_spend(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        amount: Decimal,
        description: str,
        merchant: Optional[str] = None,
        spent_on: Optional[date] = None,
        recurring_id: Optional[UUID] = None,
    ) -> SpendRecord:
        """
        Record a spend and increment the envelope's spent amount.

        Overspending is allowed (the envelope shows a negative remaining)
        unless the ledger was built with block_overspend.

        Raises:
            OverspendBlocked: If blocking is on and the spend exceeds the
                              envelope's remaining funds
        """
        amount = validate_positive_amount(amount)
        if self._block_overspend:
            allocation = await self._storage.get_allocation(envelope_id, period)
            remaining = allocation.remaining if allocation else ZERO
            if amount > remaining:
                raise OverspendBlocked(
                    f"Spend of {amount} exceeds the {remaining} left in envelope {envelope_id}",
                    field="amount",
                )

        spend = SpendRecord(
            owner=owner,
            envelope_id=envelope_id,
            period=period,
            amount=amount,
            description=description,
            merchant=merchant,
            spent_on=spent_on or date.today(),
            recurring_id=recurring_id,
        )
        await self._storage.add_spend(spend)
        try:
            await self._adjuster.adjust_envelope_spent(owner, envelope_id, period, amount)
        except Exception as cause:
            await _undo_record(
                f"Spend {spend.id} could not be removed after the spent update failed",
                cause,
                lambda: self._storage.delete_spend(spend.id),
            )
            raise

        await self._recorder.record(ActivityEntryBuilder.expense_added(
            owner, spend.id, amount, spend.description, recurring_id=recurring_id
        ))
        return spend

    async def update_spend(
        self,
        spend_id: UUID,
        amount: Optional[Decimal] = None,
        envelope_id: Optional[UUID] = None,
        description: Optional[str] = None,
        merchant: Optional[str] = None,
        spent_on: Optional[date] = None,
    ) -> SpendRecord:
        """
        Edit a spend and re-base the spent amounts it touches.

        Moving a spend to another envelope takes the old amount off the
        old envelope and puts the new amount on the new one, both in the
        spend's own period.

        Raises:
            NotFoundError: If the spend does not exist
            OverspendBlocked: If blocking is on and the increase exceeds the
                              target envelope's remaining funds
        """
        spend = await self._storage.get_spend(spend_id)
        if spend is None:
            raise NotFoundError(f"Spend not found: {spend_id}")

        changes: dict = {}
        if amount is not None:
            changes["amount"] = validate_positive_amount(amount)
        if envelope_id is not None:
            changes["envelope_id"] = envelope_id
        if description is not None:
            changes["description"] = description
        if merchant is not None:
            changes["merchant"] = merchant
        if spent_on is not None:
            changes["spent_on"] = spent_on
        updated = SpendRecord.model_validate({**spend.model_dump(), **changes})

        if updated.envelope_id == spend.envelope_id:
            deltas = [(spend.envelope_id, updated.amount - spend.amount)]
        else:
            deltas = [(spend.envelope_id, -spend.amount), (updated.envelope_id, updated.amount)]
        deltas = [(envelope, delta) for envelope, delta in deltas if delta != 0]

        if self._block_overspend and deltas and deltas[-1][1] > 0:
            target, increase = deltas[-1]
            allocation = await self._storage.get_allocation(target, spend.period)
            remaining = allocation.remaining if allocation else ZERO
            if increase > remaining:
                raise OverspendBlocked(
                    f"Spend increase of {increase} exceeds the {remaining} left in envelope {target}",
                    field="amount",
                )

        applied: list[tuple[UUID, Decimal]] = []
        try:
            for envelope, delta in deltas:
                await self._adjuster.adjust_envelope_spent(spend.owner, envelope, spend.period, delta)
                applied.append((envelope, delta))
            await self._storage.update_spend(updated)
        except Exception as cause:
            if applied:
                await _undo_record(
                    f"Spent amounts could not be restored after editing spend {spend_id} failed",
                    cause,
                    lambda: self._revert_spent(spend.owner, spend.period, applied),
                )
            raise

        logger.info(
            "spend_updated",
            spend_id=str(spend_id),
            old_amount=str(spend.amount),
            new_amount=str(updated.amount),
            moved=updated.envelope_id != spend.envelope_id,
        )
        await self._recorder.record(ActivityEntryBuilder.expense_updated(
            spend.owner, spend.id, spend.amount, updated.amount, spend.envelope_id, updated.envelope_id
        ))
        return updated

    async def delete_spend(self, spend_id: UUID) -> SpendRecord:
        """
        Delete a spend and take its amount off the envelope's spent.

        Raises:
            NotFoundError: If the spend does not exist
        """
        spend = await self._storage.get_spend(spend_id)
        if spend is None:
            raise NotFoundError(f"Spend not found: {spend_id}")

        await self._adjuster.adjust_envelope_spent(spend.owner, spend.envelope_id, spend.period, -spend.amount)
        try:
            deleted = await self._storage.delete_spend(spend_id)
            if not deleted:
                raise NotFoundError(f"Spend already deleted: {spend_id}")
        except Exception as cause:
            await _undo_record(
                f"Spent could not be restored after deleting spend {spend_id} failed",
                cause,
                lambda: self._adjuster.adjust_envelope_spent(
                    spend.owner, spend.envelope_id, spend.period, spend.amount
                ),
            )
            raise

        await self._recorder.record(ActivityEntryBuilder.expense_deleted(
            spend.owner, spend.id, spend.amount, spend.description
        ))
        return spend

    async def _revert_spent(
        self,
        owner: Owner,
        period: PeriodKey,
        applied: list[tuple[UUID, Decimal]],
    ) -> None:
        for envelope, delta in reversed(applied):
            await self._adjuster.adjust_envelope_spent(owner, envelope, period, -delta)

    # =========================================================================
    # READ-ONLY SUMMARY
    # =========================================================================

    async def summarize(self, owner: Owner, period: PeriodKey) -> BudgetSummary:
        incomes = await self._storage.list_incomes(owner, period)
        allocations = await self._storage.list_allocations(owner, period)
        budget = await self._storage.get_budget_period(owner, period)

        envelopes = [
            EnvelopeSummary(
                envelope_id=a.envelope_id,
                allocated=a.allocated,
                spent=a.spent,
                remaining=a.remaining,
                is_overspent=a.is_overspent,
            )
            for a in sorted(allocations, key=lambda a: str(a.envelope_id))
        ]
        return BudgetSummary(
            owner_key=owner.key,
            month_key=period.key,
            total_income=round2(sum((i.amount for i in incomes), ZERO)),
            available_pool=budget.available_pool if budget else ZERO,
            total_allocated=round2(sum((a.allocated for a in allocations), ZERO)),
            total_spent=round2(sum((a.spent for a in allocations), ZERO)),
            envelopes=envelopes,
        )
