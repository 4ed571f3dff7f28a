"""
In-Memory Storage Implementation

Used by the test-suite and for local experiments. It follows the same
contract as the SQL store: the adjust_* methods apply a delta under one
lock and refuse it if the column would go negative, and the history
refuses a second SUCCESS entry for the same (envelope, period).
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import UUID

from envelope_ledger.errors import ConcurrencyConflict
from envelope_ledger.models.activity import ActivityEntry
from envelope_ledger.models.ledger import (
    AutoAllocationHistoryEntry,
    BudgetPeriod,
    EnvelopeAllocation,
    HistoryStatus,
    Income,
    Owner,
    OwnerScope,
    RecurringObligation,
    SavingsGoal,
    SpendRecord,
)
from envelope_ledger.models.money import round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.services.storage.interface import (
    ActivityStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed ledger store guarded by a single asyncio lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._periods: dict[tuple[str, str], BudgetPeriod] = {}
        self._allocations: dict[tuple[UUID, str], EnvelopeAllocation] = {}
        self._incomes: dict[UUID, Income] = {}
        self._spends: dict[UUID, SpendRecord] = {}
        self._recurring: dict[UUID, RecurringObligation] = {}
        self._goals: dict[UUID, SavingsGoal] = {}
        self._history: list[AutoAllocationHistoryEntry] = []

    # -------------------------------------------------------------------------
    # Budget periods
    # -------------------------------------------------------------------------

    async def get_budget_period(self, owner, period):
        return self._periods.get((owner.key, period.key))

    async def adjust_available_pool(self, owner, period, delta):
        async with self._lock:
            key = (owner.key, period.key)
            row = self._periods.get(key) or BudgetPeriod(owner=owner, period=period)
            new_value = row.available_pool + delta
            if new_value < 0:
                raise ConcurrencyConflict(
                    f"Pool update refused for {owner.key} {period}",
                    column="available_pool",
                    delta=delta,
                )
            row = row.model_copy(update={"available_pool": round2(new_value)})
            self._periods[key] = row
            return row

    async def set_available_pool(self, owner, period, value):
        async with self._lock:
            key = (owner.key, period.key)
            row = self._periods.get(key) or BudgetPeriod(owner=owner, period=period)
            row = row.model_copy(update={"available_pool": round2(value)})
            self._periods[key] = row
            return row

    # -------------------------------------------------------------------------
    # Envelope allocations
    # -------------------------------------------------------------------------

    async def get_allocation(self, envelope_id, period):
        return self._allocations.get((envelope_id, period.key))

    async def list_allocations(self, owner, period):
        return [
            row for row in self._allocations.values()
            if row.owner.key == owner.key and row.period == period
        ]

    async def list_envelope_allocations(self, envelope_id):
        rows = [row for row in self._allocations.values() if row.envelope_id == envelope_id]
        return sorted(rows, key=lambda r: r.period.key)

    async def _adjust_allocation_column(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        column: str,
        delta: Decimal,
    ) -> EnvelopeAllocation:
        async with self._lock:
            key = (envelope_id, period.key)
            row = self._allocations.get(key) or EnvelopeAllocation(
                owner=owner, envelope_id=envelope_id, period=period
            )
            new_value = getattr(row, column) + delta
            if new_value < 0:
                raise ConcurrencyConflict(
                    f"Update of {column} refused for envelope {envelope_id} {period}",
                    column=column,
                    delta=delta,
                )
            row = row.model_copy(update={column: round2(new_value)})
            self._allocations[key] = row
            return row

    async def adjust_envelope_allocated(self, owner, envelope_id, period, delta):
        return await self._adjust_allocation_column(owner, envelope_id, period, "allocated", delta)

    async def adjust_envelope_spent(self, owner, envelope_id, period, delta):
        return await self._adjust_allocation_column(owner, envelope_id, period, "spent", delta)

    # -------------------------------------------------------------------------
    # Income and spend records
    # -------------------------------------------------------------------------

    async def add_income(self, income):
        self._incomes[income.id] = income
        return income

    async def get_income(self, income_id):
        return self._incomes.get(income_id)

    async def update_income(self, income):
        if income.id not in self._incomes:
            raise NotFoundError(f"Income not found: {income.id}")
        self._incomes[income.id] = income
        return income

    async def delete_income(self, income_id):
        return self._incomes.pop(income_id, None) is not None

    async def list_incomes(self, owner, period):
        return [
            income for income in self._incomes.values()
            if income.owner.key == owner.key and income.period == period
        ]

    async def add_spend(self, spend):
        self._spends[spend.id] = spend
        return spend

    async def get_spend(self, spend_id):
        return self._spends.get(spend_id)

    async def update_spend(self, spend):
        if spend.id not in self._spends:
            raise NotFoundError(f"Spend not found: {spend.id}")
        self._spends[spend.id] = spend
        return spend

    async def delete_spend(self, spend_id):
        return self._spends.pop(spend_id, None) is not None

    async def list_spends(self, envelope_id, period=None):
        return [
            spend for spend in self._spends.values()
            if spend.envelope_id == envelope_id and (period is None or spend.period == period)
        ]

    # -------------------------------------------------------------------------
    # Recurring obligations
    # -------------------------------------------------------------------------

    async def save_recurring(self, obligation):
        self._recurring[obligation.id] = obligation
        return obligation

    async def get_recurring(self, recurring_id):
        return self._recurring.get(recurring_id)

    async def list_due_recurring(self, scope: OwnerScope, today: date):
        due = [
            obligation for obligation in self._recurring.values()
            if obligation.is_due(today) and scope.matches(obligation.owner)
        ]
        return sorted(due, key=lambda o: o.next_due_date)

    async def advance_recurring_due_date(self, recurring_id, expected, new_due_date):
        async with self._lock:
            obligation = self._recurring.get(recurring_id)
            if obligation is None or obligation.next_due_date != expected:
                return False
            self._recurring[recurring_id] = obligation.model_copy(
                update={"next_due_date": new_due_date}
            )
            return True

    # -------------------------------------------------------------------------
    # Savings goals and history
    # -------------------------------------------------------------------------

    async def save_goal(self, goal):
        self._goals[goal.id] = goal
        return goal

    async def list_auto_contribute_goals(self, scope):
        return [
            goal for goal in self._goals.values()
            if goal.auto_contribute and not goal.is_paused and scope.matches(goal.owner)
        ]

    async def append_history(self, entry):
        async with self._lock:
            key = entry.idempotency_key
            if key is not None and any(e.idempotency_key == key for e in self._history):
                raise DuplicateError(f"Contribution already recorded: {key}")
            self._history.append(entry)
            return entry

    async def has_successful_contribution(self, envelope_id, period):
        return any(
            e.status == HistoryStatus.SUCCESS
            and e.envelope_id == envelope_id
            and e.period == period
            for e in self._history
        )

    async def list_history(self, owner, period=None):
        return [
            e for e in self._history
            if e.owner.key == owner.key and (period is None or e.period == period)
        ]


class InMemoryActivityStorage(ActivityStorageInterface):
    """Append-only activity list."""

    def __init__(self):
        self.entries: list[ActivityEntry] = []

    async def append_activity(self, entry: ActivityEntry) -> bool:
        self.entries.append(entry)
        return True

    async def list_activity(self, household_id: UUID, limit: int = 100) -> list[ActivityEntry]:
        matching = [e for e in self.entries if e.household_id == household_id]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        return matching[:limit]
