"""
Abstract Storage Interface

The ledger services never talk to a database directly. They go through
this interface, which lets us:
1. Run against PostgreSQL or SQLite through SQLAlchemy
2. Use in-memory storage for testing
3. Mirror the activity feed somewhere else (Google Sheets)

CRITICAL: the three adjust_* methods are the only writers of the pool,
allocated and spent columns. Each one must apply its delta in a single
guarded step (`col = col + delta WHERE col + delta >= 0`) and raise
ConcurrencyConflict when the guard refuses. A missing row counts as zero
and is created on demand. There is no read-then-write fallback.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from envelope_ledger.models.activity import ActivityEntry
from envelope_ledger.models.ledger import (
    AutoAllocationHistoryEntry,
    BudgetPeriod,
    EnvelopeAllocation,
    Income,
    Owner,
    OwnerScope,
    RecurringObligation,
    SavingsGoal,
    SpendRecord,
)
from envelope_ledger.models.period import PeriodKey


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the ledger store.

    Any storage implementation (SQLAlchemy, in-memory, ...) must implement
    these methods.
    """

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open connections)."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    # -------------------------------------------------------------------------
    # Budget periods
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_budget_period(
        self,
        owner: Owner,
        period: PeriodKey,
    ) -> Optional[BudgetPeriod]:
        """Return the owner's pool row for the period, if it exists."""
        pass

    @abstractmethod
    async def adjust_available_pool(
        self,
        owner: Owner,
        period: PeriodKey,
        delta: Decimal,
    ) -> BudgetPeriod:
        """
        Atomically add delta to the owner's available pool.

        Raises:
            ConcurrencyConflict: If the pool would become negative
        """
        pass

    @abstractmethod
    async def set_available_pool(
        self,
        owner: Owner,
        period: PeriodKey,
        value: Decimal,
    ) -> BudgetPeriod:
        """
        Overwrite the stored pool.

        Only the integrity repair path uses this.
        """
        pass

    # -------------------------------------------------------------------------
    # Envelope allocations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_allocation(
        self,
        envelope_id: UUID,
        period: PeriodKey,
    ) -> Optional[EnvelopeAllocation]:
        pass

    @abstractmethod
    async def list_allocations(
        self,
        owner: Owner,
        period: PeriodKey,
    ) -> list[EnvelopeAllocation]:
        """All allocation rows of the owner's budget for the period."""
        pass

    @abstractmethod
    async def list_envelope_allocations(
        self,
        envelope_id: UUID,
    ) -> list[EnvelopeAllocation]:
        """All allocation rows of one envelope, across every period."""
        pass

    @abstractmethod
    async def adjust_envelope_allocated(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        delta: Decimal,
    ) -> EnvelopeAllocation:
        """
        Atomically add delta to the envelope's allocated amount.

        Raises:
            ConcurrencyConflict: If allocated would become negative
        """
        pass

    @abstractmethod
    async def adjust_envelope_spent(
        self,
        owner: Owner,
        envelope_id: UUID,
        period: PeriodKey,
        delta: Decimal,
    ) -> EnvelopeAllocation:
        """
        Atomically add delta to the envelope's spent amount.

        Raises:
            ConcurrencyConflict: If spent would become negative
        """
        pass

    # -------------------------------------------------------------------------
    # Income and spend records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_income(self, income: Income) -> Income:
        pass

    @abstractmethod
    async def get_income(self, income_id: UUID) -> Optional[Income]:
        pass

    @abstractmethod
    async def update_income(self, income: Income) -> Income:
        """
        Overwrite amount, description and received date of an income.

        Raises:
            NotFoundError: If the income does not exist
        """
        pass

    @abstractmethod
    async def delete_income(self, income_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_incomes(
        self,
        owner: Owner,
        period: PeriodKey,
    ) -> list[Income]:
        pass

    @abstractmethod
    async def add_spend(self, spend: SpendRecord) -> SpendRecord:
        pass

    @abstractmethod
    async def get_spend(self, spend_id: UUID) -> Optional[SpendRecord]:
        pass

    @abstractmethod
    async def update_spend(self, spend: SpendRecord) -> SpendRecord:
        """
        Overwrite envelope, amount, description, merchant and date of a spend.

        Raises:
            NotFoundError: If the spend does not exist
        """
        pass

    @abstractmethod
    async def delete_spend(self, spend_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_spends(
        self,
        envelope_id: UUID,
        period: Optional[PeriodKey] = None,
    ) -> list[SpendRecord]:
        pass

    # -------------------------------------------------------------------------
    # Recurring obligations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_recurring(self, obligation: RecurringObligation) -> RecurringObligation:
        """Insert or replace a recurring obligation."""
        pass

    @abstractmethod
    async def get_recurring(self, recurring_id: UUID) -> Optional[RecurringObligation]:
        pass

    @abstractmethod
    async def list_due_recurring(
        self,
        scope: OwnerScope,
        today: date,
    ) -> list[RecurringObligation]:
        """Active obligations with next_due_date <= today, oldest first."""
        pass

    @abstractmethod
    async def advance_recurring_due_date(
        self,
        recurring_id: UUID,
        expected: date,
        new_due_date: date,
    ) -> bool:
        """
        Compare-and-set the next due date.

        Returns:
            True if the stored date was `expected` and is now `new_due_date`,
            False if another writer moved it first
        """
        pass

    # -------------------------------------------------------------------------
    # Savings goals and auto-allocation history
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_goal(self, goal: SavingsGoal) -> SavingsGoal:
        """Insert or replace a savings goal."""
        pass

    @abstractmethod
    async def list_auto_contribute_goals(
        self,
        scope: OwnerScope,
    ) -> list[SavingsGoal]:
        """Goals with auto_contribute set and not paused."""
        pass

    @abstractmethod
    async def append_history(
        self,
        entry: AutoAllocationHistoryEntry,
    ) -> AutoAllocationHistoryEntry:
        """
        Append a history entry.

        Raises:
            DuplicateError: If a SUCCESS entry already exists for the same
                            (envelope, period)
        """
        pass

    @abstractmethod
    async def has_successful_contribution(
        self,
        envelope_id: UUID,
        period: PeriodKey,
    ) -> bool:
        pass

    @abstractmethod
    async def list_history(
        self,
        owner: Owner,
        period: Optional[PeriodKey] = None,
    ) -> list[AutoAllocationHistoryEntry]:
        """History of the owner's budget, oldest first."""
        pass


class ActivityStorageInterface(ABC):
    """
    Abstract interface for activity log storage.

    The activity log is append-only - we never delete or modify entries.
    """

    @abstractmethod
    async def append_activity(self, entry: ActivityEntry) -> bool:
        """
        Append an activity entry.

        Returns:
            True if stored successfully
        """
        pass

    @abstractmethod
    async def list_activity(
        self,
        household_id: UUID,
        limit: int = 100,
    ) -> list[ActivityEntry]:
        """Most recent entries of a household feed, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
