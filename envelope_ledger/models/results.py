"""
Result Models

What the integrity checker, the recurring scheduler and the savings engine
hand back to their callers. They serialize with camelCase aliases so the
HTTP layer can return them as-is.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from envelope_ledger.models.ledger import GoalPriority, HistoryStatus, SkipReason
from envelope_ledger.models.money import Money, ZERO


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# INTEGRITY
# =============================================================================

class IntegrityCheckResult(CamelModel):
    """Stored pool versus the pool recomputed from income and allocation rows."""

    month_key: str
    total_incomes: Money
    total_allocations: Money
    stored_to_be_budgeted: Money
    calculated_to_be_budgeted: Money
    discrepancy: Money
    is_valid: bool
    fixed: bool = False
    message: str = ""


# =============================================================================
# RECURRING OBLIGATIONS
# =============================================================================

class RecurringItemResult(CamelModel):
    """One occurrence of a recurring obligation in a batch run."""

    recurring_id: UUID
    description: str
    amount: Money
    due_date: date
    month_key: Optional[str] = None
    transaction_id: Optional[UUID] = None
    next_due_date: Optional[date] = None
    status: HistoryStatus
    reason: Optional[str] = None
    error: Optional[str] = None


class RecurringBatchResult(CamelModel):
    """Outcome of one apply-all-due run."""

    run_date: date = Field(alias="date")
    total_due: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    results: list[RecurringItemResult] = Field(default_factory=list)

    def add(self, item: RecurringItemResult) -> None:
        self.results.append(item)
        if item.status == HistoryStatus.SUCCESS:
            self.processed += 1
        elif item.status == HistoryStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


# =============================================================================
# SAVINGS CONTRIBUTIONS
# =============================================================================

class ContributionOutcome(CamelModel):
    """What happened to one savings goal in a contribution run."""

    goal_id: UUID
    goal_name: str
    envelope_id: UUID
    owner_key: str
    priority: GoalPriority
    amount: Money = ZERO
    status: HistoryStatus
    reason: Optional[SkipReason] = None
    error: Optional[str] = None


class ContributionRunResult(CamelModel):
    """Aggregate outcome of one savings contribution run."""

    month_key: str
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total_allocated: Money = ZERO
    results: list[ContributionOutcome] = Field(default_factory=list)

    def add(self, outcome: ContributionOutcome) -> None:
        self.results.append(outcome)
        if outcome.status == HistoryStatus.SUCCESS:
            self.processed += 1
            self.total_allocated += outcome.amount
        elif outcome.status == HistoryStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


# =============================================================================
# READ-ONLY SUMMARY
# =============================================================================

class EnvelopeSummary(CamelModel):
    envelope_id: UUID
    allocated: Money
    spent: Money
    remaining: Money
    is_overspent: bool


class BudgetSummary(CamelModel):
    """
    Read-only snapshot of one owner's period.

    This is all the advice collaborator ever sees.
    """

    owner_key: str
    month_key: str
    total_income: Money
    available_pool: Money
    total_allocated: Money
    total_spent: Money
    envelopes: list[EnvelopeSummary] = Field(default_factory=list)
