"""
Data Models Package

This package contains all Pydantic models used by the envelope ledger.
All data flowing through the ledger must conform to these schemas.
"""

from envelope_ledger.models.money import CENT, HALF_CENT, ZERO, Money, round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.ledger import (
    AutoAllocationHistoryEntry,
    BudgetPeriod,
    EnvelopeAllocation,
    Frequency,
    GoalPriority,
    HistoryStatus,
    Income,
    Owner,
    OwnerScope,
    RecurringObligation,
    SavingsGoal,
    SkipReason,
    SpendRecord,
)
from envelope_ledger.models.activity import (
    ActivityAction,
    ActivityEntry,
    ActivityEntryBuilder,
    ActivitySeverity,
)
from envelope_ledger.models.results import (
    BudgetSummary,
    ContributionOutcome,
    ContributionRunResult,
    EnvelopeSummary,
    IntegrityCheckResult,
    RecurringBatchResult,
    RecurringItemResult,
)

__all__ = [
    # Money
    "CENT",
    "HALF_CENT",
    "ZERO",
    "Money",
    "round2",
    "PeriodKey",
    # Ledger models
    "AutoAllocationHistoryEntry",
    "BudgetPeriod",
    "EnvelopeAllocation",
    "Frequency",
    "GoalPriority",
    "HistoryStatus",
    "Income",
    "Owner",
    "OwnerScope",
    "RecurringObligation",
    "SavingsGoal",
    "SkipReason",
    "SpendRecord",
    # Activity models
    "ActivityAction",
    "ActivityEntry",
    "ActivityEntryBuilder",
    "ActivitySeverity",
    # Results
    "BudgetSummary",
    "ContributionOutcome",
    "ContributionRunResult",
    "EnvelopeSummary",
    "IntegrityCheckResult",
    "RecurringBatchResult",
    "RecurringItemResult",
]
