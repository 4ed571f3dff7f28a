"""Scheduled runs: recurring obligations and savings auto-contributions."""

from envelope_ledger.scheduling.recurring import RecurringScheduler, advance_due_date
from envelope_ledger.scheduling.savings import SavingsContributionEngine

__all__ = ["RecurringScheduler", "SavingsContributionEngine", "advance_due_date"]
