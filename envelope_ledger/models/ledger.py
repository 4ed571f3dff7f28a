"""
Core Ledger Models

These models describe the persisted state of the envelope budget:
- one available-to-allocate pool per (owner, period)
- one allocated/spent pair per (envelope, period)
- the income and spend records the pool and the spent columns derive from
- recurring obligations and savings goals that the scheduled runs act on
- the append-only auto-allocation history

All money is Decimal, quantised to cents.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from envelope_ledger.models.money import Money, ZERO
from envelope_ledger.models.period import PeriodKey


# =============================================================================
# ENUMS
# =============================================================================

class Frequency(str, Enum):
    """How often a recurring obligation falls due."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class GoalPriority(str, Enum):
    """
    Savings goal priority.

    Goals are funded in the fixed order essential, high, medium, low.
    """
    ESSENTIAL = "essential"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    GoalPriority.ESSENTIAL: 0,
    GoalPriority.HIGH: 1,
    GoalPriority.MEDIUM: 2,
    GoalPriority.LOW: 3,
}


class HistoryStatus(str, Enum):
    """Outcome of one auto-contribution attempt."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


class SkipReason(str, Enum):
    """Why a savings goal received nothing in a run."""
    ALREADY_PROCESSED = "already_processed_this_month"
    TARGET_REACHED = "target_reached"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_CONTRIBUTION_RULE = "no_contribution_rule"


# =============================================================================
# OWNERSHIP
# =============================================================================

class Owner(BaseModel):
    """
    The (user, household) pair that owns a ledger entity.

    A household-owned entity shares its household's budget; a personal one
    uses the user's own budget. `key` names that budget scope.

    user_id is the acting user. It may be absent only for household-level
    maintenance (e.g. an integrity check of a household budget).
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[UUID] = None
    household_id: Optional[UUID] = None

    @model_validator(mode="after")
    def validate_has_identity(self) -> "Owner":
        if self.user_id is None and self.household_id is None:
            raise ValueError("An owner needs a user or a household")
        return self

    @property
    def key(self) -> str:
        if self.household_id is not None:
            return f"household:{self.household_id}"
        return f"user:{self.user_id}"

    @property
    def is_household(self) -> bool:
        return self.household_id is not None


class OwnerScope(BaseModel):
    """
    Filter for scheduled runs: one user's personal budget, one household,
    or everybody when both fields are empty.
    """

    user_id: Optional[UUID] = None
    household_id: Optional[UUID] = None

    @model_validator(mode="after")
    def validate_single_scope(self) -> "OwnerScope":
        if self.user_id is not None and self.household_id is not None:
            raise ValueError("Scope is either a user or a household, not both")
        return self

    @property
    def is_global(self) -> bool:
        return self.user_id is None and self.household_id is None

    def matches(self, owner: Owner) -> bool:
        if self.household_id is not None:
            return owner.household_id == self.household_id
        if self.user_id is not None:
            return owner.household_id is None and owner.user_id == self.user_id
        return True


# =============================================================================
# BUDGET STATE
# =============================================================================

class BudgetPeriod(BaseModel):
    """
    The available-to-allocate pool of one owner for one period.

    CRITICAL: available_pool == sum(income) - sum(allocated) for the period,
    within half a cent. Only the adjustment primitives and the integrity
    repair path write it.
    """

    owner: Owner
    period: PeriodKey
    available_pool: Money = Field(default=ZERO)


class EnvelopeAllocation(BaseModel):
    """Allocated and spent amounts of one envelope in one period."""

    owner: Owner
    envelope_id: UUID
    period: PeriodKey
    allocated: Money = Field(default=ZERO, ge=0)
    spent: Money = Field(default=ZERO, ge=0)

    @property
    def remaining(self) -> Decimal:
        """Unspent funds; negative when the envelope is overspent."""
        return self.allocated - self.spent

    @property
    def is_overspent(self) -> bool:
        return self.spent > self.allocated


class Income(BaseModel):
    """One income entry; the pool of its period grows by its amount."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: Owner
    period: PeriodKey
    amount: Money = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    received_on: date = Field(default_factory=date.today)


class SpendRecord(BaseModel):
    """
    A real spend against an envelope.

    Created by hand or materialised from a recurring obligation
    (recurring_id is then set).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: Owner
    envelope_id: UUID
    period: PeriodKey
    amount: Money = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=200)
    spent_on: date = Field(default_factory=date.today)
    recurring_id: Optional[UUID] = None


# =============================================================================
# SCHEDULED DEFINITIONS
# =============================================================================

class RecurringObligation(BaseModel):
    """
    Template for a spend that repeats on a schedule.

    The scheduler only ever moves next_due_date forward; amount is never
    changed automatically. Inactive obligations are never due.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: Owner
    envelope_id: UUID
    amount: Money = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=200)
    frequency: Frequency = Frequency.MONTHLY
    next_due_date: date
    anchor_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Intended day of month for month-based frequencies"
    )
    is_active: bool = True

    @model_validator(mode="after")
    def default_anchor_day(self) -> "RecurringObligation":
        if self.anchor_day is None:
            self.anchor_day = self.next_due_date.day
        return self

    def is_due(self, today: date) -> bool:
        return self.is_active and self.next_due_date <= today


class SavingsGoal(BaseModel):
    """
    A savings target tied to one envelope.

    current_amount is a cached display hint only. The amount actually saved
    is derived from the envelope's allocation rows.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner: Owner
    envelope_id: UUID
    name: Optional[str] = Field(default=None, max_length=200)
    target_amount: Money = Field(default=ZERO, ge=0)
    monthly_contribution: Optional[Money] = Field(default=None, gt=0)
    contribution_percentage: Optional[Decimal] = Field(default=None, gt=0, le=100)
    priority: GoalPriority = GoalPriority.MEDIUM
    auto_contribute: bool = False
    is_paused: bool = False
    current_amount: Money = Field(
        default=ZERO,
        description="Non-authoritative cache of the saved amount"
    )

    @model_validator(mode="after")
    def validate_single_contribution_rule(self) -> "SavingsGoal":
        if self.monthly_contribution is not None and self.contribution_percentage is not None:
            raise ValueError(
                "A goal uses either a monthly contribution or a percentage, not both"
            )
        return self

    @property
    def display_name(self) -> str:
        return self.name or "Savings goal"


class AutoAllocationHistoryEntry(BaseModel):
    """
    Append-only record of one auto-contribution attempt.

    A SUCCESS entry for (envelope_id, period) means the goal has been
    funded for that period; later runs skip it.
    """

    id: UUID = Field(default_factory=uuid4)
    owner: Owner
    period: PeriodKey
    goal_id: Optional[UUID] = None
    goal_name: str = "Savings goal"
    envelope_id: Optional[UUID] = None
    amount: Money = Field(default=ZERO, ge=0)
    priority: GoalPriority = GoalPriority.MEDIUM
    status: HistoryStatus
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def idempotency_key(self) -> Optional[str]:
        if self.status != HistoryStatus.SUCCESS or self.envelope_id is None:
            return None
        return f"{self.envelope_id}:{self.period}"
