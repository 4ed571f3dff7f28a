"""
Activity Models

Every mutating ledger operation produces an activity entry. The activity log
is a side-effect sink: household members see it in their feed, but no
ledger invariant depends on it.

Activity entries are append-only. Only household-owned operations are
persisted; personal operations are logged locally.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from envelope_ledger.models.ledger import Owner


class ActivityAction(str, Enum):
    """Kinds of activity shown in a household feed."""
    INCOME_ADDED = "income_added"
    INCOME_UPDATED = "income_updated"
    INCOME_DELETED = "income_deleted"
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    ALLOCATION_MADE = "allocation_made"
    ALLOCATION_REMOVED = "allocation_removed"
    TRANSFER_MADE = "transfer_made"
    BUDGET_CORRECTED = "budget_corrected"


class ActivitySeverity(str, Enum):
    """Severity used for the local structured log line."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActivityEntry(BaseModel):
    """A single activity log entry."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    household_id: Optional[UUID] = Field(
        default=None,
        description="Household feed the entry belongs to; None for personal budgets"
    )
    user_id: Optional[UUID] = None
    action: ActivityAction
    severity: ActivitySeverity = ActivitySeverity.INFO

    entity_type: str = Field(..., description="e.g. 'envelope', 'transaction', 'income'")
    entity_id: Optional[UUID] = None

    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_household(self) -> bool:
        return self.household_id is not None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "activity_id": str(self.id),
            "created_at": self.created_at.isoformat(),
            "household_id": str(self.household_id) if self.household_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "details": self.details,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a spreadsheet row.

        Columns: [id, created_at, household_id, user_id, action,
        entity_type, entity_id, details_json]
        """
        return [
            str(self.id),
            self.created_at.isoformat(),
            str(self.household_id) if self.household_id else "",
            str(self.user_id) if self.user_id else "",
            self.action.value,
            self.entity_type,
            str(self.entity_id) if self.entity_id else "",
            json.dumps(self.details) if self.details else "",
        ]


def _amount(value: Decimal) -> float:
    return float(value)


class ActivityEntryBuilder:
    """
    Helper class to build activity entries for the ledger operations.

    Usage:
        entry = ActivityEntryBuilder.expense_added(owner, spend)
        entry = ActivityEntryBuilder.allocation_made(owner, envelope_id, amount)
    """

    @staticmethod
    def income_added(
        owner: Owner,
        income_id: UUID,
        amount: Decimal,
        description: str,
        period: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.INCOME_ADDED,
            entity_type="income",
            entity_id=income_id,
            details={
                "amount": _amount(amount),
                "description": description,
                "month_key": period,
            },
        )

    @staticmethod
    def income_deleted(
        owner: Owner,
        income_id: UUID,
        amount: Decimal,
        period: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.INCOME_DELETED,
            entity_type="income",
            entity_id=income_id,
            details={"amount": _amount(amount), "month_key": period},
        )

    @staticmethod
    def income_updated(
        owner: Owner,
        income_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        period: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.INCOME_UPDATED,
            entity_type="income",
            entity_id=income_id,
            details={
                "old_amount": _amount(old_amount),
                "new_amount": _amount(new_amount),
                "month_key": period,
            },
        )

    @staticmethod
    def expense_updated(
        owner: Owner,
        transaction_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        old_envelope_id: UUID,
        new_envelope_id: UUID,
    ) -> ActivityEntry:
        details: dict[str, Any] = {
            "old_amount": _amount(old_amount),
            "new_amount": _amount(new_amount),
        }
        if old_envelope_id != new_envelope_id:
            details["from_envelope_id"] = str(old_envelope_id)
            details["to_envelope_id"] = str(new_envelope_id)
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.EXPENSE_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            details=details,
        )

    @staticmethod
    def expense_deleted(
        owner: Owner,
        transaction_id: UUID,
        amount: Decimal,
        description: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.EXPENSE_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            details={"amount": _amount(amount), "description": description},
        )

    @staticmethod
    def expense_added(
        owner: Owner,
        transaction_id: UUID,
        amount: Decimal,
        description: str,
        recurring_id: Optional[UUID] = None,
    ) -> ActivityEntry:
        details: dict[str, Any] = {
            "amount": _amount(amount),
            "description": description,
        }
        if recurring_id is not None:
            details["auto_applied"] = True
            details["recurring_id"] = str(recurring_id)
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.EXPENSE_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            details=details,
        )

    @staticmethod
    def allocation_made(
        owner: Owner,
        envelope_id: UUID,
        amount: Decimal,
        period: str,
        savings_goal_id: Optional[UUID] = None,
        envelope_name: Optional[str] = None,
    ) -> ActivityEntry:
        details: dict[str, Any] = {"amount": _amount(amount), "month_key": period}
        if savings_goal_id is not None:
            details["auto_contribution"] = True
            details["savings_goal_id"] = str(savings_goal_id)
        if envelope_name:
            details["envelope_name"] = envelope_name
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.ALLOCATION_MADE,
            entity_type="envelope",
            entity_id=envelope_id,
            details=details,
        )

    @staticmethod
    def allocation_removed(
        owner: Owner,
        envelope_id: UUID,
        amount: Decimal,
        period: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.ALLOCATION_REMOVED,
            entity_type="envelope",
            entity_id=envelope_id,
            details={"amount": _amount(amount), "month_key": period},
        )

    @staticmethod
    def transfer_made(
        owner: Owner,
        source_envelope_id: UUID,
        target_envelope_id: UUID,
        amount: Decimal,
        period: str,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.TRANSFER_MADE,
            entity_type="envelope",
            entity_id=source_envelope_id,
            details={
                "amount": _amount(amount),
                "from_envelope_id": str(source_envelope_id),
                "to_envelope_id": str(target_envelope_id),
                "month_key": period,
            },
        )

    @staticmethod
    def budget_corrected(
        owner: Owner,
        period: str,
        stored: Decimal,
        calculated: Decimal,
    ) -> ActivityEntry:
        return ActivityEntry(
            household_id=owner.household_id,
            user_id=owner.user_id,
            action=ActivityAction.BUDGET_CORRECTED,
            severity=ActivitySeverity.WARNING,
            entity_type="budget",
            details={
                "month_key": period,
                "stored_to_be_budgeted": _amount(stored),
                "calculated_to_be_budgeted": _amount(calculated),
            },
        )
