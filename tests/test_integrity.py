"""
Tests for the budget integrity checker.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from envelope_ledger.ledger import IntegrityChecker
from envelope_ledger.models.activity import ActivityAction
from envelope_ledger.models.ledger import Income, Owner


@pytest.fixture
def checker(memory_storage, recorder):
    return IntegrityChecker(memory_storage, recorder)


async def seed_drifted_budget(storage, owner, period):
    """2000 income, 400 + 1000 allocated, stored pool 550 (should be 600)."""
    await storage.add_income(Income(owner=owner, period=period, amount=Decimal("2000"), description="Salary"))
    await storage.adjust_envelope_allocated(owner, uuid4(), period, Decimal("400"))
    await storage.adjust_envelope_allocated(owner, uuid4(), period, Decimal("1000"))
    await storage.set_available_pool(owner, period, Decimal("550"))


class TestIntegrityCheck:
    """Stored pool versus income minus allocations."""

    async def test_detects_drift(self, checker, memory_storage, owner, period):
        await seed_drifted_budget(memory_storage, owner, period)

        result = await checker.check(owner, period)

        assert result.total_incomes == Decimal("2000.00")
        assert result.total_allocations == Decimal("1400.00")
        assert result.stored_to_be_budgeted == Decimal("550.00")
        assert result.calculated_to_be_budgeted == Decimal("600.00")
        assert result.discrepancy == Decimal("50.00")
        assert not result.is_valid
        assert not result.fixed

    async def test_discrepancy_is_absolute(self, checker, memory_storage, owner, period):
        await memory_storage.add_income(Income(owner=owner, period=period, amount=Decimal("100"), description="Gift"))
        await memory_storage.set_available_pool(owner, period, Decimal("130"))

        result = await checker.check(owner, period)

        assert result.discrepancy == Decimal("30.00")
        assert not result.is_valid

    async def test_empty_budget_is_valid(self, checker, owner, period):
        result = await checker.check(owner, period)
        assert result.is_valid
        assert result.stored_to_be_budgeted == Decimal("0")

    async def test_half_cent_tolerance(self, memory_storage, owner, period):
        await memory_storage.add_income(Income(owner=owner, period=period, amount=Decimal("10"), description="Gift"))
        await memory_storage.set_available_pool(owner, period, Decimal("10.00"))
        assert (await IntegrityChecker(memory_storage).check(owner, period)).is_valid

        await memory_storage.set_available_pool(owner, period, Decimal("10.01"))
        assert not (await IntegrityChecker(memory_storage).check(owner, period)).is_valid


class TestIntegrityFix:
    """Repair overwrites the stored pool with the calculated value."""

    async def test_fix_corrects_pool(self, checker, memory_storage, owner, period):
        await seed_drifted_budget(memory_storage, owner, period)

        result = await checker.fix(owner, period)

        assert result.fixed
        assert result.is_valid
        assert result.stored_to_be_budgeted == Decimal("550.00")
        assert result.discrepancy == Decimal("50.00")
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("600.00")
        assert (await checker.check(owner, period)).is_valid

    async def test_fix_is_idempotent(self, checker, memory_storage, owner, period):
        await seed_drifted_budget(memory_storage, owner, period)
        await checker.fix(owner, period)

        second = await checker.fix(owner, period)

        assert second.is_valid
        assert not second.fixed
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("600.00")

    async def test_fix_creates_missing_pool_row(self, checker, memory_storage, owner, period):
        await memory_storage.add_income(Income(owner=owner, period=period, amount=Decimal("75"), description="Gift"))

        result = await checker.fix(owner, period)

        assert result.fixed
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("75.00")

    async def test_household_fix_is_recorded(self, checker, memory_storage, activity_storage, period):
        owner = Owner(household_id=uuid4())
        await seed_drifted_budget(memory_storage, owner, period)

        await checker.fix(owner, period)

        assert [e.action for e in activity_storage.entries] == [ActivityAction.BUDGET_CORRECTED]
        assert activity_storage.entries[0].details["calculated_to_be_budgeted"] == 600.0
