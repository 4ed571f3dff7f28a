"""
Tests for the user-facing ledger operations.

After any sequence of successful operations the pool equals income minus
allocations; the integrity checker is used as the oracle.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from envelope_ledger.errors import AdjustmentRolledBack, OverspendBlocked, ValidationError
from envelope_ledger.ledger import BudgetLedger, IntegrityChecker
from envelope_ledger.models.activity import ActivityAction
from envelope_ledger.services.storage import InMemoryLedgerStorage, NotFoundError, StorageError


class FailingSpentStorage(InMemoryLedgerStorage):
    """Refuses every spent update."""

    async def adjust_envelope_spent(self, owner, envelope_id, period, delta):
        raise StorageError("spent column locked")


class FailingRecordEditStorage(InMemoryLedgerStorage):
    """Balance updates work; editing an income or spend row does not."""

    async def update_income(self, income):
        raise StorageError("incomes table locked")

    async def update_spend(self, spend):
        raise StorageError("transactions table locked")


async def assert_consistent(storage, owner, period):
    result = await IntegrityChecker(storage).check(owner, period)
    assert result.is_valid, result.message


class TestIncome:
    """Income entries move the pool."""

    async def test_add_income_grows_pool(self, ledger, memory_storage, owner, period):
        income = await ledger.add_income(owner, period, Decimal("2000"), "Salary")

        assert income.amount == Decimal("2000.00")
        budget = await memory_storage.get_budget_period(owner, period)
        assert budget.available_pool == Decimal("2000.00")
        await assert_consistent(memory_storage, owner, period)

    async def test_add_income_rejects_non_positive(self, ledger, owner, period):
        with pytest.raises(ValidationError):
            await ledger.add_income(owner, period, Decimal("-5"), "Refund")

    async def test_remove_income(self, ledger, memory_storage, owner, period):
        income = await ledger.add_income(owner, period, Decimal("300"), "Bonus")

        await ledger.remove_income(income.id)

        assert await memory_storage.get_income(income.id) is None
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("0.00")

    async def test_remove_allocated_income_is_rejected(self, ledger, memory_storage, owner, period):
        """Money already in envelopes cannot be un-earned."""
        income = await ledger.add_income(owner, period, Decimal("300"), "Bonus")
        await ledger.allocate(owner, uuid4(), period, Decimal("200"))

        with pytest.raises(ValidationError):
            await ledger.remove_income(income.id)

        assert await memory_storage.get_income(income.id) is not None
        await assert_consistent(memory_storage, owner, period)

    async def test_remove_missing_income(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.remove_income(uuid4())


class TestAllocation:
    """Allocate, deallocate and transfer."""

    async def test_allocate_more_than_pool_is_rejected(self, ledger, fund, owner, period):
        await fund(owner, period, "100")

        with pytest.raises(ValidationError):
            await ledger.allocate(owner, uuid4(), period, Decimal("100.01"))

    async def test_deallocate_limited_to_remaining(self, ledger, fund, owner, period):
        envelope_id = uuid4()
        await fund(owner, period, "100")
        await ledger.allocate(owner, envelope_id, period, Decimal("60"))
        await ledger.record_spend(owner, envelope_id, period, Decimal("45"), "Groceries")

        with pytest.raises(ValidationError):
            await ledger.deallocate(owner, envelope_id, period, Decimal("20"))

        allocation = await ledger.deallocate(owner, envelope_id, period, Decimal("15"))
        assert allocation.allocated == Decimal("45.00")

    async def test_transfer_to_same_envelope_is_rejected(self, ledger, fund, owner, period):
        envelope_id = uuid4()
        await fund(owner, period, "100")
        await ledger.allocate(owner, envelope_id, period, Decimal("50"))

        with pytest.raises(ValidationError):
            await ledger.transfer(owner, envelope_id, envelope_id, period, Decimal("10"))

    async def test_invariant_holds_across_operations(self, ledger, memory_storage, fund, owner, period):
        groceries, rent, fun = uuid4(), uuid4(), uuid4()
        await fund(owner, period, "2500")
        bonus = await fund(owner, period, "300")
        await ledger.allocate(owner, groceries, period, Decimal("400"))
        await ledger.allocate(owner, rent, period, Decimal("1200"))
        await ledger.transfer(owner, rent, fun, period, Decimal("75.25"))
        await ledger.record_spend(owner, groceries, period, Decimal("512.40"), "Groceries")
        await ledger.deallocate(owner, fun, period, Decimal("25.25"))
        await ledger.allocate(owner, fun, period, Decimal("10"))
        await ledger.remove_income(bonus.id)

        await assert_consistent(memory_storage, owner, period)
        summary = await ledger.summarize(owner, period)
        assert summary.total_income == Decimal("2500.00")
        assert summary.total_allocated == Decimal("1584.75")
        assert summary.available_pool == Decimal("915.25")
        assert summary.total_spent == Decimal("512.40")


class TestSpends:
    """Spends increment the envelope's spent column."""

    async def test_overspend_allowed_by_default(self, ledger, memory_storage, fund, owner, period):
        envelope_id = uuid4()
        await fund(owner, period, "100")
        await ledger.allocate(owner, envelope_id, period, Decimal("50"))

        spend = await ledger.record_spend(owner, envelope_id, period, Decimal("80"), "Dinner", merchant="Bistro")

        allocation = await memory_storage.get_allocation(envelope_id, period)
        assert allocation.remaining == Decimal("-30.00")
        assert [s.id for s in await memory_storage.list_spends(envelope_id, period)] == [spend.id]
        # Spends never touch the pool
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("50.00")

    async def test_overspend_blocked_when_configured(self, memory_storage, owner, period):
        ledger = BudgetLedger(memory_storage, block_overspend=True)
        envelope_id = uuid4()
        await ledger.add_income(owner, period, Decimal("100"), "Salary")
        await ledger.allocate(owner, envelope_id, period, Decimal("50"))

        with pytest.raises(OverspendBlocked):
            await ledger.record_spend(owner, envelope_id, period, Decimal("50.01"), "Dinner")

        assert await memory_storage.list_spends(envelope_id) == []

    async def test_spend_row_removed_when_increment_fails(self, owner, period):
        storage = FailingSpentStorage()
        ledger = BudgetLedger(storage)
        envelope_id = uuid4()

        with pytest.raises(StorageError):
            await ledger.record_spend(owner, envelope_id, period, Decimal("20"), "Fuel")

        assert await storage.list_spends(envelope_id) == []


class TestRecordEdits:
    """Editing or deleting income and spends re-bases the pool and spent."""

    async def test_update_income_moves_pool_by_difference(self, ledger, memory_storage, owner, period):
        income = await ledger.add_income(owner, period, Decimal("1000"), "Salary")
        await ledger.allocate(owner, uuid4(), period, Decimal("300"))

        updated = await ledger.update_income(income.id, amount=Decimal("1200"), description="Salary + raise")

        assert updated.description == "Salary + raise"
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("900.00")
        await ledger.update_income(income.id, amount=Decimal("800"))
        assert (await memory_storage.get_budget_period(owner, period)).available_pool == Decimal("500.00")
        assert (await memory_storage.get_income(income.id)).amount == Decimal("800.00")
        await assert_consistent(memory_storage, owner, period)

    async def test_update_income_below_allocated_is_rejected(self, ledger, memory_storage, owner, period):
        income = await ledger.add_income(owner, period, Decimal("300"), "Bonus")
        await ledger.allocate(owner, uuid4(), period, Decimal("200"))

        with pytest.raises(ValidationError):
            await ledger.update_income(income.id, amount=Decimal("50"))

        assert (await memory_storage.get_income(income.id)).amount == Decimal("300.00")
        await assert_consistent(memory_storage, owner, period)

    async def test_update_income_restores_pool_when_row_update_fails(self, owner, period):
        storage = FailingRecordEditStorage()
        ledger = BudgetLedger(storage)
        income = await ledger.add_income(owner, period, Decimal("500"), "Salary")

        with pytest.raises(StorageError):
            await ledger.update_income(income.id, amount=Decimal("650"))

        assert (await storage.get_budget_period(owner, period)).available_pool == Decimal("500.00")
        await assert_consistent(storage, owner, period)

    async def test_update_missing_income(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.update_income(uuid4(), amount=Decimal("10"))

    async def test_delete_spend_releases_spent(self, ledger, memory_storage, fund, owner, period):
        envelope_id = uuid4()
        await fund(owner, period, "100")
        await ledger.allocate(owner, envelope_id, period, Decimal("100"))
        keep = await ledger.record_spend(owner, envelope_id, period, Decimal("30"), "Groceries")
        spend = await ledger.record_spend(owner, envelope_id, period, Decimal("45.50"), "Takeaway")

        deleted = await ledger.delete_spend(spend.id)

        assert deleted.id == spend.id
        assert (await memory_storage.get_allocation(envelope_id, period)).spent == Decimal("30.00")
        assert [s.id for s in await memory_storage.list_spends(envelope_id)] == [keep.id]

    async def test_delete_missing_spend(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.delete_spend(uuid4())

    async def test_update_spend_amount(self, ledger, memory_storage, owner, period):
        envelope_id = uuid4()
        spend = await ledger.record_spend(owner, envelope_id, period, Decimal("40"), "Fuel")

        updated = await ledger.update_spend(spend.id, amount=Decimal("25"), merchant="Shell")

        assert updated.merchant == "Shell"
        assert (await memory_storage.get_allocation(envelope_id, period)).spent == Decimal("25.00")
        assert (await memory_storage.get_spend(spend.id)).amount == Decimal("25.00")

    async def test_update_spend_moves_between_envelopes(self, ledger, memory_storage, fund, owner, period):
        groceries, dining = uuid4(), uuid4()
        await fund(owner, period, "200")
        await ledger.allocate(owner, groceries, period, Decimal("100"))
        spend = await ledger.record_spend(owner, groceries, period, Decimal("40"), "Market")

        await ledger.update_spend(spend.id, amount=Decimal("30"), envelope_id=dining)

        assert (await memory_storage.get_allocation(groceries, period)).spent == Decimal("0.00")
        moved = await memory_storage.get_allocation(dining, period)
        assert (moved.allocated, moved.spent) == (Decimal("0.00"), Decimal("30.00"))
        assert [s.id for s in await memory_storage.list_spends(dining, period)] == [spend.id]
        await assert_consistent(memory_storage, owner, period)

    async def test_update_spend_restores_spent_when_row_update_fails(self, owner, period):
        storage = FailingRecordEditStorage()
        ledger = BudgetLedger(storage)
        source, target = uuid4(), uuid4()
        spend = await ledger.record_spend(owner, source, period, Decimal("40"), "Market")

        with pytest.raises(StorageError):
            await ledger.update_spend(spend.id, amount=Decimal("55"), envelope_id=target)

        assert (await storage.get_allocation(source, period)).spent == Decimal("40.00")
        assert (await storage.get_allocation(target, period)).spent == Decimal("0.00")

    async def test_update_spend_increase_blocked_when_configured(self, memory_storage, owner, period):
        ledger = BudgetLedger(memory_storage, block_overspend=True)
        envelope_id = uuid4()
        await ledger.add_income(owner, period, Decimal("100"), "Salary")
        await ledger.allocate(owner, envelope_id, period, Decimal("50"))
        spend = await ledger.record_spend(owner, envelope_id, period, Decimal("30"), "Dinner")

        with pytest.raises(OverspendBlocked):
            await ledger.update_spend(spend.id, amount=Decimal("60.01"))

        assert (await memory_storage.get_allocation(envelope_id, period)).spent == Decimal("30.00")
        # Lowering is always allowed
        await ledger.update_spend(spend.id, amount=Decimal("10"))


class TestActivity:
    """Household operations reach the activity sink; personal ones only the log."""

    async def test_household_operations_are_recorded(self, ledger, activity_storage, household_owner, period):
        envelope_id = uuid4()
        await ledger.add_income(household_owner, period, Decimal("500"), "Salary")
        await ledger.allocate(household_owner, envelope_id, period, Decimal("200"))
        await ledger.record_spend(household_owner, envelope_id, period, Decimal("20"), "Snacks")

        actions = [e.action for e in activity_storage.entries]
        assert actions == [
            ActivityAction.INCOME_ADDED,
            ActivityAction.ALLOCATION_MADE,
            ActivityAction.EXPENSE_ADDED,
        ]
        assert all(e.household_id == household_owner.household_id for e in activity_storage.entries)

    async def test_edits_are_recorded(self, ledger, activity_storage, household_owner, period):
        envelope_id = uuid4()
        income = await ledger.add_income(household_owner, period, Decimal("500"), "Salary")
        spend = await ledger.record_spend(household_owner, envelope_id, period, Decimal("20"), "Snacks")
        activity_storage.entries.clear()

        await ledger.update_income(income.id, amount=Decimal("550"))
        await ledger.update_spend(spend.id, envelope_id=uuid4())
        await ledger.delete_spend(spend.id)

        assert [e.action for e in activity_storage.entries] == [
            ActivityAction.INCOME_UPDATED,
            ActivityAction.EXPENSE_UPDATED,
            ActivityAction.EXPENSE_DELETED,
        ]
        assert activity_storage.entries[0].details["new_amount"] == 550.0
        assert "to_envelope_id" in activity_storage.entries[1].details

    async def test_personal_operations_are_not_persisted(self, ledger, activity_storage, owner, period):
        await ledger.add_income(owner, period, Decimal("500"), "Salary")
        assert activity_storage.entries == []

    async def test_rolled_back_allocation_records_nothing(
        self, ledger, memory_storage, activity_storage, household_owner, period
    ):
        """A concurrent drain between the pool check and the move rolls back cleanly."""
        await ledger.add_income(household_owner, period, Decimal("100"), "Salary")
        activity_storage.entries.clear()
        original = memory_storage.get_budget_period
        calls = {"n": 0}

        async def drained_after_check(owner, p):
            calls["n"] += 1
            row = await original(owner, p)
            if calls["n"] == 2:
                await memory_storage.set_available_pool(owner, p, Decimal("0"))
                row = await original(owner, p)
            return row

        memory_storage.get_budget_period = drained_after_check

        with pytest.raises(AdjustmentRolledBack):
            await ledger.allocate(household_owner, uuid4(), period, Decimal("60"))

        assert activity_storage.entries == []
