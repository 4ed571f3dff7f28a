"""
SQL Storage Implementation (SQLAlchemy, async)

DESIGN DECISION: The ledger lives in a relational database because the
pool, allocated and spent columns need guarded in-place updates:

    UPDATE envelope_allocations
       SET allocated = allocated + :delta
     WHERE envelope_id = :id AND period_key = :period
       AND allocated + :delta > -0.005

One statement, one row lock, no read-modify-write race. SQLite (aiosqlite)
is the default for development and tests; PostgreSQL (asyncpg) in
production. Both support INSERT ... ON CONFLICT DO NOTHING, which is how a
missing row is created before its first adjustment.

TRADEOFFS:
- SQLite keeps NUMERIC as floating point, so comparisons carry a
  half-cent tolerance and every value is rounded to cents on read.
- Tables are created with metadata.create_all; there are no migrations.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Uuid,
    delete,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from envelope_ledger.errors import ConcurrencyConflict
from envelope_ledger.models.activity import ActivityAction, ActivityEntry, ActivitySeverity
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
    SpendRecord,
)
from envelope_ledger.models.money import HALF_CENT, ZERO, round2
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.services.storage.interface import (
    ActivityStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger("envelope_ledger.storage")

MONEY = Numeric(14, 2)


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class OwnedMixin:
    owner_key: Mapped[str] = mapped_column(String(80), index=True)
    user_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    household_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)


class BudgetPeriodRow(Base):
    __tablename__ = "budget_periods"

    owner_key: Mapped[str] = mapped_column(String(80), primary_key=True)
    period_key: Mapped[str] = mapped_column(String(7), primary_key=True)
    user_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    household_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    available_pool: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)


class EnvelopeAllocationRow(OwnedMixin, Base):
    __tablename__ = "envelope_allocations"

    envelope_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    period_key: Mapped[str] = mapped_column(String(7), primary_key=True)
    allocated: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    spent: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)


class IncomeRow(OwnedMixin, Base):
    __tablename__ = "incomes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    period_key: Mapped[str] = mapped_column(String(7), index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    description: Mapped[str] = mapped_column(String(200))
    received_on: Mapped[date] = mapped_column(Date)


class TransactionRow(OwnedMixin, Base):
    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    envelope_id: Mapped[UUID] = mapped_column(Uuid, index=True)
    period_key: Mapped[str] = mapped_column(String(7), index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    description: Mapped[str] = mapped_column(String(200))
    merchant: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    spent_on: Mapped[date] = mapped_column(Date)
    recurring_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)


class RecurringObligationRow(OwnedMixin, Base):
    __tablename__ = "recurring_obligations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    envelope_id: Mapped[UUID] = mapped_column(Uuid)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    description: Mapped[str] = mapped_column(String(200))
    merchant: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    frequency: Mapped[str] = mapped_column(String(20))
    next_due_date: Mapped[date] = mapped_column(Date, index=True)
    anchor_day: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class SavingsGoalRow(OwnedMixin, Base):
    __tablename__ = "savings_goals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    envelope_id: Mapped[UUID] = mapped_column(Uuid)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    target_amount: Mapped[Decimal] = mapped_column(MONEY)
    monthly_contribution: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    contribution_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    priority: Mapped[str] = mapped_column(String(20))
    auto_contribute: Mapped[bool] = mapped_column(Boolean, default=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    current_amount: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)


class AutoAllocationHistoryRow(OwnedMixin, Base):
    __tablename__ = "auto_allocation_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    period_key: Mapped[str] = mapped_column(String(7), index=True)
    goal_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    goal_name: Mapped[str] = mapped_column(String(200))
    envelope_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    priority: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20))
    error_message: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    # Set only on SUCCESS rows; NULLs do not collide
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, unique=True)


class ActivityLogRow(Base):
    __tablename__ = "activity_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    household_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    user_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(40))
    severity: Mapped[str] = mapped_column(String(20))
    entity_type: Mapped[str] = mapped_column(String(40))
    entity_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _owner_columns(owner: Owner) -> dict:
    return {
        "owner_key": owner.key,
        "user_id": owner.user_id,
        "household_id": owner.household_id,
    }


def _owner(row) -> Owner:
    return Owner(user_id=row.user_id, household_id=row.household_id)


def _money(value: Optional[Decimal]) -> Decimal:
    return round2(value) if value is not None else ZERO


def _scope_filter(model, scope: OwnerScope) -> list:
    if scope.household_id is not None:
        return [model.household_id == scope.household_id]
    if scope.user_id is not None:
        return [model.household_id.is_(None), model.user_id == scope.user_id]
    return []


def _period_from_row(row: BudgetPeriodRow) -> BudgetPeriod:
    return BudgetPeriod(
        owner=_owner(row),
        period=PeriodKey.parse(row.period_key),
        available_pool=_money(row.available_pool),
    )


def _allocation_from_row(row: EnvelopeAllocationRow) -> EnvelopeAllocation:
    return EnvelopeAllocation(
        owner=_owner(row),
        envelope_id=row.envelope_id,
        period=PeriodKey.parse(row.period_key),
        allocated=max(_money(row.allocated), ZERO),
        spent=max(_money(row.spent), ZERO),
    )


def _income_from_row(row: IncomeRow) -> Income:
    return Income(
        id=row.id,
        owner=_owner(row),
        period=PeriodKey.parse(row.period_key),
        amount=_money(row.amount),
        description=row.description,
        received_on=row.received_on,
    )


def _spend_from_row(row: TransactionRow) -> SpendRecord:
    return SpendRecord(
        id=row.id,
        owner=_owner(row),
        envelope_id=row.envelope_id,
        period=PeriodKey.parse(row.period_key),
        amount=_money(row.amount),
        description=row.description,
        merchant=row.merchant,
        spent_on=row.spent_on,
        recurring_id=row.recurring_id,
    )


def _recurring_from_row(row: RecurringObligationRow) -> RecurringObligation:
    return RecurringObligation(
        id=row.id,
        owner=_owner(row),
        envelope_id=row.envelope_id,
        amount=_money(row.amount),
        description=row.description,
        merchant=row.merchant,
        frequency=Frequency(row.frequency),
        next_due_date=row.next_due_date,
        anchor_day=row.anchor_day,
        is_active=row.is_active,
    )


def _goal_from_row(row: SavingsGoalRow) -> SavingsGoal:
    return SavingsGoal(
        id=row.id,
        owner=_owner(row),
        envelope_id=row.envelope_id,
        name=row.name,
        target_amount=_money(row.target_amount),
        monthly_contribution=_money(row.monthly_contribution) if row.monthly_contribution is not None else None,
        contribution_percentage=round2(row.contribution_percentage) if row.contribution_percentage is not None else None,
        priority=GoalPriority(row.priority),
        auto_contribute=row.auto_contribute,
        is_paused=row.is_paused,
        current_amount=_money(row.current_amount),
    )


def _history_from_row(row: AutoAllocationHistoryRow) -> AutoAllocationHistoryEntry:
    return AutoAllocationHistoryEntry(
        id=row.id,
        owner=_owner(row),
        period=PeriodKey.parse(row.period_key),
        goal_id=row.goal_id,
        goal_name=row.goal_name,
        envelope_id=row.envelope_id,
        amount=_money(row.amount),
        priority=GoalPriority(row.priority),
        status=HistoryStatus(row.status),
        error_message=row.error_message,
        created_at=row.created_at,
    )


def _activity_from_row(row: ActivityLogRow) -> ActivityEntry:
    return ActivityEntry(
        id=row.id,
        created_at=row.created_at,
        household_id=row.household_id,
        user_id=row.user_id,
        action=ActivityAction(row.action),
        severity=ActivitySeverity(row.severity),
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        details=row.details or {},
    )



# =============================================================================
# LEDGER STORE
# =============================================================================

class SqlLedgerStorage(LedgerStorageInterface):
    """
    SQLAlchemy implementation of the ledger store.

    Every public method runs in its own session. Database failures never
    leave this class as SQLAlchemy exceptions: unique-key violations become
    DuplicateError and everything else becomes StorageError.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 0,
    ):
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        self._engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        dialect = self._engine.dialect.name
        if dialect == "sqlite":
            self._insert = sqlite.insert
        elif dialect == "postgresql":
            self._insert = postgresql.insert
        else:
            raise StorageError(
                f"Unsupported database dialect '{dialect}'; use sqlite or postgresql"
            )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session_scope(self, write: bool = False) -> AsyncIterator[AsyncSession]:
        """
        Open a session, mapping database errors onto the storage errors.

        Args:
            write: Run the block in a transaction committed on exit

        Raises:
            DuplicateError: On a unique or primary key violation
            StorageError: On any other database failure
        """
        try:
            async with self._session_factory() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except IntegrityError as e:
            raise DuplicateError(f"Duplicate row: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error("ledger_database_error", error=str(e))
            raise StorageError(f"Ledger database error: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    async def _create_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def initialize(self) -> None:
        try:
            await self._create_tables()
        except OperationalError as e:
            raise ConnectionError(f"Failed to initialise ledger database: {e}")
        logger.info("ledger_storage_ready", dialect=self._engine.dialect.name)

    async def close(self) -> None:
        await self._engine.dispose()

    # -------------------------------------------------------------------------
    # Guarded adjustment
    # -------------------------------------------------------------------------

    async def _guarded_adjust(
        self,
        model,
        key_filter: list,
        seed: dict,
        column: str,
        delta: Decimal,
    ):
        """
        Create the row if missing, then apply `column += delta` in one
        guarded UPDATE. Returns the updated ORM row.
        """
        target = getattr(model, column)
        async with self.session_scope(write=True) as session:
            await session.execute(
                self._insert(model)
                .values(**seed)
                .on_conflict_do_nothing(
                    index_elements=[c.name for c in model.__table__.primary_key.columns]
                )
            )
            result = await session.execute(
                update(model)
                .where(*key_filter, target + delta > -HALF_CENT)
                .values({column: target + delta})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflict(
                    f"Guarded update of {model.__tablename__}.{column} refused "
                    f"for delta {delta}",
                    column=column,
                    delta=delta,
                )
            row = (await session.execute(select(model).where(*key_filter))).scalar_one()
        return row

    # -------------------------------------------------------------------------
    # Budget periods
    # -------------------------------------------------------------------------

    async def get_budget_period(self, owner, period):
        async with self.session_scope() as session:
            row = await session.get(BudgetPeriodRow, (owner.key, period.key))
            return _period_from_row(row) if row else None

    async def adjust_available_pool(self, owner, period, delta):
        row = await self._guarded_adjust(
            BudgetPeriodRow,
            [BudgetPeriodRow.owner_key == owner.key, BudgetPeriodRow.period_key == period.key],
            {**_owner_columns(owner), "period_key": period.key, "available_pool": ZERO},
            "available_pool",
            delta,
        )
        return _period_from_row(row)

    async def set_available_pool(self, owner, period, value):
        async with self.session_scope(write=True) as session:
            row = await session.get(BudgetPeriodRow, (owner.key, period.key))
            if row is None:
                row = BudgetPeriodRow(
                    owner_key=owner.key,
                    period_key=period.key,
                    user_id=owner.user_id,
                    household_id=owner.household_id,
                    available_pool=round2(value),
                )
                session.add(row)
            else:
                row.available_pool = round2(value)
        return _period_from_row(row)

    # -------------------------------------------------------------------------
    # Envelope allocations
    # -------------------------------------------------------------------------

    async def get_allocation(self, envelope_id, period):
        async with self.session_scope() as session:
            row = await session.get(EnvelopeAllocationRow, (envelope_id, period.key))
            return _allocation_from_row(row) if row else None

    async def list_allocations(self, owner, period):
        async with self.session_scope() as session:
            rows = await session.scalars(
                select(EnvelopeAllocationRow).where(
                    EnvelopeAllocationRow.owner_key == owner.key,
                    EnvelopeAllocationRow.period_key == period.key,
                )
            )
            return [_allocation_from_row(row) for row in rows]

    async def list_envelope_allocations(self, envelope_id):
        async with self.session_scope() as session:
            rows = await session.scalars(
                select(EnvelopeAllocationRow)
                .where(EnvelopeAllocationRow.envelope_id == envelope_id)
                .order_by(EnvelopeAllocationRow.period_key)
            )
            return [_allocation_from_row(row) for row in rows]

    async def _adjust_allocation_column(self, owner, envelope_id, period, column, delta):
        row = await self._guarded_adjust(
            EnvelopeAllocationRow,
            [
                EnvelopeAllocationRow.envelope_id == envelope_id,
                EnvelopeAllocationRow.period_key == period.key,
            ],
            {
                **_owner_columns(owner),
                "envelope_id": envelope_id,
                "period_key": period.key,
                "allocated": ZERO,
                "spent": ZERO,
            },
            column,
            delta,
        )
        return _allocation_from_row(row)

    async def adjust_envelope_allocated(self, owner, envelope_id, period, delta):
        return await self._adjust_allocation_column(owner, envelope_id, period, "allocated", delta)

    async def adjust_envelope_spent(self, owner, envelope_id, period, delta):
        return await self._adjust_allocation_column(owner, envelope_id, period, "spent", delta)

    # -------------------------------------------------------------------------
    # Income and spend records
    # -------------------------------------------------------------------------

    async def _add(self, row) -> None:
        async with self.session_scope(write=True) as session:
            session.add(row)

    async def _delete(self, model, entity_id: UUID) -> bool:
        async with self.session_scope(write=True) as session:
            result = await session.execute(
                delete(model)
                .where(model.id == entity_id)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    async def add_income(self, income):
        await self._add(IncomeRow(
            id=income.id,
            **_owner_columns(income.owner),
            period_key=income.period.key,
            amount=income.amount,
            description=income.description,
            received_on=income.received_on,
        ))
        return income

    async def get_income(self, income_id):
        async with self.session_scope() as session:
            row = await session.get(IncomeRow, income_id)
            return _income_from_row(row) if row else None

    async def update_income(self, income):
        async with self.session_scope(write=True) as session:
            row = await session.get(IncomeRow, income.id)
            if row is None:
                raise NotFoundError(f"Income not found: {income.id}")
            row.amount = income.amount
            row.description = income.description
            row.received_on = income.received_on
        return income

    async def delete_income(self, income_id):
        return await self._delete(IncomeRow, income_id)

    async def list_incomes(self, owner, period):
        async with self.session_scope() as session:
            rows = await session.scalars(
                select(IncomeRow).where(
                    IncomeRow.owner_key == owner.key,
                    IncomeRow.period_key == period.key,
                )
            )
            return [_income_from_row(row) for row in rows]

    async def add_spend(self, spend):
        await self._add(TransactionRow(
            id=spend.id,
            **_owner_columns(spend.owner),
            envelope_id=spend.envelope_id,
            period_key=spend.period.key,
            amount=spend.amount,
            description=spend.description,
            merchant=spend.merchant,
            spent_on=spend.spent_on,
            recurring_id=spend.recurring_id,
        ))
        return spend

    async def get_spend(self, spend_id):
        async with self.session_scope() as session:
            row = await session.get(TransactionRow, spend_id)
            return _spend_from_row(row) if row else None

    async def update_spend(self, spend):
        async with self.session_scope(write=True) as session:
            row = await session.get(TransactionRow, spend.id)
            if row is None:
                raise NotFoundError(f"Spend not found: {spend.id}")
            row.envelope_id = spend.envelope_id
            row.amount = spend.amount
            row.description = spend.description
            row.merchant = spend.merchant
            row.spent_on = spend.spent_on
        return spend

    async def delete_spend(self, spend_id):
        return await self._delete(TransactionRow, spend_id)

    async def list_spends(self, envelope_id, period=None):
        query = select(TransactionRow).where(TransactionRow.envelope_id == envelope_id)
        if period is not None:
            query = query.where(TransactionRow.period_key == period.key)
        async with self.session_scope() as session:
            rows = await session.scalars(query.order_by(TransactionRow.spent_on))
            return [_spend_from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Recurring obligations
    # -------------------------------------------------------------------------

    async def save_recurring(self, obligation):
        async with self.session_scope(write=True) as session:
            await session.merge(RecurringObligationRow(
                id=obligation.id,
                **_owner_columns(obligation.owner),
                envelope_id=obligation.envelope_id,
                amount=obligation.amount,
                description=obligation.description,
                merchant=obligation.merchant,
                frequency=obligation.frequency.value,
                next_due_date=obligation.next_due_date,
                anchor_day=obligation.anchor_day,
                is_active=obligation.is_active,
            ))
        return obligation

    async def get_recurring(self, recurring_id):
        async with self.session_scope() as session:
            row = await session.get(RecurringObligationRow, recurring_id)
            return _recurring_from_row(row) if row else None

    async def list_due_recurring(self, scope, today):
        async with self.session_scope() as session:
            rows = await session.scalars(
                select(RecurringObligationRow)
                .where(
                    RecurringObligationRow.is_active.is_(True),
                    RecurringObligationRow.next_due_date <= today,
                    *_scope_filter(RecurringObligationRow, scope),
                )
                .order_by(RecurringObligationRow.next_due_date)
            )
            return [_recurring_from_row(row) for row in rows]

    async def advance_recurring_due_date(self, recurring_id, expected, new_due_date):
        async with self.session_scope(write=True) as session:
            result = await session.execute(
                update(RecurringObligationRow)
                .where(
                    RecurringObligationRow.id == recurring_id,
                    RecurringObligationRow.next_due_date == expected,
                )
                .values(next_due_date=new_due_date)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    # -------------------------------------------------------------------------
    # Savings goals and history
    # -------------------------------------------------------------------------

    async def save_goal(self, goal):
        async with self.session_scope(write=True) as session:
            await session.merge(SavingsGoalRow(
                id=goal.id,
                **_owner_columns(goal.owner),
                envelope_id=goal.envelope_id,
                name=goal.name,
                target_amount=goal.target_amount,
                monthly_contribution=goal.monthly_contribution,
                contribution_percentage=goal.contribution_percentage,
                priority=goal.priority.value,
                auto_contribute=goal.auto_contribute,
                is_paused=goal.is_paused,
                current_amount=goal.current_amount,
            ))
        return goal

    async def list_auto_contribute_goals(self, scope):
        async with self.session_scope() as session:
            rows = await session.scalars(
                select(SavingsGoalRow).where(
                    SavingsGoalRow.auto_contribute.is_(True),
                    SavingsGoalRow.is_paused.is_(False),
                    *_scope_filter(SavingsGoalRow, scope),
                )
            )
            return [_goal_from_row(row) for row in rows]

    async def append_history(self, entry):
        await self._add(AutoAllocationHistoryRow(
            id=entry.id,
            **_owner_columns(entry.owner),
            period_key=entry.period.key,
            goal_id=entry.goal_id,
            goal_name=entry.goal_name,
            envelope_id=entry.envelope_id,
            amount=entry.amount,
            priority=entry.priority.value,
            status=entry.status.value,
            error_message=entry.error_message,
            created_at=entry.created_at,
            idempotency_key=entry.idempotency_key,
        ))
        return entry

    async def has_successful_contribution(self, envelope_id, period):
        async with self.session_scope() as session:
            found = await session.scalar(
                select(AutoAllocationHistoryRow.id)
                .where(
                    AutoAllocationHistoryRow.envelope_id == envelope_id,
                    AutoAllocationHistoryRow.period_key == period.key,
                    AutoAllocationHistoryRow.status == HistoryStatus.SUCCESS.value,
                )
                .limit(1)
            )
            return found is not None

    async def list_history(self, owner, period=None):
        query = select(AutoAllocationHistoryRow).where(
            AutoAllocationHistoryRow.owner_key == owner.key
        )
        if period is not None:
            query = query.where(AutoAllocationHistoryRow.period_key == period.key)
        async with self.session_scope() as session:
            rows = await session.scalars(query.order_by(AutoAllocationHistoryRow.created_at))
            return [_history_from_row(row) for row in rows]


class SqlActivityStorage(ActivityStorageInterface):
    """Activity log table sharing the ledger store's engine."""

    def __init__(self, ledger_storage: SqlLedgerStorage):
        self._ledger_storage = ledger_storage

    async def append_activity(self, entry: ActivityEntry) -> bool:
        async with self._ledger_storage.session_scope(write=True) as session:
            session.add(ActivityLogRow(
                id=entry.id,
                created_at=entry.created_at,
                household_id=entry.household_id,
                user_id=entry.user_id,
                action=entry.action.value,
                severity=entry.severity.value,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                details=entry.details,
            ))
        return True

    async def list_activity(self, household_id: UUID, limit: int = 100) -> list[ActivityEntry]:
        async with self._ledger_storage.session_scope() as session:
            rows = await session.scalars(
                select(ActivityLogRow)
                .where(ActivityLogRow.household_id == household_id)
                .order_by(ActivityLogRow.created_at.desc())
                .limit(limit)
            )
            return [_activity_from_row(row) for row in rows]
