"""Shared fixtures for the envelope ledger tests."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from envelope_ledger.audit import ActivityRecorder
from envelope_ledger.config import LedgerSettings
from envelope_ledger.ledger import AtomicAdjuster, BudgetLedger
from envelope_ledger.models.ledger import Owner
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.orchestrator import create_app_components
from envelope_ledger.services.storage import (
    InMemoryActivityStorage,
    InMemoryLedgerStorage,
    SqlLedgerStorage,
)


@pytest.fixture
def memory_storage():
    return InMemoryLedgerStorage()


@pytest.fixture
async def sqlite_storage(tmp_path):
    storage = SqlLedgerStorage(f"sqlite+aiosqlite:///{tmp_path}/ledger.db")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture(params=["memory", "sqlite"])
async def storage(request, tmp_path):
    """Every backend that implements the ledger store contract."""
    if request.param == "memory":
        yield InMemoryLedgerStorage()
        return
    sql = SqlLedgerStorage(f"sqlite+aiosqlite:///{tmp_path}/ledger.db")
    await sql.initialize()
    yield sql
    await sql.close()


@pytest.fixture
def activity_storage():
    return InMemoryActivityStorage()


@pytest.fixture
def recorder(activity_storage):
    return ActivityRecorder(activity_storage)


@pytest.fixture
def owner():
    """A personal budget."""
    return Owner(user_id=uuid4())


@pytest.fixture
def household_owner():
    return Owner(user_id=uuid4(), household_id=uuid4())


@pytest.fixture
def period():
    return PeriodKey(year=2024, month=3)


@pytest.fixture
def adjuster(memory_storage):
    return AtomicAdjuster(memory_storage)


@pytest.fixture
def ledger(memory_storage, recorder):
    return BudgetLedger(memory_storage, recorder=recorder)


@pytest.fixture
def components(memory_storage, activity_storage):
    settings = LedgerSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        activity_sink="none",
    )
    return create_app_components(
        settings=settings,
        storage=memory_storage,
        activity_storage=activity_storage,
    )


@pytest.fixture
def fund(ledger):
    """Add an income of `amount` to the pool."""
    async def _fund(owner: Owner, period: PeriodKey, amount: str):
        return await ledger.add_income(owner, period, Decimal(amount), "Salary")
    return _fund


@pytest.fixture
def refuse_statements(sqlite_storage):
    """
    Make the SQLite store fail like a locked database.

    refuse_statements(prefix, *values) fails every statement that starts
    with `prefix` and is bound to all of `values`.
    """
    def _refuse(prefix: str, *values):
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            bound = parameters.values() if isinstance(parameters, dict) else parameters
            if statement.startswith(prefix) and all(v in bound for v in values):
                raise OperationalError(statement, parameters, Exception("database is locked"))

        event.listen(sqlite_storage.engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    return _refuse
