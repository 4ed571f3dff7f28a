"""
Main Orchestrator for the Envelope Ledger

This module ties together all the components: one storage handle, one
activity recorder, and the ledger services built on top of them.

DESIGN DECISION: Nothing here is a process-wide singleton. The storage
handle is constructed explicitly and injected into every component, so
tests (and the HTTP app) can swap in an in-memory store.

Flows exposed to the outside world:
1. Recurring run (due obligations -> spends)
2. Savings run (pool -> savings envelopes, by priority)
3. Integrity check / fix (recompute the pool from source rows)
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from envelope_ledger.audit import ActivityRecorder
from envelope_ledger.config import LedgerSettings, get_settings
from envelope_ledger.ledger import AtomicAdjuster, BudgetLedger, IntegrityChecker
from envelope_ledger.scheduling import RecurringScheduler, SavingsContributionEngine
from envelope_ledger.services.storage import (
    ActivityStorageInterface,
    GoogleSheetsActivityStorage,
    LedgerStorageInterface,
    SqlActivityStorage,
    SqlLedgerStorage,
)


logger = structlog.get_logger(__name__)


@dataclass
class LedgerComponents:
    """Everything one running process needs, sharing one storage handle."""

    storage: LedgerStorageInterface
    recorder: ActivityRecorder
    adjuster: AtomicAdjuster
    ledger: BudgetLedger
    integrity: IntegrityChecker
    recurring: RecurringScheduler
    savings: SavingsContributionEngine

    async def startup(self) -> None:
        await self.storage.initialize()

    async def shutdown(self) -> None:
        await self.storage.close()


def _activity_storage(
    settings: LedgerSettings,
    storage: LedgerStorageInterface,
) -> Optional[ActivityStorageInterface]:
    if settings.activity_sink == "none":
        return None
    if settings.activity_sink == "google_sheets":
        try:
            return GoogleSheetsActivityStorage()
        except Exception as e:
            # Sheets not configured - continue with local-only logging
            logger.warning("activity_sink_unavailable", sink="google_sheets", error=str(e))
            return None
    if isinstance(storage, SqlLedgerStorage):
        return SqlActivityStorage(storage)
    return None


def create_app_components(
    settings: Optional[LedgerSettings] = None,
    storage: Optional[LedgerStorageInterface] = None,
    activity_storage: Optional[ActivityStorageInterface] = None,
) -> LedgerComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Ledger settings; loaded from the environment if None.
        storage: Ledger store. A SqlLedgerStorage for settings.database_url
                 is created if None.
        activity_storage: Activity sink. Chosen from settings.activity_sink
                          if None.
    """
    settings = settings or get_settings().ledger

    if storage is None:
        storage = SqlLedgerStorage(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.pool_size,
        )
    if activity_storage is None:
        activity_storage = _activity_storage(settings, storage)

    recorder = ActivityRecorder(activity_storage)
    adjuster = AtomicAdjuster(storage)
    ledger = BudgetLedger(
        storage,
        adjuster=adjuster,
        recorder=recorder,
        block_overspend=settings.block_overspend,
    )

    return LedgerComponents(
        storage=storage,
        recorder=recorder,
        adjuster=adjuster,
        ledger=ledger,
        integrity=IntegrityChecker(storage, recorder, epsilon=settings.integrity_epsilon),
        recurring=RecurringScheduler(
            storage,
            ledger,
            max_catch_up_occurrences=settings.max_catch_up_occurrences,
        ),
        savings=SavingsContributionEngine(storage, adjuster, recorder),
    )
