"""Ledger package: atomic adjustments, integrity checks and user-facing operations."""

from envelope_ledger.ledger.adjustments import AtomicAdjuster
from envelope_ledger.ledger.integrity import IntegrityChecker
from envelope_ledger.ledger.service import BudgetLedger

__all__ = ["AtomicAdjuster", "BudgetLedger", "IntegrityChecker"]
