"""
Envelope Ledger - Source Package

The ledger and scheduled contribution engine behind an envelope-budgeting
app: income flows into a per-period pool, the pool is split into envelopes,
spends draw envelopes down, and scheduled runs apply recurring bills and
savings contributions.

DESIGN PRINCIPLES:
1. Every balance change is one guarded, atomic delta
2. Fail early, fail visibly
3. No silent corrections (the integrity checker reports before it repairs)
4. Scheduled runs are idempotent
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Envelope Ledger Team"
