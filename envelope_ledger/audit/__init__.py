"""Activity logging package."""

from envelope_ledger.audit.logger import ActivityRecorder, configure_logging

__all__ = ["ActivityRecorder", "configure_logging"]
