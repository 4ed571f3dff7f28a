"""
Activity Recorder

DESIGN DECISION: Every mutating ledger operation is logged.
This provides:
1. A household feed members can follow
2. Debugging capability for the scheduled runs
3. Traceability when the integrity checker corrects a pool

The recorder:
- Always logs locally through structlog
- Persists household entries to the configured sink
- Gracefully handles sink failures (a ledger operation never fails
  because the activity log could not be written)
"""

import logging
import sys
from typing import Optional

import structlog

from envelope_ledger.models.activity import ActivityEntry, ActivitySeverity
from envelope_ledger.services.storage import ActivityStorageInterface


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure stdlib logging and the structlog processor chain.

    Called once at application startup.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ActivityRecorder:
    """
    Central activity logging service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The activity sink (for the household feed)
    """

    def __init__(
        self,
        storage: Optional[ActivityStorageInterface] = None,
    ):
        """
        Args:
            storage: Sink for household entries.
                     If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("envelope_ledger.activity")

    async def record(self, entry: ActivityEntry) -> bool:
        """
        Record an activity entry.

        Returns True if the sink write succeeded (or nothing needed
        persisting).
        """
        log_dict = entry.to_log_dict()

        if entry.severity == ActivitySeverity.ERROR:
            self._logger.error("activity", **log_dict)
        elif entry.severity == ActivitySeverity.WARNING:
            self._logger.warning("activity", **log_dict)
        else:
            self._logger.info("activity", **log_dict)

        # Personal budgets have no shared feed
        if self._storage is None or not entry.is_household:
            return True

        try:
            return await self._storage.append_activity(entry)
        except Exception as e:
            self._logger.error(
                "activity_storage_failed",
                error=str(e),
                activity_id=str(entry.id),
            )
            return False
