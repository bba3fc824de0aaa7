"""
Audit Logger

DESIGN DECISION: Every balance movement and every status change is logged.
This provides:
1. Traceability: which transaction moved which balance, and when
2. Debugging capability when an account total looks wrong
3. A history users can be shown

The audit logger:
- Always logs locally through structlog
- Persists to an audit store when one is configured
- Gracefully handles store failures (a failed audit write never undoes a
  committed ledger operation)
"""

import logging
import sys
from typing import Optional

import structlog

from balance_keeper.models.audit import AuditEvent, AuditSeverity
from balance_keeper.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of the standard library logger.

    Called once at import with defaults, and again by the service factory
    with the configured level and renderer.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    logging.getLogger().setLevel(log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
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


configure_logging()


_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
}


class AuditLogger:
    """
    Writes ledger audit events to the local log and, when a store is
    attached, to the audit store.

    Events arrive after their unit of work has committed (or as a single
    operation_failed event after a rollback), so nothing logged here can
    describe a change that did not happen.
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("balance_keeper.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when the audit store rejected the event; the
        ledger operation behind it stays committed either way.
        """
        emit = getattr(self._logger, _LEVELS.get(event.severity, "info"))
        emit(event.event_type.value, **event.to_log_dict())

        if self._storage is None:
            return True

        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_store_write_failed",
                event_id=str(event.event_id),
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def log_all(self, events: list[AuditEvent]) -> int:
        """Record a committed unit's events in order. Returns how many were stored."""
        stored = 0
        for event in events:
            if await self.log(event):
                stored += 1
        return stored
