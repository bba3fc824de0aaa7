"""Audit logging package."""

from balance_keeper.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
