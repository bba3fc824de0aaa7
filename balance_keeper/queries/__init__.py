"""Query execution package."""

from balance_keeper.queries.executor import LedgerQueryExecutor

__all__ = ["LedgerQueryExecutor"]
