"""Persistence backends."""

from subly.storage.sqlite import SQLiteLedgerStore

__all__ = ["SQLiteLedgerStore"]
