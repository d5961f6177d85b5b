"""Ledger engines."""

from subly.engine.plaintext import LedgerEngine

__all__ = ["LedgerEngine"]
