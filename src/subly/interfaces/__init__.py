"""Protocol interfaces for the ledger's external collaborators."""

from subly.interfaces.network import ComputationNetwork, ResultCallback
from subly.interfaces.payout import PayoutExecutor
from subly.interfaces.store import LedgerStore
from subly.interfaces.transfer import ValueTransfer

__all__ = [
    "ComputationNetwork", "ResultCallback",
    "PayoutExecutor",
    "LedgerStore",
    "ValueTransfer",
]
