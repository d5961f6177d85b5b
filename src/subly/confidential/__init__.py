"""Confidential engine: sealed accrual state and its computation network."""

from subly.confidential.coordinator import AsyncComputationCoordinator, Marker
from subly.confidential.engine import ConfidentialLedgerEngine
from subly.confidential.network import LocalComputationNetwork
from subly.confidential.sealing import StateSealer

__all__ = [
    "AsyncComputationCoordinator",
    "ConfidentialLedgerEngine",
    "LocalComputationNetwork",
    "Marker",
    "StateSealer",
]
