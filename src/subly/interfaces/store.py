"""LedgerStore protocol - capacity-aware persistence for ledger records."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from subly.models.confidential import (
    ComputationRecord,
    ConfidentialConfigRecord,
    ConfidentialStakeRecord,
)
from subly.models.events import LedgerEvent
from subly.models.state import (
    AccrualIndexState,
    ServiceCatalog,
    SubscriberLedger,
    TrancheLedger,
)


class LedgerStore(Protocol):
    """Persists ledger records and funds growth of variable-length lists."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """All-or-nothing unit of work spanning records and balances."""
        ...

    # ── Records ────────────────────────────────────────────

    async def get_state(self) -> AccrualIndexState | None:
        ...

    async def save_state(self, state: AccrualIndexState) -> None:
        ...

    async def get_tranche_ledger(self, owner: str) -> TrancheLedger | None:
        ...

    async def save_tranche_ledger(self, ledger: TrancheLedger) -> None:
        ...

    async def get_catalog(self) -> ServiceCatalog:
        ...

    async def save_catalog(self, catalog: ServiceCatalog) -> None:
        ...

    async def get_subscriber_ledger(self, owner: str) -> SubscriberLedger | None:
        ...

    async def get_subscriber_ledgers(self, owners: list[str]) -> list[SubscriberLedger]:
        ...

    async def save_subscriber_ledger(self, ledger: SubscriberLedger) -> None:
        ...

    async def list_subscribers(self, offset: int = 0, limit: int = -1) -> list[str]:
        ...

    # ── Capacity ───────────────────────────────────────────

    async def ensure_capacity(
        self, payer: str, current: int, needed: int, record_bytes: int,
    ) -> int:
        """Fund growth to `needed` slots from `payer`; return new capacity."""
        ...

    # ── Confidential records ───────────────────────────────

    async def get_confidential_config(self) -> ConfidentialConfigRecord | None:
        ...

    async def save_confidential_config(self, record: ConfidentialConfigRecord) -> None:
        ...

    async def get_confidential_stake(self, owner: str) -> ConfidentialStakeRecord | None:
        ...

    async def save_confidential_stake(self, record: ConfidentialStakeRecord) -> None:
        ...

    async def save_computation(self, record: ComputationRecord) -> None:
        ...

    async def get_computation(self, request_id: int) -> ComputationRecord | None:
        ...

    # ── Activity ───────────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        owner: str | None = None,
        amount: int | None = None,
        payload: dict | None = None,
    ) -> None:
        ...

    async def record_event(self, event: LedgerEvent, message: str | None = None) -> None:
        ...
