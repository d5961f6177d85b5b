"""PayoutExecutor protocol - pays subscription providers for due items."""

from __future__ import annotations

from typing import Protocol

from subly.models.records import DueItem, PayoutResult


class PayoutExecutor(Protocol):
    """Sends one payout per due subscription item."""

    async def send_payout(self, item: DueItem) -> PayoutResult:
        """Pay the item's receiver. Never raises; failures are in the result."""
        ...

    async def close(self) -> None:
        ...
