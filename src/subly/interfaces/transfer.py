"""ValueTransfer protocol - moves fungible value between balances."""

from __future__ import annotations

from typing import Protocol


class ValueTransfer(Protocol):
    """Atomic transfer service invoked alongside ledger updates."""

    async def transfer(self, asset: str, source: str, destination: str, amount: int) -> None:
        """Move `amount` of `asset`. Raises on insufficient funds or failure."""
        ...

    async def get_balance(self, account: str, asset: str) -> int:
        ...
