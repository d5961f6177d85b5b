"""ComputationNetwork protocol - runs circuits over encrypted state."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from subly.models.confidential import ComputationOutput, ComputationRequest

ResultCallback = Callable[[int, ComputationOutput], Awaitable[None]]


class ComputationNetwork(Protocol):
    """External network that computes on sealed state and calls back later.

    A submitted request may be answered after an unbounded delay, or never.
    """

    async def submit(self, request: ComputationRequest, callback: ResultCallback) -> None:
        """Queue `request`; `callback(request_id, output)` fires on completion."""
        ...
