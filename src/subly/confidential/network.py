"""In-process computation network for the confidential engine.

Holds the sealing key, runs circuits on background asyncio tasks and
delivers each result to its callback. A circuit error or undecryptable
input is reported as a failure output, never as an exception.
"""

from __future__ import annotations

import asyncio
import logging

from cryptography.exceptions import InvalidTag

from subly.confidential.circuits import (
    decode_ledger,
    decode_state,
    encode_ledger,
    encode_state,
    initialize_circuit,
    stake_circuit,
    unstake_circuit,
)
from subly.confidential.sealing import CONFIG_LABEL, StateSealer, stake_label
from subly.errors import SublyError
from subly.interfaces.network import ResultCallback
from subly.models.confidential import (
    Circuit,
    ComputationOutput,
    ComputationRequest,
    ComputationStatus,
    EncryptedState,
)
from subly.models.state import TrancheLedger

log = logging.getLogger(__name__)


class LocalComputationNetwork:
    """Runs circuits locally with AES-GCM sealed inputs and outputs."""

    def __init__(self, sealer: StateSealer, delay: float = 0.0) -> None:
        self._sealer = sealer
        self._delay = delay
        self._tasks: set[asyncio.Task] = set()
        self.callback_errors: list[SublyError] = []

    async def submit(self, request: ComputationRequest, callback: ResultCallback) -> None:
        task = asyncio.create_task(self._run(request, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("Queued %s request %d", request.circuit.value, request.request_id)

    async def drain(self) -> None:
        """Wait until every submitted request has been called back."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run(self, request: ComputationRequest, callback: ResultCallback) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        output = self.compute(request)
        try:
            await callback(request.request_id, output)
        except SublyError as exc:
            # The engine has already persisted the outcome; keep it for inspection.
            log.warning(
                "Callback for %s request %d rejected: %s",
                request.circuit.value, request.request_id, exc,
            )
            self.callback_errors.append(exc)

    # ── Computation ────────────────────────────────────────

    def compute(self, request: ComputationRequest) -> ComputationOutput:
        try:
            return self._compute(request)
        except (SublyError, InvalidTag, KeyError, TypeError, ValueError) as exc:
            log.warning(
                "Computation %s/%d failed: %s", request.circuit.value, request.request_id, exc,
            )
            return ComputationOutput.failure()

    def _compute(self, request: ComputationRequest) -> ComputationOutput:
        args = request.args
        if request.circuit is Circuit.INITIALIZE:
            state = initialize_circuit(int(args["now"]))
            return ComputationOutput(
                status=ComputationStatus.SUCCESS,
                config_state=self._sealer.seal(encode_state(state), CONFIG_LABEL),
            )

        if request.config_state is None:
            raise ValueError("config state required")
        state = decode_state(self._sealer.unseal(request.config_state, CONFIG_LABEL))
        ledger = self.open_ledger(request.stake_state, request.owner)
        now = int(args["now"])

        if request.circuit is Circuit.STAKE:
            state, ledger, _placed = stake_circuit(
                state, ledger, int(args["amount"]), int(args["lock_option"]), now,
            )
            revealed = {
                "entry_count": len(ledger.tranches),
                "next_tranche_id": ledger.next_tranche_id,
            }
        elif request.circuit is Circuit.UNSTAKE:
            state, ledger, withdrawn = unstake_circuit(
                state, ledger, int(args["tranche_id"]), now,
            )
            revealed = {"withdrawn": withdrawn, "entry_count": len(ledger.tranches)}
        else:
            raise ValueError(f"unknown circuit {request.circuit}")

        return ComputationOutput(
            status=ComputationStatus.SUCCESS,
            config_state=self._sealer.seal(encode_state(state), CONFIG_LABEL),
            stake_state=self._sealer.seal(encode_ledger(ledger), stake_label(request.owner)),
            revealed=revealed,
        )

    def open_ledger(self, sealed: EncryptedState | None, owner: str) -> TrancheLedger:
        """Owner-side view of a sealed tranche ledger (blank means empty)."""
        if sealed is None or sealed.blank:
            return TrancheLedger(owner=owner)
        return decode_ledger(self._sealer.unseal(sealed, stake_label(owner)))
