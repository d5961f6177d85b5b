"""Confidential ledger engine - opaque-handle mirror of the staking flow.

Global and per-owner accrual state live only as sealed blobs. Every
mutation is split into an enqueue (validate, escrow, mark Pending, submit)
and a callback (match, clear, validate, apply). Clearing the markers is
persisted even when the result is then rejected, so a fresh request can
be retried.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from subly.confidential.coordinator import AsyncComputationCoordinator, Marker
from subly.constants import DEFAULT_LOCK_INDEX, STAKE_ASSET, VAULT_ACCOUNT
from subly.core.accrual import lock_duration
from subly.errors import ComputationAborted, ErrorCode, IntegrityError, SublyError, ValidationError
from subly.interfaces.network import ComputationNetwork
from subly.interfaces.store import LedgerStore
from subly.interfaces.transfer import ValueTransfer
from subly.models.confidential import (
    Circuit,
    ComputationOutput,
    ComputationRecord,
    ComputationRequest,
    ConfidentialConfigRecord,
    ConfidentialStakeRecord,
)
from subly.models.events import ComputationFinalized, ComputationQueued

log = logging.getLogger(__name__)


def _outcome(exc: SublyError | None) -> str:
    if exc is None:
        return "applied"
    if isinstance(exc, ComputationAborted):
        return "aborted"
    return "rejected"


class ConfidentialLedgerEngine:
    """Stake/unstake over encrypted state via an external ComputationNetwork."""

    def __init__(
        self,
        store: LedgerStore,
        network: ComputationNetwork,
        transfer: ValueTransfer | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._network = network
        self._transfer: ValueTransfer = transfer if transfer is not None else store  # type: ignore[assignment]
        self._clock = clock or (lambda: int(time.time()))
        self._coordinator = AsyncComputationCoordinator()
        self._lock = asyncio.Lock()

    @property
    def store(self) -> LedgerStore:
        return self._store

    @asynccontextmanager
    async def _mutation(self) -> AsyncIterator[None]:
        async with self._lock:
            async with self._store.transaction():
                yield

    async def _ready_config(self) -> ConfidentialConfigRecord:
        config = await self._store.get_confidential_config()
        if config is None or not config.initialized:
            raise ValidationError(ErrorCode.NOT_INITIALIZED)
        if config.paused:
            raise ValidationError(ErrorCode.PROGRAM_PAUSED)
        return config

    async def _queue(self, record: ComputationRecord, request: ComputationRequest) -> None:
        await self._store.save_computation(record)
        await self._store.record_event(
            ComputationQueued(
                owner=record.owner,
                timestamp=int(request.args.get("now", 0)),
                request_id=record.request_id,
                circuit=record.circuit.value,
            )
        )

    async def _finalize(
        self,
        record: ComputationRecord,
        error: SublyError | None,
        now: int,
        outcome: str | None = None,
    ) -> None:
        record.outcome = outcome or _outcome(error)
        await self._store.save_computation(record)
        await self._store.record_event(
            ComputationFinalized(
                owner=record.owner,
                timestamp=now,
                request_id=record.request_id,
                circuit=record.circuit.value,
                outcome=record.outcome,
            )
        )
        if error is None:
            log.info("%s request %d applied", record.circuit.value, record.request_id)
        else:
            log.warning(
                "%s request %d %s: %s", record.circuit.value, record.request_id, record.outcome, error,
            )

    async def _refund(self, record: ComputationRecord) -> bool:
        """Return a stake's escrow to its owner. False when the transfer fails.

        A failed refund does not undo the callback: the markers still clear
        and the request is finalized as refund_failed for manual settlement.
        """
        try:
            await self._transfer.transfer(STAKE_ASSET, VAULT_ACCOUNT, record.owner, record.amount)
        except SublyError as exc:
            log.error(
                "Refund of %d to %s for request %d failed: %s",
                record.amount, record.owner[:16], record.request_id, exc,
            )
            await self._store.log_activity(
                "refund_failed",
                f"Refund for request {record.request_id} failed: {exc}",
                owner=record.owner,
                amount=record.amount,
            )
            return False
        return True

    async def _pending_record(self, request_id: int, circuit: Circuit) -> ComputationRecord:
        record = await self._store.get_computation(request_id)
        if record is None or record.circuit is not circuit or record.outcome is not None:
            raise IntegrityError(
                ErrorCode.PENDING_COMPUTATION_MISMATCH, f"unknown request {request_id}",
            )
        return record

    # ── Initialize ─────────────────────────────────────────

    async def initialize(
        self,
        caller: str,
        authority: str | None = None,
        request_id: int | None = None,
        now: int | None = None,
    ) -> int:
        now = self._clock() if now is None else now
        request_id = request_id if request_id is not None else secrets.randbits(63)
        async with self._mutation():
            config = await self._store.get_confidential_config()
            if config is not None:
                if config.pending_initialize is not None:
                    raise ValidationError(ErrorCode.PENDING_COMPUTATION_IN_PROGRESS)
                if config.initialized:
                    raise ValidationError(ErrorCode.ALREADY_INITIALIZED)
            # A blank record left by a rejected initialize is retried in place.
            config = ConfidentialConfigRecord(authority=authority or caller)
            self._coordinator.begin([Marker(config, "pending_initialize")], request_id)
            request = ComputationRequest(
                request_id=request_id,
                circuit=Circuit.INITIALIZE,
                owner=caller,
                args={"now": now},
            )
            await self._store.save_confidential_config(config)
            await self._queue(ComputationRecord(request_id, Circuit.INITIALIZE, caller), request)
        await self._network.submit(request, self.on_initialize_result)
        return request_id

    async def on_initialize_result(self, request_id: int, output: ComputationOutput) -> None:
        error: SublyError | None = None
        async with self._mutation():
            record = await self._pending_record(request_id, Circuit.INITIALIZE)
            config = await self._store.get_confidential_config()
            if config is None:
                raise IntegrityError(ErrorCode.PENDING_COMPUTATION_MISMATCH)
            self._coordinator.finish([Marker(config, "pending_initialize")], request_id)
            try:
                self._coordinator.validate(output, [(output.config_state, config.state)])
                config.state = output.config_state
                config.paused = False
                config.pending = None
            except SublyError as exc:
                error = exc
            await self._store.save_confidential_config(config)
            await self._finalize(record, error, self._clock())
        if error is not None:
            raise error

    # ── Stake ──────────────────────────────────────────────

    async def stake(
        self,
        caller: str,
        amount: int,
        lock_option: int = DEFAULT_LOCK_INDEX,
        request_id: int | None = None,
        now: int | None = None,
    ) -> int:
        """Escrow `amount` in the vault and queue the stake computation."""
        now = self._clock() if now is None else now
        request_id = request_id if request_id is not None else secrets.randbits(63)
        async with self._mutation():
            config = await self._ready_config()
            if amount <= 0:
                raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
            lock_duration(lock_option)
            stake = await self._store.get_confidential_stake(caller)
            if stake is None:
                stake = ConfidentialStakeRecord(owner=caller)
            self._coordinator.begin([Marker(config), Marker(stake)], request_id)

            await self._transfer.transfer(STAKE_ASSET, caller, VAULT_ACCOUNT, amount)
            request = ComputationRequest(
                request_id=request_id,
                circuit=Circuit.STAKE,
                owner=caller,
                config_state=config.state,
                stake_state=stake.state,
                args={"amount": amount, "lock_option": lock_option, "now": now},
            )
            await self._store.save_confidential_config(config)
            await self._store.save_confidential_stake(stake)
            await self._queue(
                ComputationRecord(request_id, Circuit.STAKE, caller, amount, lock_option), request,
            )
        log.info("Queued confidential stake %d for %s (request %d)", amount, caller[:16], request_id)
        await self._network.submit(request, self.on_stake_result)
        return request_id

    async def on_stake_result(self, request_id: int, output: ComputationOutput) -> None:
        error: SublyError | None = None
        async with self._mutation():
            record = await self._pending_record(request_id, Circuit.STAKE)
            config = await self._store.get_confidential_config()
            stake = await self._store.get_confidential_stake(record.owner)
            if config is None or stake is None:
                raise IntegrityError(ErrorCode.PENDING_COMPUTATION_MISMATCH)
            self._coordinator.finish([Marker(config), Marker(stake)], request_id)
            try:
                self._coordinator.validate(
                    output,
                    [(output.config_state, config.state), (output.stake_state, stake.state)],
                )
                entry_count = output.revealed.get("entry_count", stake.entry_count)
                if entry_count != stake.entry_count + 1:
                    raise IntegrityError(
                        ErrorCode.COMPUTATION_VALIDATION_FAILED, "stake entry was not placed",
                    )
                config.state = output.config_state
                stake.state = output.stake_state
                stake.entry_count = entry_count
            except SublyError as exc:
                error = exc
            outcome = None
            if error is not None and not await self._refund(record):
                outcome = "refund_failed"
            await self._store.save_confidential_config(config)
            await self._store.save_confidential_stake(stake)
            await self._finalize(record, error, self._clock(), outcome)
        if error is not None:
            raise error

    # ── Unstake ────────────────────────────────────────────

    async def unstake(
        self,
        caller: str,
        tranche_id: int,
        request_id: int | None = None,
        now: int | None = None,
    ) -> int:
        now = self._clock() if now is None else now
        request_id = request_id if request_id is not None else secrets.randbits(63)
        async with self._mutation():
            config = await self._ready_config()
            stake = await self._store.get_confidential_stake(caller)
            if stake is None or stake.entry_count == 0:
                raise ValidationError(ErrorCode.NOTHING_TO_UNSTAKE)
            self._coordinator.begin([Marker(config), Marker(stake)], request_id)
            request = ComputationRequest(
                request_id=request_id,
                circuit=Circuit.UNSTAKE,
                owner=caller,
                config_state=config.state,
                stake_state=stake.state,
                args={"tranche_id": tranche_id, "now": now},
            )
            await self._store.save_confidential_config(config)
            await self._store.save_confidential_stake(stake)
            await self._queue(
                ComputationRecord(request_id, Circuit.UNSTAKE, caller, 0, tranche_id), request,
            )
        log.info("Queued confidential unstake of tranche %d for %s", tranche_id, caller[:16])
        await self._network.submit(request, self.on_unstake_result)
        return request_id

    async def on_unstake_result(self, request_id: int, output: ComputationOutput) -> None:
        error: SublyError | None = None
        async with self._mutation():
            record = await self._pending_record(request_id, Circuit.UNSTAKE)
            config = await self._store.get_confidential_config()
            stake = await self._store.get_confidential_stake(record.owner)
            if config is None or stake is None:
                raise IntegrityError(ErrorCode.PENDING_COMPUTATION_MISMATCH)
            self._coordinator.finish([Marker(config), Marker(stake)], request_id)
            try:
                self._coordinator.validate(
                    output,
                    [(output.config_state, config.state), (output.stake_state, stake.state)],
                )
                withdrawn = output.revealed.get("withdrawn", 0)
                if withdrawn <= 0:
                    raise ValidationError(ErrorCode.NOTHING_TO_UNSTAKE)
                await self._transfer.transfer(STAKE_ASSET, VAULT_ACCOUNT, record.owner, withdrawn)
                config.state = output.config_state
                stake.state = output.stake_state
                stake.entry_count = output.revealed.get("entry_count", stake.entry_count)
                record.amount = withdrawn
            except SublyError as exc:
                error = exc
            await self._store.save_confidential_config(config)
            await self._store.save_confidential_stake(stake)
            await self._finalize(record, error, self._clock())
        if error is not None:
            raise error

    # ── Reads ──────────────────────────────────────────────

    async def get_stake_record(self, owner: str) -> ConfidentialStakeRecord | None:
        return await self._store.get_confidential_stake(owner)
