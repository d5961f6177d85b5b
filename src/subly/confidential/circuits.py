"""Circuits the computation network runs over unsealed state.

They reuse the pure accrual and tranche core so both engines share one
implementation of the arithmetic. Invalid input never raises: the circuit
returns the accrued-and-synced state unchanged otherwise, and reveals
only counts and the withdrawn principal.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from subly.constants import INDEX_SCALE, LOCK_OPTIONS, MAX_CONFIDENTIAL_TRANCHES
from subly.core import accrual, tranches
from subly.models.state import AccrualIndexState, Tranche, TrancheLedger


# ── Payload encoding ───────────────────────────────────


def encode_state(state: AccrualIndexState) -> dict[str, Any]:
    return asdict(state)


def decode_state(payload: dict[str, Any]) -> AccrualIndexState:
    return AccrualIndexState(**payload)


def encode_ledger(ledger: TrancheLedger) -> dict[str, Any]:
    return asdict(ledger)


def decode_ledger(payload: dict[str, Any]) -> TrancheLedger:
    fields = dict(payload)
    fields["tranches"] = [Tranche(**t) for t in fields.get("tranches", [])]
    return TrancheLedger(**fields)


# ── Circuits ───────────────────────────────────────────


def initialize_circuit(now: int) -> AccrualIndexState:
    return AccrualIndexState(index=INDEX_SCALE, last_update_time=now)


def stake_circuit(
    state: AccrualIndexState,
    ledger: TrancheLedger,
    amount: int,
    lock_option: int,
    now: int,
) -> tuple[AccrualIndexState, TrancheLedger, bool]:
    """Accrue, sync, then place a new tranche if the input is valid and there is room."""
    accrual.accrue(state, now)
    tranches.sync_ledger(ledger, state.index, now)

    valid = amount > 0 and 0 <= lock_option < len(LOCK_OPTIONS)
    if not valid or len(ledger.tranches) >= MAX_CONFIDENTIAL_TRANCHES:
        return state, ledger, False

    tranches.open_tranche(ledger, amount, lock_option, state.index, now)
    accrual.increase_principal(state, amount)
    return state, ledger, True


def unstake_circuit(
    state: AccrualIndexState,
    ledger: TrancheLedger,
    tranche_id: int,
    now: int,
) -> tuple[AccrualIndexState, TrancheLedger, int]:
    """Accrue, sync, then swap-remove a matured, fully-claimed tranche.

    Returns the withdrawn principal, 0 when no tranche qualified.
    """
    accrual.accrue(state, now)
    tranches.sync_ledger(ledger, state.index, now)

    position = None
    for idx, tranche in enumerate(ledger.tranches):
        if (
            tranche.id == tranche_id
            and tranche.principal > 0
            and not tranches.is_locked(tranche, now)
            and tranche.unrealized_yield == 0
        ):
            position = idx
            break
    if position is None:
        return state, ledger, 0

    withdrawn = ledger.tranches[position].principal
    last = ledger.tranches.pop()
    if position < len(ledger.tranches):
        ledger.tranches[position] = last
    ledger.total_principal -= withdrawn
    accrual.decrease_principal(state, withdrawn)
    return state, ledger, withdrawn
